"""Feature catalog endpoints of the development backend."""

import logging

from fastapi import APIRouter, Request, status

from devtwin.api.chat import get_store
from devtwin.api.store import FeatureCreate, StoredFeature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/features", tags=["features"])


@router.get("", response_model=list[StoredFeature])
async def list_features(request: Request) -> list[StoredFeature]:
    """List features, newest first.

    PostgREST-style ``select`` / ``order`` query params are accepted and
    ignored; the order is always created_at descending.
    """
    return get_store(request).list_features()


@router.post("", response_model=StoredFeature, status_code=status.HTTP_201_CREATED)
async def create_feature(payload: FeatureCreate, request: Request) -> StoredFeature:
    """Create a feature for the chat page to select."""
    feature = get_store(request).create_feature(payload)
    logger.info(f"Created feature {feature.id}: {feature.feature_name}")
    return feature
