"""Feature catalog access and the selected-feature binder."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import httpx
from pydantic import TypeAdapter, ValidationError

from devtwin.chat.errors import CatalogError
from devtwin.models.schemas import DEFAULT_FEATURE_ID, FeatureContext, FeatureRecord

logger = logging.getLogger(__name__)

_records = TypeAdapter(list[FeatureRecord])
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class FeatureCatalog(ABC):
    """Read-only source of selectable features."""

    @abstractmethod
    async def list_features(self) -> list[FeatureContext]:
        """Return features, newest first.

        Raises:
            CatalogError: If the catalog cannot be read.
        """


class HttpFeatureCatalog(FeatureCatalog):
    """Feature catalog served as a JSON array of ``{id, feature_name}`` rows."""

    def __init__(self, client: httpx.AsyncClient, url: str) -> None:
        self._client = client
        self._url = url

    async def list_features(self) -> list[FeatureContext]:
        try:
            response = await self._client.get(
                self._url,
                params={"select": "id,feature_name,created_at", "order": "created_at.desc"},
            )
            response.raise_for_status()
            records = _records.validate_json(response.content)
        except httpx.HTTPError as e:
            raise CatalogError(f"Feature catalog request failed: {e}") from e
        except ValidationError as e:
            raise CatalogError(f"Malformed feature catalog payload: {e}") from e

        # Backends that honour the order param already sort; this keeps
        # the newest-first contract for those that don't.
        if all(r.created_at is not None for r in records):
            records.sort(key=lambda r: r.created_at or _EPOCH, reverse=True)
        return [r.to_context() for r in records]


class FeatureContextBinder:
    """Holds the feature selected for outbound messages.

    Selection is local to one page and is not persisted.
    """

    def __init__(self, catalog: FeatureCatalog) -> None:
        self._catalog = catalog
        self._features: list[FeatureContext] = []
        self._selected: FeatureContext | None = None

    @property
    def features(self) -> list[FeatureContext]:
        """Features from the last successful listing."""
        return list(self._features)

    async def list_features(self) -> list[FeatureContext]:
        """Refresh the feature list from the catalog.

        Degrades to an empty list when the catalog is unavailable, so chat
        stays usable without feature context.
        """
        try:
            self._features = await self._catalog.list_features()
        except CatalogError as e:
            logger.warning(f"Feature list unavailable, continuing without context: {e}")
            self._features = []
        if self._selected is not None:
            previous = self._selected
            self._selected = next((f for f in self._features if f.id == previous.id), None)
            if self._selected is None:
                logger.info(f"Selected feature {previous.id} is no longer listed, clearing")
        return self.features

    def select(self, feature_id: str | None) -> FeatureContext | None:
        """Select a listed feature by id, or clear the selection with None.

        Raises:
            ValueError: If the id was not in the last listing.
        """
        if feature_id is None:
            self._selected = None
            return None
        for feature in self._features:
            if feature.id == feature_id:
                self._selected = feature
                return feature
        raise ValueError(f"Unknown feature id: {feature_id}")

    def current(self) -> FeatureContext | None:
        return self._selected

    @property
    def feature_id(self) -> str:
        """Id sent to the backend: the selected feature or the default sentinel."""
        return self._selected.id if self._selected else DEFAULT_FEATURE_ID
