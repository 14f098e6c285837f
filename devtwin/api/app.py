"""FastAPI application factory and configuration.

Development backend implementing the interfaces the chat controller
talks to: completion webhook, message log, push channel and feature
catalog.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from devtwin.api.chat import router as chat_router
from devtwin.api.features import router as features_router
from devtwin.api.store import BackendStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Log backend startup and shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application while it runs.
    """
    logger.info("Starting DevTwin backend...")
    yield
    logger.info("Shutting down DevTwin backend...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Each app gets its own in-memory store, so tests can build isolated
    instances.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="DevTwin Backend",
        description=(
            "Development backend for the DevTwin chat page. Answers chat messages "
            "through a completion webhook or a message log with a Server-Sent "
            "Events push channel, and serves the feature catalog."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.store = BackendStore()

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(chat_router)
    application.include_router(features_router)

    @application.get("/health")
    async def health_check() -> dict[str, str]:
        """Check service health status."""
        return {"status": "healthy", "service": "devtwin-backend"}

    return application


app = create_app()
