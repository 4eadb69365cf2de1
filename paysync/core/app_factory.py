from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer, build_container
from .logging import configure_logging
from ..presentation.api.errors import register_error_handlers
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import catalog as catalog_router
from ..presentation.api.routers import checkout as checkout_router
from ..presentation.api.routers import gifts as gifts_router
from ..presentation.api.routers import subscription as subscription_router
from ..presentation.api.routers import webhook as webhook_router

logger = logging.getLogger(__name__)


def create_application(container: Optional[ApplicationContainer] = None) -> FastAPI:
    """Build the FastAPI app; a prebuilt ``container`` skips wiring from the environment."""
    settings = container.settings if container is not None else Settings()

    app = FastAPI(title="paysync", lifespan=_create_lifespan(settings, container))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(checkout_router.router)
    app.include_router(subscription_router.router)
    app.include_router(webhook_router.router)
    app.include_router(catalog_router.router)
    app.include_router(gifts_router.router)
    app.include_router(admin_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True}

    return app


def _create_lifespan(settings: Settings, prebuilt: Optional[ApplicationContainer]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        container = prebuilt or build_container(settings)
        app.state.container = container  # type: ignore[attr-defined]
        logger.info("paysync started with store at %s", settings.database_path)
        try:
            yield
        finally:
            close = getattr(container.persistence, "close", None)
            if close is not None:
                close()

    return lifespan
