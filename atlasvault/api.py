# -*- coding: utf-8 -*-
"""
Atlas Vault local API

Serves the encrypted clinical store (patients, cases, photos, reminders,
consents, audit trail) to the UI layer on the same device.
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .errors import EncodeError, KeyUnavailable, NotFound, StoreError
from .clinical.api import router as clinical_router
from .clinical.repository import AppRepository

logger = logging.getLogger(__name__)


def _status_for(exc: StoreError) -> int:
    if isinstance(exc, NotFound):
        return 404
    elif isinstance(exc, EncodeError):
        return 422
    elif isinstance(exc, KeyUnavailable):
        return 503
    return 500


def create_app(
    repository: Optional[AppRepository] = None,
    repository_factory: Callable[[], AppRepository] = AppRepository,
) -> FastAPI:
    """Build the app; the repository is created (and the key ensured) at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "repository", None) is None:
            app.state.repository = repository or repository_factory()
        logger.info("Store ready at %s", app.state.repository.file_store.root)
        yield
        app.state.repository = None

    app = FastAPI(
        title="Atlas Vault",
        description="Encrypted local store for clinical before/after photography",
        version="0.1.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )
    app.state.repository = None
    app.state.write_lock = threading.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StoreError)
    async def _store_error_handler(request: Request, exc: StoreError):
        status = _status_for(exc)
        if status >= 500:
            logger.error("%s on %s: %s", exc.__class__.__name__, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": exc.__class__.__name__})

    @app.exception_handler(ValueError)
    async def _value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/api/health")
    def health(request: Request) -> dict:
        repo: AppRepository | None = request.app.state.repository
        return {
            "status": "ok" if repo is not None else "starting",
            "key_ready": bool(repo and repo.file_store.crypto.has_key),
            "last_save_failed": bool(repo and repo.last_save_error is not None),
        }

    app.include_router(clinical_router)
    return app
