"""ephemstore FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

from ephemstore import __version__
from ephemstore.api.errors import (
    EphemstoreHttpError,
    authentication_error_handler,
    ephemstore_http_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
    storage_error_handler,
)
from ephemstore.api.middleware.request_id import RequestIdMiddleware
from ephemstore.api.routes.health import router as health_router
from ephemstore.api.routes.objects import router as objects_router
from ephemstore.auth.errors import AuthenticationError
from ephemstore.auth.gate import RequestAuthorizationGate
from ephemstore.auth.signature import SignatureAuthenticator
from ephemstore.config import Settings
from ephemstore.storage.errors import ObjectStorageError
from ephemstore.storage.filesystem_store import FilesystemObjectStore
from ephemstore.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)


def _build_authenticator(settings: Settings) -> SignatureAuthenticator:
    if not settings.public_key_path:
        logger.warning("No public key configured; all signed routes will reject requests")
        return SignatureAuthenticator()
    return SignatureAuthenticator.from_file(settings.public_key_path)


def create_app(
    settings: Settings | None = None,
    store: ObjectStore | None = None,
    authenticator: SignatureAuthenticator | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Create and configure the ephemstore FastAPI application.

    Args:
        settings: Runtime settings. If None, read from the environment.
        store: Object store to serve. If None, a FilesystemObjectStore is
            created from settings and stopped on application shutdown.
        authenticator: Signature authenticator. If None, loads the key at
            settings.public_key_path (or starts with no key).
        clock: Time source for the freshness check (tests).

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = Settings.from_env()

    owns_store = store is None
    if store is None:
        store = FilesystemObjectStore.from_settings(settings)
    if authenticator is None:
        authenticator = _build_authenticator(settings)

    gate = RequestAuthorizationGate(
        authenticator,
        tolerance=settings.timestamp_tolerance,
        clock=clock,
        sign_form_fields=settings.sign_form_fields,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if owns_store:
            app.state.store.stop()

    app = FastAPI(
        title="ephemstore",
        description="Ephemeral object store with signed-request authentication",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.authenticator = authenticator
    app.state.gate = gate

    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(EphemstoreHttpError, ephemstore_http_error_handler)
    app.add_exception_handler(ObjectStorageError, storage_error_handler)
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(objects_router)

    return app
