"""Main application entrypoint for Mixtli Transfer."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mixtli.api.errors import register_exception_handlers
from mixtli.api.middleware import HTTPErrorLoggingMiddleware
from mixtli.api.v1 import routes_health, routes_local_storage
from mixtli.api.v1.routes_bundle import router as bundle_router
from mixtli.api.v1.routes_multipart import router as multipart_router
from mixtli.api.v1.routes_presign import router as presign_router
from mixtli.core.config import settings
from mixtli.core.logging import setup_logging


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance

    Raises:
        ConfigurationError: If the storage settings are incomplete
    """
    # Initialize logging first
    setup_logging()

    # Missing endpoint, bucket or credentials must stop startup
    settings.validate_storage_settings()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )

    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "x-mixtli-token", "x-mixtli-plan"],
        expose_headers=["ETag"],
    )
    register_exception_handlers(app)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(presign_router)
    app.include_router(multipart_router)
    app.include_router(bundle_router)
    if settings.STORAGE_BACKEND == "local":
        app.include_router(routes_local_storage.router)

    return app


# Export app instance for ASGI servers
app = create_app()
