"""boxstore FastAPI application factory.

This module provides the create_app() factory for bootstrapping the boxstore API.
"""

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from boxstore.api.access import AllowAllAccessResolver, ArtifactAccessResolver
from boxstore.api.errors import (
    BoxstoreHttpError,
    artifact_storage_error_handler,
    boxstore_http_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
)
from boxstore.api.middleware.request_id import RequestIdMiddleware
from boxstore.api.routes.files import router as files_router
from boxstore.api.routes.health import BOXSTORE_VERSION
from boxstore.api.routes.health import router as health_router
from boxstore.config import StorageSettings, get_settings
from boxstore.metadata import ArtifactMetadataStore, create_metadata_store
from boxstore.observability.tracing import configure_tracing, instrument_fastapi
from boxstore.storage.download import DownloadServer
from boxstore.storage.errors import ArtifactStorageError
from boxstore.storage.paths import StoragePathResolver
from boxstore.storage.upload import UploadReceiver


def create_app(
    settings: StorageSettings | None = None,
    metadata_store: ArtifactMetadataStore | None = None,
    access_resolver: ArtifactAccessResolver | None = None,
) -> FastAPI:
    """Create and configure the boxstore FastAPI application.

    This factory:
    - Creates a FastAPI app with boxstore metadata
    - Builds the storage components from settings and stores them on app.state
    - Registers RequestIdMiddleware and the exception handlers
    - Mounts the health and file routers

    Args:
        settings: Optional StorageSettings. If None, uses get_settings().
        metadata_store: Optional metadata store. If None, one is built from
            settings.metadata_database_url (in-memory when unset).
        access_resolver: Optional upstream access boundary. If None, every
            caller is authorized.

    Returns:
        Configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()
    if metadata_store is None:
        metadata_store = create_metadata_store(settings.metadata_database_url)
    if access_resolver is None:
        access_resolver = AllowAllAccessResolver()

    app = FastAPI(
        title="boxstore",
        description="Vagrant box artifact storage service",
        version=BOXSTORE_VERSION,
    )

    app.state.settings = settings
    app.state.metadata_store = metadata_store
    app.state.access_resolver = access_resolver
    app.state.path_resolver = StoragePathResolver(settings.storage_dir)
    app.state.upload_receiver = UploadReceiver(settings, metadata_store)
    app.state.download_server = DownloadServer(metadata_store)

    configure_tracing()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    app.add_exception_handler(BoxstoreHttpError, boxstore_http_error_handler)
    app.add_exception_handler(ArtifactStorageError, artifact_storage_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(files_router)

    return app
