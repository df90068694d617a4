"""Storage provider selection."""

import logging
from functools import lru_cache

from mixtli.core.config import settings
from mixtli.core.errors import ConfigurationError
from mixtli.storage.base import StorageProvider

logger = logging.getLogger(__name__)


def build_storage_provider(backend: str) -> StorageProvider:
    """Instantiate the provider for a backend name.

    Raises:
        ConfigurationError: If the backend is unknown or misconfigured
    """
    settings.validate_storage_settings()

    if backend == "s3":
        from mixtli.storage.s3 import S3StorageProvider

        provider: StorageProvider = S3StorageProvider.from_settings(settings)
    elif backend == "gcs":
        from mixtli.storage.gcs import GCSStorageProvider

        provider = GCSStorageProvider.from_settings(settings)
    elif backend == "local":
        from mixtli.storage.local import LocalStorageProvider

        provider = LocalStorageProvider.from_settings(settings)
    else:
        raise ConfigurationError(f"Unknown STORAGE_BACKEND: {backend}")

    logger.info(f"Storage provider initialized: {provider.get_backend_name()}")
    return provider


@lru_cache(maxsize=1)
def get_storage_provider() -> StorageProvider:
    """Return the process-wide storage provider for the configured backend."""
    return build_storage_provider(settings.STORAGE_BACKEND)
