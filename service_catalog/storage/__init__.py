"""Storage abstraction layer for local and cloud storage."""

from service_catalog.core.config import Settings
from .protocol import StorageBackend
from .local import LocalStorageBackend
# S3 backend imported lazily when needed


def build_storage(settings: Settings) -> StorageBackend:
    """Construct the storage backend selected by STORAGE_BACKEND.

    Called once at startup; the instance lives on ``app.state.storage``.

    Raises:
        ValueError: If unknown storage backend is configured
    """
    if settings.STORAGE_BACKEND == "local":
        return LocalStorageBackend(settings.STORAGE_PATH, settings.STORAGE_PUBLIC_PATH)
    elif settings.STORAGE_BACKEND == "s3":
        # Lazy import to avoid requiring aioboto3 when using local storage
        from .s3 import S3StorageBackend
        return S3StorageBackend(
            region=settings.AWS_REGION,
            bucket_name=settings.AWS_S3_BUCKET_NAME,
            endpoint_url=settings.AWS_ENDPOINT_URL,
            public_base_url=settings.AWS_PUBLIC_BASE_URL,
        )
    else:
        raise ValueError(f"Unknown storage backend: {settings.STORAGE_BACKEND}")


__all__ = ["build_storage", "StorageBackend", "LocalStorageBackend"]
