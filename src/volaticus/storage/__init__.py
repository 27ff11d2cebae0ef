from volaticus.core.exceptions import InvalidInput
from volaticus.storage.base import BlobInfo, BlobStream, StorageBackend
from volaticus.storage.local import LocalStorage
from volaticus.storage.object import ObjectStorage


def create_storage(settings) -> StorageBackend:
    """Build the backend selected by STORAGE_PROVIDER."""
    if settings.STORAGE_PROVIDER == "local":
        return LocalStorage(settings.LOCAL_PATH)
    if settings.STORAGE_PROVIDER == "object":
        return ObjectStorage(
            bucket=settings.OBJECT_BUCKET,
            region=settings.OBJECT_REGION,
            endpoint_url=settings.OBJECT_EMULATOR_ENDPOINT or None,
            project_id=settings.OBJECT_PROJECT_ID or None,
            timeout=settings.STORAGE_TIMEOUT,
        )
    raise InvalidInput(f"Unsupported storage provider: {settings.STORAGE_PROVIDER}")


__all__ = [
    "BlobInfo",
    "BlobStream",
    "StorageBackend",
    "LocalStorage",
    "ObjectStorage",
    "create_storage",
]
