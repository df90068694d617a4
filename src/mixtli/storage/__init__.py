"""Storage capability providers."""

from mixtli.storage.base import CompletedPart, ObjectMetadata, ObjectStream, StorageProvider

__all__ = ["CompletedPart", "ObjectMetadata", "ObjectStream", "StorageProvider"]
