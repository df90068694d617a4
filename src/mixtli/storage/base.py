"""Abstract storage provider interface."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional, Sequence

from mixtli.core.errors import GatewayError, UpstreamTransientError

logger = logging.getLogger(__name__)

DEFAULT_READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class ObjectMetadata:
    """Object metadata returned by a head request."""

    key: str
    size_bytes: int
    content_type: str
    etag: Optional[str] = None


@dataclass(frozen=True)
class CompletedPart:
    """A multipart part as acknowledged by storage."""

    part_number: int
    etag: str


class ObjectStream:
    """Async iterator over an object's bytes backed by a blocking reader.

    Each read runs in a worker thread so that a slow storage read never
    blocks the event loop. At most one chunk is in flight at a time.
    """

    def __init__(
        self,
        reader: BinaryIO,
        key: str,
        size_bytes: Optional[int] = None,
        content_type: str = "application/octet-stream",
        chunk_size: int = DEFAULT_READ_CHUNK_BYTES,
        translate_error: Optional[Callable[[Exception, str], GatewayError]] = None,
    ):
        self._reader = reader
        self.key = key
        self.size_bytes = size_bytes
        self.content_type = content_type
        self.chunk_size = chunk_size
        self._translate_error = translate_error
        self._closed = False

    def __aiter__(self) -> "ObjectStream":
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        try:
            chunk = await asyncio.to_thread(self._reader.read, self.chunk_size)
        except GatewayError:
            raise
        except Exception as e:
            if self._translate_error is not None:
                raise self._translate_error(e, self.key) from e
            raise UpstreamTransientError(f"Failed reading {self.key}: {e}") from e
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def read_all(self, limit: int) -> bytes:
        """Read the whole object, refusing anything larger than ``limit``."""
        data = bytearray()
        async for chunk in self:
            data += chunk
            if len(data) > limit:
                raise ValueError(f"{self.key} exceeds {limit} bytes")
        return bytes(data)

    async def aclose(self) -> None:
        """Release the underlying reader."""
        if self._closed:
            return
        self._closed = True
        try:
            # Runs to completion even when the request task is being cancelled
            await asyncio.shield(asyncio.to_thread(self._reader.close))
        except Exception as e:
            logger.debug(f"Ignoring error while closing stream for {self.key}: {e}")


class StorageProvider(ABC):
    """Capability provider for an object storage service.

    Every method translates backend errors into :mod:`mixtli.core.errors`.
    """

    @abstractmethod
    async def sign_put(self, key: str, content_type: str, ttl_seconds: int) -> str:
        """Generate a presigned URL for a single PUT of ``key``.

        Args:
            key: Storage key the client will write
            content_type: MIME type the client must send
            ttl_seconds: Lifetime of the URL

        Returns:
            Signed URL
        """
        pass

    @abstractmethod
    async def sign_get(self, key: str, ttl_seconds: int) -> str:
        """Generate a presigned URL for a GET of ``key``."""
        pass

    @abstractmethod
    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        """Open a native multipart upload and return its upload id."""
        pass

    @abstractmethod
    async def sign_upload_part(
        self, upload_id: str, key: str, part_number: int, ttl_seconds: int
    ) -> str:
        """Generate a presigned URL for uploading one part."""
        pass

    @abstractmethod
    async def complete_multipart_upload(
        self, upload_id: str, key: str, parts: Sequence[CompletedPart]
    ) -> Optional[str]:
        """Finalize a multipart upload.

        Args:
            upload_id: Native upload id
            key: Storage key of the upload
            parts: Parts in ascending part number order

        Returns:
            Object location when the backend reports one
        """
        pass

    @abstractmethod
    async def abort_multipart_upload(self, upload_id: str, key: str) -> None:
        """Discard a multipart upload and all its parts."""
        pass

    @abstractmethod
    async def get_object_stream(self, key: str) -> ObjectStream:
        """Open a read stream.

        Raises:
            UpstreamNotFound: If the object does not exist
        """
        pass

    @abstractmethod
    async def head_object(self, key: str) -> Optional[ObjectMetadata]:
        """Return object metadata, or None when the object does not exist."""
        pass

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """Store a small object in one request."""
        pass

    @abstractmethod
    def get_backend_name(self) -> str:
        """Return backend identifier."""
        pass
