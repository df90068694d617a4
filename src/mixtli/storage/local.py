"""Local filesystem storage provider.

Emulates an S3-style service for development and tests: presigned URLs are
HMAC-signed links back into the gateway's ``/local-storage`` routes, and they
stop verifying once their expiry passes. Multipart uploads keep their parts
on disk until completed or aborted, and completion checks every part number
and tag against what was actually received.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import shutil
import time
import uuid
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Sequence
from urllib.parse import quote, urlencode

from mixtli.core.errors import (
    ClientInputError,
    UpstreamForbidden,
    UpstreamNotFound,
    UpstreamTransientError,
)
from mixtli.services.keys import is_safe_key
from mixtli.storage.base import (
    DEFAULT_READ_CHUNK_BYTES,
    CompletedPart,
    ObjectMetadata,
    ObjectStream,
    StorageProvider,
)

logger = logging.getLogger(__name__)

ROUTE_PREFIX = "/local-storage"


def _normalize_etag(etag: str) -> str:
    return etag.strip().strip('"')


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    def __init__(
        self,
        base_path: str | Path,
        signing_secret: str,
        public_base_url: str = "http://localhost:8080",
        read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES,
        clock: Callable[[], float] = time.time,
    ):
        self.base_path = Path(base_path)
        self._secret = signing_secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        self._read_chunk_bytes = read_chunk_bytes
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "LocalStorageProvider":
        """Build a provider from application settings."""
        return cls(
            base_path=settings.LOCAL_STORAGE_PATH,
            signing_secret=settings.LOCAL_SIGNING_SECRET,
            public_base_url=settings.PUBLIC_BASE_URL,
            read_chunk_bytes=settings.BUNDLE_READ_CHUNK_BYTES,
        )

    # Paths

    @property
    def _objects_root(self) -> Path:
        return self.base_path / "objects"

    @property
    def _uploads_root(self) -> Path:
        return self.base_path / "multipart"

    def _object_path(self, key: str) -> Path:
        if not is_safe_key(key):
            raise ClientInputError(f"Invalid storage key: {key!r}")
        return self._objects_root / key

    def _meta_path(self, key: str) -> Path:
        self._object_path(key)
        return self.base_path / "metadata" / f"{key}.json"

    def _upload_dir(self, upload_id: str) -> Path:
        if not upload_id or not upload_id.isalnum():
            raise UpstreamNotFound(f"No such upload: {upload_id}")
        return self._uploads_root / upload_id

    def _load_upload(self, upload_id: str, key: str) -> Path:
        upload_dir = self._upload_dir(upload_id)
        meta_file = upload_dir / "upload.json"
        if not meta_file.exists():
            raise UpstreamNotFound(f"No such upload: {upload_id}")
        meta = json.loads(meta_file.read_text())
        if meta.get("key") != key:
            raise UpstreamNotFound(f"No such upload: {upload_id} for {key}")
        return upload_dir

    # Signing

    def _signature(
        self,
        method: str,
        key: str,
        expires: int,
        content_type: str = "",
        upload_id: str = "",
        part_number: int = 0,
    ) -> str:
        message = "\n".join(
            [method.upper(), key, str(expires), content_type, upload_id, str(part_number)]
        )
        return hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def _signed_url(
        self,
        method: str,
        key: str,
        ttl_seconds: int,
        content_type: str = "",
        upload_id: str = "",
        part_number: int = 0,
    ) -> str:
        self._object_path(key)
        expires = int(self._clock()) + ttl_seconds
        query = {
            "expires": expires,
            "signature": self._signature(
                method, key, expires, content_type, upload_id, part_number
            ),
        }
        if upload_id:
            query["uploadId"] = upload_id
            query["partNumber"] = part_number
        return f"{self.public_base_url}{ROUTE_PREFIX}/{quote(key)}?{urlencode(query)}"

    def verify_signature(
        self,
        method: str,
        key: str,
        expires: int,
        signature: str,
        content_type: str = "",
        upload_id: str = "",
        part_number: int = 0,
    ) -> None:
        """Check a signed request the way a storage service would.

        Raises:
            UpstreamForbidden: If the signature is wrong or has expired
        """
        expected = self._signature(method, key, expires, content_type, upload_id, part_number)
        if not hmac.compare_digest(expected, signature or ""):
            raise UpstreamForbidden("Signature does not match", hint="Request a new URL")
        if self._clock() > expires:
            raise UpstreamForbidden("Request has expired", hint="Request a new URL")

    async def sign_put(self, key: str, content_type: str, ttl_seconds: int) -> str:
        return self._signed_url("PUT", key, ttl_seconds, content_type=content_type)

    async def sign_get(self, key: str, ttl_seconds: int) -> str:
        return self._signed_url("GET", key, ttl_seconds)

    # Writes

    async def _write_file(self, path: Path, chunks: AsyncIterator[bytes]) -> tuple[str, int]:
        """Stream chunks into ``path`` atomically, returning (md5, size)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(f".{path.name}.{uuid.uuid4().hex}.partial")
        digest = hashlib.md5()
        size = 0
        try:
            with open(partial, "wb") as f:
                async for chunk in chunks:
                    digest.update(chunk)
                    size += len(chunk)
                    await asyncio.to_thread(f.write, chunk)
            partial.replace(path)
        except OSError as e:
            raise UpstreamTransientError(f"Local storage write failed: {e}") from e
        finally:
            partial.unlink(missing_ok=True)
        return digest.hexdigest(), size

    def _write_meta(self, key: str, content_type: str, size: int, etag: str) -> None:
        meta_path = self._meta_path(key)
        meta_path.parent.mkdir(parents=True, exist_ok=True)
        meta_path.write_text(
            json.dumps({"content_type": content_type, "size": size, "etag": etag})
        )

    async def write_object(
        self, key: str, chunks: AsyncIterator[bytes], content_type: str
    ) -> str:
        """Store an object received through a signed PUT. Returns its ETag."""
        md5, size = await self._write_file(self._object_path(key), chunks)
        etag = f'"{md5}"'
        self._write_meta(key, content_type, size, etag)
        logger.info(f"Stored object {key}", extra={"size_bytes": size})
        return etag

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        async def single() -> AsyncIterator[bytes]:
            yield data

        await self.write_object(key, single(), content_type)

    # Multipart

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        self._object_path(key)
        upload_id = uuid.uuid4().hex
        upload_dir = self._upload_dir(upload_id)
        upload_dir.mkdir(parents=True)
        (upload_dir / "upload.json").write_text(
            json.dumps({"key": key, "content_type": content_type, "created_at": self._clock()})
        )
        return upload_id

    async def sign_upload_part(
        self, upload_id: str, key: str, part_number: int, ttl_seconds: int
    ) -> str:
        return self._signed_url(
            "PUT", key, ttl_seconds, upload_id=upload_id, part_number=part_number
        )

    async def write_part(
        self, upload_id: str, key: str, part_number: int, chunks: AsyncIterator[bytes]
    ) -> str:
        """Store one part received through a signed PUT. Returns its ETag."""
        upload_dir = self._load_upload(upload_id, key)
        md5, _ = await self._write_file(upload_dir / f"{part_number:05d}.part", chunks)
        (upload_dir / f"{part_number:05d}.etag").write_text(md5)
        return f'"{md5}"'

    def _received_parts(self, upload_dir: Path) -> dict[int, str]:
        return {
            int(path.stem): path.read_text()
            for path in upload_dir.glob("*.etag")
        }

    async def complete_multipart_upload(
        self, upload_id: str, key: str, parts: Sequence[CompletedPart]
    ) -> Optional[str]:
        upload_dir = self._load_upload(upload_id, key)
        received = self._received_parts(upload_dir)
        supplied = [part.part_number for part in parts]

        if not parts:
            raise ClientInputError("InvalidPart: no parts supplied")
        if len(set(supplied)) != len(supplied):
            raise ClientInputError("InvalidPart: duplicate part numbers")
        if set(supplied) != set(received):
            missing = sorted(set(received) - set(supplied))
            unknown = sorted(set(supplied) - set(received))
            raise ClientInputError(
                f"InvalidPart: missing parts {missing}, unknown parts {unknown}"
            )
        for part in parts:
            if _normalize_etag(part.etag) != received[part.part_number]:
                raise ClientInputError(f"InvalidPart: tag mismatch for part {part.part_number}")

        meta = json.loads((upload_dir / "upload.json").read_text())

        async def concatenated() -> AsyncIterator[bytes]:
            for number in sorted(received):
                with open(upload_dir / f"{number:05d}.part", "rb") as f:
                    while chunk := await asyncio.to_thread(f.read, self._read_chunk_bytes):
                        yield chunk

        _, size = await self._write_file(self._object_path(key), concatenated())
        combined = hashlib.md5(
            b"".join(bytes.fromhex(received[number]) for number in sorted(received))
        ).hexdigest()
        self._write_meta(key, meta["content_type"], size, f'"{combined}-{len(received)}"')
        shutil.rmtree(upload_dir, ignore_errors=True)

        logger.info(
            f"Completed multipart upload {upload_id}",
            extra={"parts": len(received), "size_bytes": size},
        )
        return f"{self.public_base_url}{ROUTE_PREFIX}/{quote(key)}"

    async def abort_multipart_upload(self, upload_id: str, key: str) -> None:
        upload_dir = self._load_upload(upload_id, key)
        await asyncio.to_thread(shutil.rmtree, upload_dir, True)

    # Reads

    async def get_object_stream(self, key: str) -> ObjectStream:
        metadata = await self.head_object(key)
        if metadata is None:
            raise UpstreamNotFound(f"Not found: {key}")
        try:
            reader = open(self._object_path(key), "rb")
        except FileNotFoundError as e:
            raise UpstreamNotFound(f"Not found: {key}") from e
        return ObjectStream(
            reader,
            key=key,
            size_bytes=metadata.size_bytes,
            content_type=metadata.content_type,
            chunk_size=self._read_chunk_bytes,
        )

    async def head_object(self, key: str) -> Optional[ObjectMetadata]:
        path = self._object_path(key)
        if not path.is_file():
            return None
        meta_path = self._meta_path(key)
        meta = json.loads(meta_path.read_text()) if meta_path.exists() else {}
        return ObjectMetadata(
            key=key,
            size_bytes=path.stat().st_size,
            content_type=meta.get("content_type", "application/octet-stream"),
            etag=meta.get("etag"),
        )

    def get_backend_name(self) -> str:
        return "local"
