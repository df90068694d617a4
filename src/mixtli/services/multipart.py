"""Multipart upload coordination.

A session moves through these states, all of them held by storage and by the
client's own requests rather than by the gateway::

    CREATED --(part uploaded, tag recorded)--> PARTS_PENDING
    PARTS_PENDING --(complete)--> COMPLETED      [terminal]
    CREATED|PARTS_PENDING --(abort)--> ABORTED   [terminal]

Any gateway instance can serve any step of any session. Sessions that are
never completed nor aborted are reclaimed by the bucket's own lifecycle rules.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from mixtli.core.errors import ClientInputError, FeatureDisabled, UpstreamNotFound
from mixtli.core.logging import storage_key_context
from mixtli.services.keys import derive_key, is_safe_key
from mixtli.services.quota import Plan, QuotaResolver
from mixtli.storage.base import CompletedPart, StorageProvider

logger = logging.getLogger(__name__)

MAX_PART_NUMBER = 10_000
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024


class SessionState(str, Enum):
    """Multipart session lifecycle states."""

    CREATED = "created"
    PARTS_PENDING = "parts_pending"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class MultipartSession:
    """Identity of an open multipart upload."""

    client_upload_id: str
    storage_upload_id: str
    key: str
    part_size: int
    state: SessionState = SessionState.CREATED


@dataclass(frozen=True)
class CompletedUpload:
    """Result of a successful completion."""

    key: str
    location: Optional[str]
    part_count: int
    state: SessionState = SessionState.COMPLETED


def choose_part_size(declared_size: int, requested: Optional[int], default: int) -> int:
    """Pick a part size inside storage limits that covers the whole object.

    The requested (or default) size is clamped to 5 MiB..5 GiB and grown when
    the object would otherwise need more than 10,000 parts.
    """
    part_size = requested or default
    part_size = max(MIN_PART_SIZE, min(MAX_PART_SIZE, part_size))
    needed = math.ceil(declared_size / MAX_PART_NUMBER)
    return max(part_size, needed)


class MultipartCoordinator:
    """Bridges client-visible multipart sessions to storage-native uploads."""

    def __init__(
        self,
        provider: StorageProvider,
        quota: QuotaResolver,
        ttl_seconds: int,
        default_part_size: int = 16 * 1024 * 1024,
        key_prefix: str = "uploads",
        enabled: bool = True,
    ):
        self.provider = provider
        self.quota = quota
        self.ttl_seconds = ttl_seconds
        self.default_part_size = default_part_size
        self.key_prefix = key_prefix
        self.enabled = enabled

    def _ensure_enabled(self) -> None:
        if not self.enabled:
            raise FeatureDisabled("Multipart uploads are disabled")

    @staticmethod
    def _to_storage_id(client_upload_id: str) -> str:
        # Storage ids are unguessable and scoped to one key, so they are
        # handed to clients unchanged
        if not client_upload_id:
            raise ClientInputError("uploadId is required")
        return client_upload_id

    @staticmethod
    def _check_key(key: str) -> None:
        if not key or not is_safe_key(key):
            raise ClientInputError(f"Invalid key: {key!r}")
        storage_key_context.set(key)

    async def create(
        self,
        filename: str,
        declared_size: int,
        content_type: str,
        plan: Plan,
        part_size: Optional[int] = None,
    ) -> MultipartSession:
        """Admit the declared size and open a native multipart upload.

        Raises:
            QuotaExceeded: If the declared size exceeds the plan limit
        """
        self._ensure_enabled()
        if not content_type:
            raise ClientInputError("contentType is required")
        self.quota.ensure_admitted(declared_size, plan)

        key = derive_key(filename, prefix=self.key_prefix)
        storage_key_context.set(key)
        upload_id = await self.provider.create_multipart_upload(key, content_type)
        session = MultipartSession(
            client_upload_id=upload_id,
            storage_upload_id=upload_id,
            key=key,
            part_size=choose_part_size(declared_size, part_size, self.default_part_size),
        )

        logger.info(
            "Multipart upload created",
            extra={
                "upload_id": upload_id,
                "plan": plan.value,
                "declared_size": declared_size,
                "part_size": session.part_size,
            },
        )
        return session

    async def part_url(self, client_upload_id: str, key: str, part_number: int) -> str:
        """Sign a URL the client uses to PUT one part directly to storage."""
        self._ensure_enabled()
        self._check_key(key)
        if not 1 <= part_number <= MAX_PART_NUMBER:
            raise ClientInputError(f"partNumber must be between 1 and {MAX_PART_NUMBER}")

        return await self.provider.sign_upload_part(
            self._to_storage_id(client_upload_id), key, part_number, self.ttl_seconds
        )

    async def complete(
        self, client_upload_id: str, key: str, parts: Iterable[CompletedPart]
    ) -> CompletedUpload:
        """Finalize the upload with the client's part list.

        Parts may arrive in any order and are sent to storage sorted by part
        number. Their contiguity and tags are checked by storage alone. Calling
        this twice is not idempotent.
        """
        self._ensure_enabled()
        self._check_key(key)
        ordered = sorted(parts, key=lambda part: part.part_number)
        if not ordered:
            raise ClientInputError("parts must not be empty")
        for part in ordered:
            if not 1 <= part.part_number <= MAX_PART_NUMBER:
                raise ClientInputError(f"partNumber must be between 1 and {MAX_PART_NUMBER}")
            if not part.etag:
                raise ClientInputError(f"ETag missing for part {part.part_number}")

        upload_id = self._to_storage_id(client_upload_id)
        location = await self.provider.complete_multipart_upload(upload_id, key, ordered)

        logger.info(
            "Multipart upload completed",
            extra={"upload_id": upload_id, "parts": len(ordered)},
        )
        return CompletedUpload(key=key, location=location, part_count=len(ordered))

    async def abort(self, client_upload_id: str, key: str) -> SessionState:
        """Discard all parts. A session storage no longer knows is a no-op."""
        self._ensure_enabled()
        self._check_key(key)
        upload_id = self._to_storage_id(client_upload_id)
        try:
            await self.provider.abort_multipart_upload(upload_id, key)
        except UpstreamNotFound:
            logger.info("Abort for unknown or finished upload ignored", extra={"upload_id": upload_id})
        else:
            logger.info("Multipart upload aborted", extra={"upload_id": upload_id})
        return SessionState.ABORTED
