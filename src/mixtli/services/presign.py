"""Presigned single-shot transfers."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from mixtli.core.errors import ClientInputError
from mixtli.core.logging import storage_key_context
from mixtli.services.keys import derive_key, is_safe_key
from mixtli.services.quota import Plan, QuotaResolver
from mixtli.storage.base import StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresignedTransfer:
    """A signed URL for one method against one key."""

    key: str
    method: str
    url: str
    expires_in: int
    expires_at: datetime


class PresignBroker:
    """Issues time-boxed URLs for direct PUT/GET against storage.

    The broker never touches payload bytes. A signed URL is usable by anyone
    holding it until it expires; there is no early revocation.
    """

    def __init__(
        self,
        provider: StorageProvider,
        quota: QuotaResolver,
        ttl_seconds: int,
        key_prefix: str = "uploads",
    ):
        self.provider = provider
        self.quota = quota
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _transfer(self, key: str, method: str, url: str, ttl: int) -> PresignedTransfer:
        return PresignedTransfer(
            key=key,
            method=method,
            url=url,
            expires_in=ttl,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
        )

    async def presign_put(
        self,
        filename: str,
        declared_size: int,
        content_type: str,
        plan: Plan,
    ) -> PresignedTransfer:
        """Admit an upload intent and sign a PUT for a fresh key.

        The declared size is only what the client claims; nothing stops it
        from sending more bytes to the signed URL.

        Raises:
            QuotaExceeded: If the declared size exceeds the plan limit
        """
        if not content_type:
            raise ClientInputError("contentType is required")
        self.quota.ensure_admitted(declared_size, plan)

        key = derive_key(filename, prefix=self.key_prefix)
        storage_key_context.set(key)
        url = await self.provider.sign_put(key, content_type, self.ttl_seconds)

        logger.info(
            "Issued presigned PUT",
            extra={"plan": plan.value, "declared_size": declared_size, "ttl": self.ttl_seconds},
        )
        return self._transfer(key, "PUT", url, self.ttl_seconds)

    async def presign_get(self, key: str, ttl_seconds: Optional[int] = None) -> PresignedTransfer:
        """Sign a GET for an existing key.

        Raises:
            ClientInputError: If the key is empty or could escape the bucket namespace
        """
        if not key:
            raise ClientInputError("Missing key")
        if not is_safe_key(key):
            raise ClientInputError(f"Invalid key: {key!r}")

        ttl = ttl_seconds or self.ttl_seconds
        storage_key_context.set(key)
        url = await self.provider.sign_get(key, ttl)
        logger.info("Issued presigned GET", extra={"ttl": ttl})
        return self._transfer(key, "GET", url, ttl)
