"""Streaming ZIP bundles assembled from stored objects.

A bundle manifest is a small JSON object kept in the bucket::

    {
        "name": "combo-123.zip",
        "items": [
            {"key": "uploads/2024/05/01/...-photo.png", "name": "photo.png"},
            {"key": "uploads/2024/05/01/...-notes.txt"}
        ],
        "expiresAt": "2024-05-08T00:00:00Z"
    }

Members are fetched one at a time, in manifest order, and every chunk read
from storage is compressed and handed to the response before the next read.
Peak memory is one read chunk plus the compressor state, whatever the size
of the bundle.
"""

import json
import logging
import re
import secrets
import zipfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import AsyncIterator, Iterable, Optional, Union

from mixtli.core.errors import (
    BundleExpired,
    ClientInputError,
    GatewayError,
    UpstreamNotFound,
)
from mixtli.services.keys import is_safe_key, sanitize_filename
from mixtli.storage.base import ObjectStream, StorageProvider

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_NAME = "combo.zip"
MANIFEST_VERSION = "3.1"

_BUNDLE_ID = re.compile(r"[A-Za-z0-9_-]{1,64}")


class MissingMemberPolicy(str, Enum):
    """What to do when a manifest entry no longer exists in storage."""

    SKIP = "skip"
    FAIL = "fail"


@dataclass(frozen=True)
class BundleMember:
    """One manifest entry: a storage key and its name inside the archive."""

    key: str
    name: str
    size_bytes: Optional[int] = None
    content_type: Optional[str] = None


@dataclass(frozen=True)
class Bundle:
    """A parsed manifest ready to be streamed."""

    manifest_key: str
    name: str
    members: tuple[BundleMember, ...]
    expires_at: Optional[datetime] = None
    bundle_id: Optional[str] = None

    @property
    def total_bytes(self) -> int:
        """Sum of the member sizes recorded when the manifest was written."""
        return sum(member.size_bytes or 0 for member in self.members)


@dataclass
class Present:
    """The member exists and its stream is open."""

    member: BundleMember
    stream: ObjectStream


@dataclass
class Absent:
    """Storage reports the member as missing."""

    member: BundleMember


@dataclass
class TransientFailure:
    """Storage could not serve the member; the archive cannot continue."""

    member: BundleMember
    error: GatewayError


MemberFetch = Union[Present, Absent, TransientFailure]


def sanitize_archive_name(name: Optional[str]) -> str:
    """Make an archive name safe for a Content-Disposition header."""
    clean = sanitize_filename(name or DEFAULT_ARCHIVE_NAME)
    if not clean.lower().endswith(".zip"):
        clean = f"{clean}.zip"
    return clean


def member_name(display_name: Optional[str], key: str) -> str:
    """Name a member inside the archive without letting it escape the root."""
    raw = display_name or key.rsplit("/", 1)[-1] or "file"
    parts = [
        part
        for part in PurePosixPath(raw.replace("\\", "/")).parts
        if part not in ("/", ".", "..")
    ]
    name = "/".join(part for part in parts if part.strip())
    return "".join(ch for ch in name if ord(ch) >= 0x20) or "file"


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_manifest(raw: bytes, manifest_key: str) -> Bundle:
    """Parse manifest JSON into a :class:`Bundle`.

    Only the shape is checked here; whether each member exists is discovered
    while streaming.

    Raises:
        ClientInputError: If the manifest is not valid JSON, has the wrong
            shape, or lists no items
    """
    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ClientInputError(f"Manifest is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ClientInputError("Manifest must be a JSON object")

    items = document.get("items")
    if items is None:
        items = []
    if not isinstance(items, list):
        raise ClientInputError("Manifest items must be a list")
    if not items:
        raise ClientInputError("Manifest is empty")

    members = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not isinstance(item.get("key"), str):
            raise ClientInputError(f"Manifest item {index} has no key")
        key = item["key"]
        if not is_safe_key(key):
            raise ClientInputError(f"Manifest item {index} has an invalid key")
        display = item.get("name")
        size = item.get("size")
        content_type = item.get("type")
        members.append(
            BundleMember(
                key=key,
                name=member_name(str(display) if display else None, key),
                size_bytes=size if isinstance(size, int) and not isinstance(size, bool) else None,
                content_type=content_type if isinstance(content_type, str) else None,
            )
        )

    name = document.get("name")
    if name is not None and not isinstance(name, str):
        raise ClientInputError("Manifest name must be a string")

    bundle_id = document.get("id")

    expires_at = None
    if document.get("expiresAt"):
        try:
            expires_at = _parse_timestamp(str(document["expiresAt"]))
        except ValueError as e:
            raise ClientInputError(f"Manifest expiresAt is invalid: {e}") from e

    return Bundle(
        manifest_key=manifest_key,
        name=sanitize_archive_name(name),
        members=tuple(members),
        expires_at=expires_at,
        bundle_id=bundle_id if isinstance(bundle_id, str) else None,
    )


class _DrainBuffer:
    """Write-only, non-seekable sink for ``zipfile``.

    ``zipfile`` falls back to streaming mode (data descriptors after each
    member) when its file object cannot seek, so the archive can be emitted
    front to back.
    """

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer += data
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        pass

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def _unique_name(name: str, used: set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, dot, suffix = name.rpartition(".")
    if not dot or not stem:
        stem, suffix = name, ""
    counter = 2
    while True:
        candidate = f"{stem} ({counter}).{suffix}" if suffix else f"{stem} ({counter})"
        if candidate not in used:
            used.add(candidate)
            return candidate
        counter += 1


class BundleAssembler:
    """Builds ZIP archives from manifests stored in the bucket."""

    def __init__(
        self,
        provider: StorageProvider,
        compression_level: int = 6,
        missing_member_policy: MissingMemberPolicy = MissingMemberPolicy.SKIP,
        max_manifest_bytes: int = 2 * 1024 * 1024,
        manifest_prefix: str = "bundles",
    ):
        self.provider = provider
        self.compression_level = compression_level
        self.missing_member_policy = MissingMemberPolicy(missing_member_policy)
        self.max_manifest_bytes = max_manifest_bytes
        self.manifest_prefix = manifest_prefix

    async def open(self, manifest_key: str, now: Optional[datetime] = None) -> Bundle:
        """Fetch and parse a manifest before any response bytes are sent.

        Raises:
            ClientInputError: If the key or manifest is malformed or empty
            UpstreamNotFound: If the manifest does not exist
            BundleExpired: If the manifest's expiry has passed
        """
        if not manifest_key or not is_safe_key(manifest_key):
            raise ClientInputError("Invalid manifest key")

        stream = await self.provider.get_object_stream(manifest_key)
        try:
            raw = await stream.read_all(self.max_manifest_bytes)
        except ValueError as e:
            raise ClientInputError(f"Manifest exceeds {self.max_manifest_bytes} bytes") from e
        finally:
            await stream.aclose()

        bundle = parse_manifest(raw, manifest_key)
        now = now or datetime.now(timezone.utc)
        if bundle.expires_at is not None and bundle.expires_at < now:
            raise BundleExpired("Bundle has expired")
        return bundle

    async def fetch_member(self, member: BundleMember) -> MemberFetch:
        """Open a member's stream and classify the outcome."""
        try:
            stream = await self.provider.get_object_stream(member.key)
        except UpstreamNotFound:
            return Absent(member)
        except GatewayError as e:
            return TransientFailure(member, e)
        return Present(member, stream)

    async def stream(self, bundle: Bundle) -> AsyncIterator[bytes]:
        """Yield the archive bytes for a bundle.

        Once the first byte has been yielded the HTTP status is fixed, so a
        failure can only end the stream early; clients must treat a
        truncated archive as an error.
        """
        buffer = _DrainBuffer()
        archive = zipfile.ZipFile(
            buffer,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.compression_level,
        )
        used_names: set[str] = set()
        written = 0
        skipped = 0

        for member in bundle.members:
            fetch = await self.fetch_member(member)

            if isinstance(fetch, Absent):
                if self.missing_member_policy is MissingMemberPolicy.FAIL:
                    logger.error(
                        "Bundle member missing, aborting archive",
                        extra={"manifest_key": bundle.manifest_key, "member_key": member.key},
                    )
                    raise UpstreamNotFound(f"Bundle member not found: {member.key}")
                logger.warning(
                    "Bundle member missing, skipped",
                    extra={"manifest_key": bundle.manifest_key, "member_key": member.key},
                )
                skipped += 1
                continue

            if isinstance(fetch, TransientFailure):
                logger.error(
                    f"Bundle member unavailable, aborting archive: {fetch.error}",
                    extra={
                        "manifest_key": bundle.manifest_key,
                        "member_key": member.key,
                        "category": fetch.error.category,
                    },
                )
                raise fetch.error

            name = _unique_name(member.name, used_names)
            try:
                with archive.open(name, mode="w", force_zip64=True) as entry:
                    async for chunk in fetch.stream:
                        entry.write(chunk)
                        data = buffer.drain()
                        if data:
                            yield data
            finally:
                await fetch.stream.aclose()

            written += 1
            data = buffer.drain()
            if data:
                yield data

        archive.close()
        tail = buffer.drain()
        if tail:
            yield tail

        logger.info(
            "Bundle streamed",
            extra={
                "manifest_key": bundle.manifest_key,
                "members_written": written,
                "members_skipped": skipped,
            },
        )

    def manifest_key_for(self, bundle_id: str) -> str:
        """Storage key of the manifest written for ``bundle_id``.

        Raises:
            ClientInputError: If the id is not a token this service issues
        """
        if not bundle_id or not _BUNDLE_ID.fullmatch(bundle_id):
            raise ClientInputError("Invalid bundle id")
        return f"{self.manifest_prefix}/{bundle_id}/manifest.json"

    async def _describe(self, member: BundleMember) -> BundleMember:
        metadata = await self.provider.head_object(member.key)
        if metadata is None:
            return member
        return BundleMember(
            key=member.key,
            name=member.name,
            size_bytes=metadata.size_bytes,
            content_type=metadata.content_type,
        )

    async def create_manifest(
        self,
        items: Iterable[BundleMember],
        name: Optional[str] = None,
        expires_in_days: int = 7,
    ) -> Bundle:
        """Store a new manifest in the bucket.

        Sizes and content types are recorded for members that exist now. A
        missing member is still listed; whether it is present is decided
        again when the bundle is streamed.
        """
        members = tuple(items)
        if not members:
            raise ClientInputError("items must not be empty")
        for member in members:
            if not is_safe_key(member.key):
                raise ClientInputError(f"Invalid key: {member.key!r}")

        members = tuple([await self._describe(member) for member in members])

        expires_in_days = max(1, min(30, expires_in_days))
        created_at = datetime.now(timezone.utc)
        expires_at = created_at + timedelta(days=expires_in_days)
        bundle_id = secrets.token_urlsafe(8)
        manifest_key = self.manifest_key_for(bundle_id)
        archive_name = sanitize_archive_name(name or f"mixtli-{bundle_id}.zip")

        entries = []
        for member in members:
            entry = {"key": member.key, "name": member.name}
            if member.size_bytes is not None:
                entry["size"] = member.size_bytes
            if member.content_type:
                entry["type"] = member.content_type
            entries.append(entry)

        bundle = Bundle(
            manifest_key=manifest_key,
            name=archive_name,
            members=members,
            expires_at=expires_at,
            bundle_id=bundle_id,
        )
        document = {
            "id": bundle_id,
            "version": MANIFEST_VERSION,
            "name": archive_name,
            "createdAt": created_at.isoformat().replace("+00:00", "Z"),
            "expiresAt": expires_at.isoformat().replace("+00:00", "Z"),
            "count": len(members),
            "totalBytes": bundle.total_bytes,
            "items": entries,
        }
        await self.provider.put_object(
            manifest_key,
            json.dumps(document, indent=2).encode("utf-8"),
            "application/json",
        )

        logger.info(
            "Bundle manifest created",
            extra={
                "manifest_key": manifest_key,
                "count": len(members),
                "total_bytes": bundle.total_bytes,
            },
        )
        return bundle
