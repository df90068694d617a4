"""Pytest configuration and shared fixtures."""

import io
import os
import time
from typing import Dict, Optional, Sequence

import pytest

from mixtli.core.errors import UpstreamNotFound, UpstreamTransientError
from mixtli.services.quota import Plan, QuotaResolver
from mixtli.storage.base import CompletedPart, ObjectMetadata, ObjectStream, StorageProvider
from mixtli.storage.local import LocalStorageProvider

MB = 1024 * 1024


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class GeneratedReader:
    """Blocking reader producing ``size`` random bytes without holding them."""

    def __init__(self, size: int):
        self.remaining = size
        self.closed = False

    def read(self, n: int) -> bytes:
        if self.closed or self.remaining <= 0:
            return b""
        count = min(n, self.remaining)
        self.remaining -= count
        return os.urandom(count)

    def close(self) -> None:
        self.closed = True


class FailingReader:
    """Reader that serves some bytes, then loses the connection."""

    def __init__(self, good_bytes: bytes):
        self._data = io.BytesIO(good_bytes)

    def read(self, n: int) -> bytes:
        chunk = self._data.read(n)
        if not chunk:
            raise ConnectionResetError("connection reset by peer")
        return chunk

    def close(self) -> None:
        pass


class SlowReader:
    """Reader that takes ``delay`` seconds per chunk and never runs dry."""

    def __init__(self, delay: float = 0.05):
        self.delay = delay
        self.reads = 0
        self.closed = False

    def read(self, n: int) -> bytes:
        time.sleep(self.delay)
        self.reads += 1
        return b"s" * min(n, 1024)

    def close(self) -> None:
        self.closed = True


class InMemoryProvider(StorageProvider):
    """Read-side provider backed by readers built on demand."""

    def __init__(self, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size
        self.objects: Dict[str, bytes] = {}
        self.generated: Dict[str, int] = {}
        self.unavailable: set[str] = set()
        self.broken: Dict[str, bytes] = {}
        self.slow: Dict[str, SlowReader] = {}
        self.opened: list[ObjectStream] = []

    async def get_object_stream(self, key: str) -> ObjectStream:
        if key in self.unavailable:
            raise UpstreamTransientError(f"Storage unreachable for {key}")
        if key in self.objects:
            reader = io.BytesIO(self.objects[key])
            size = len(self.objects[key])
        elif key in self.generated:
            reader = GeneratedReader(self.generated[key])
            size = self.generated[key]
        elif key in self.broken:
            reader = FailingReader(self.broken[key])
            size = None
        elif key in self.slow:
            reader = self.slow[key]
            size = None
        else:
            raise UpstreamNotFound(f"Not found: {key}")
        stream = ObjectStream(reader, key=key, size_bytes=size, chunk_size=self.chunk_size)
        self.opened.append(stream)
        return stream

    async def head_object(self, key: str) -> Optional[ObjectMetadata]:
        if key not in self.objects:
            return None
        return ObjectMetadata(key=key, size_bytes=len(self.objects[key]), content_type="application/octet-stream")

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        self.objects[key] = data

    async def sign_put(self, key: str, content_type: str, ttl_seconds: int) -> str:
        return f"https://storage.test/{key}?X-Amz-Expires={ttl_seconds}&method=PUT"

    async def sign_get(self, key: str, ttl_seconds: int) -> str:
        return f"https://storage.test/{key}?X-Amz-Expires={ttl_seconds}&method=GET"

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        raise NotImplementedError

    async def sign_upload_part(self, upload_id: str, key: str, part_number: int, ttl_seconds: int) -> str:
        raise NotImplementedError

    async def complete_multipart_upload(
        self, upload_id: str, key: str, parts: Sequence[CompletedPart]
    ) -> Optional[str]:
        raise NotImplementedError

    async def abort_multipart_upload(self, upload_id: str, key: str) -> None:
        raise NotImplementedError

    def get_backend_name(self) -> str:
        return "memory"


async def chunks_of(*parts: bytes):
    """Async iterator over the given byte strings."""
    for part in parts:
        yield part


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def local_provider(tmp_path, clock):
    """Filesystem provider whose signed URLs point at the test client."""
    return LocalStorageProvider(
        base_path=tmp_path / "storage",
        signing_secret="test-secret",
        public_base_url="http://testserver",
        clock=clock,
    )


@pytest.fixture
def memory_provider():
    return InMemoryProvider()


@pytest.fixture
def quota():
    """Small plan limits so tests can cross them cheaply."""
    return QuotaResolver(
        {Plan.FREE: 10 * MB, Plan.PRO: 100 * MB, Plan.PROMAX: 1000 * MB},
        default_plan="free",
    )
