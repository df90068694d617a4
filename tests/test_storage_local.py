"""Tests for the local filesystem storage provider."""

from urllib.parse import parse_qs, urlparse

import pytest
from conftest import chunks_of

from mixtli.core.errors import ClientInputError, UpstreamForbidden, UpstreamNotFound
from mixtli.storage.local import ROUTE_PREFIX, LocalStorageProvider


def signed_params(url):
    parsed = urlparse(url)
    query = {name: values[0] for name, values in parse_qs(parsed.query).items()}
    return parsed, int(query["expires"]), query["signature"], query


@pytest.mark.asyncio
async def test_signed_put_url_points_at_local_routes(local_provider):
    url = await local_provider.sign_put("uploads/a.txt", "text/plain", 600)

    parsed, expires, signature, _ = signed_params(url)
    assert parsed.netloc == "testserver"
    assert parsed.path == f"{ROUTE_PREFIX}/uploads/a.txt"
    assert expires == int(local_provider._clock()) + 600
    local_provider.verify_signature("PUT", "uploads/a.txt", expires, signature, content_type="text/plain")


@pytest.mark.asyncio
async def test_signature_valid_until_expiry(local_provider, clock):
    """A URL verifies up to its expiry and is refused afterwards."""
    url = await local_provider.sign_get("uploads/a.txt", 600)
    _, expires, signature, _ = signed_params(url)

    clock.advance(599)
    local_provider.verify_signature("GET", "uploads/a.txt", expires, signature)

    clock.advance(2)
    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature("GET", "uploads/a.txt", expires, signature)


@pytest.mark.asyncio
async def test_signature_bound_to_method_key_and_content_type(local_provider):
    url = await local_provider.sign_put("uploads/a.txt", "text/plain", 600)
    _, expires, signature, _ = signed_params(url)

    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature("GET", "uploads/a.txt", expires, signature)
    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature("PUT", "uploads/b.txt", expires, signature, content_type="text/plain")
    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature("PUT", "uploads/a.txt", expires, signature, content_type="image/png")
    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature(
            "PUT", "uploads/a.txt", expires + 3600, signature, content_type="text/plain"
        )


@pytest.mark.asyncio
async def test_signature_from_other_secret_rejected(local_provider, tmp_path, clock):
    other = LocalStorageProvider(tmp_path / "other", signing_secret="other", clock=clock)
    url = await other.sign_get("uploads/a.txt", 600)
    _, expires, signature, _ = signed_params(url)

    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature("GET", "uploads/a.txt", expires, signature)


@pytest.mark.asyncio
async def test_write_and_read_object(local_provider):
    etag = await local_provider.write_object(
        "uploads/a.txt", chunks_of(b"hello ", b"world"), "text/plain"
    )

    metadata = await local_provider.head_object("uploads/a.txt")
    assert metadata.size_bytes == 11
    assert metadata.content_type == "text/plain"
    assert metadata.etag == etag == '"5eb63bbbe01eeed093cb22bb8f5acdc3"'

    stream = await local_provider.get_object_stream("uploads/a.txt")
    assert await stream.read_all(1024) == b"hello world"
    await stream.aclose()


@pytest.mark.asyncio
async def test_put_object_overwrites(local_provider):
    await local_provider.put_object("bundles/x/manifest.json", b"{}", "application/json")
    await local_provider.put_object("bundles/x/manifest.json", b"[]", "application/json")

    stream = await local_provider.get_object_stream("bundles/x/manifest.json")
    assert await stream.read_all(10) == b"[]"
    await stream.aclose()


@pytest.mark.asyncio
async def test_missing_object(local_provider):
    assert await local_provider.head_object("uploads/none.txt") is None
    with pytest.raises(UpstreamNotFound):
        await local_provider.get_object_stream("uploads/none.txt")


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["../escape.txt", "/abs.txt", "a//b"])
async def test_unsafe_keys_rejected(local_provider, key):
    with pytest.raises(ClientInputError):
        await local_provider.sign_put(key, "text/plain", 60)
    with pytest.raises(ClientInputError):
        await local_provider.head_object(key)


@pytest.mark.asyncio
async def test_multipart_part_urls_carry_upload_identity(local_provider):
    upload_id = await local_provider.create_multipart_upload("uploads/big.bin", "application/zip")
    url = await local_provider.sign_upload_part(upload_id, "uploads/big.bin", 7, 600)

    _, expires, signature, query = signed_params(url)
    assert query["uploadId"] == upload_id
    assert query["partNumber"] == "7"
    local_provider.verify_signature(
        "PUT", "uploads/big.bin", expires, signature, upload_id=upload_id, part_number=7
    )
    with pytest.raises(UpstreamForbidden):
        local_provider.verify_signature(
            "PUT", "uploads/big.bin", expires, signature, upload_id=upload_id, part_number=8
        )


@pytest.mark.asyncio
async def test_parts_require_known_upload_and_key(local_provider):
    upload_id = await local_provider.create_multipart_upload("uploads/big.bin", "application/zip")

    with pytest.raises(UpstreamNotFound):
        await local_provider.write_part("0000", "uploads/big.bin", 1, chunks_of(b"x"))
    with pytest.raises(UpstreamNotFound):
        await local_provider.write_part(upload_id, "uploads/other.bin", 1, chunks_of(b"x"))
    with pytest.raises(UpstreamNotFound):
        await local_provider.write_part("../etc", "uploads/big.bin", 1, chunks_of(b"x"))


@pytest.mark.asyncio
async def test_abort_unknown_upload(local_provider):
    with pytest.raises(UpstreamNotFound):
        await local_provider.abort_multipart_upload("feedface", "uploads/a.bin")
