"""Tests for the Google Cloud Storage provider."""

from unittest.mock import MagicMock

import pytest
import requests
from google.api_core import exceptions as api_exceptions

from mixtli.core.errors import (
    ClientInputError,
    UpstreamForbidden,
    UpstreamNotFound,
    UpstreamTransientError,
    UpstreamUnauthorized,
)
from mixtli.storage.base import CompletedPart
from mixtli.storage.gcs import GCSStorageProvider, translate_gcs_error

INITIATE_RESPONSE = """<?xml version="1.0" encoding="UTF-8"?>
<InitiateMultipartUploadResult xmlns="http://s3.amazonaws.com/doc/2006-03-01/">
  <Bucket>mixtli-bucket</Bucket>
  <Key>uploads/a.bin</Key>
  <UploadId>VXBsb2FkIElE</UploadId>
</InitiateMultipartUploadResult>"""


def xml_response(status_code=200, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def gcs_client():
    return MagicMock()


@pytest.fixture
def gcs_session():
    return MagicMock()


@pytest.fixture
def gcs_provider(gcs_client, gcs_session):
    return GCSStorageProvider(
        bucket_name="mixtli-bucket", client=gcs_client, session=gcs_session, signing_key_file="key.json"
    )


@pytest.mark.parametrize(
    "error,expected",
    [
        (api_exceptions.NotFound("gone"), UpstreamNotFound),
        (api_exceptions.Unauthorized("who"), UpstreamUnauthorized),
        (api_exceptions.Forbidden("no"), UpstreamForbidden),
        (api_exceptions.BadRequest("bad"), ClientInputError),
        (api_exceptions.ServiceUnavailable("down"), UpstreamTransientError),
        (ConnectionError("reset"), UpstreamTransientError),
    ],
)
def test_translate_gcs_error(error, expected):
    assert type(translate_gcs_error(error, "uploads/a.txt")) is expected


@pytest.mark.asyncio
async def test_sign_put_uses_v4(gcs_provider, gcs_client, monkeypatch):
    signing_credentials = MagicMock()
    monkeypatch.setattr(gcs_provider, "_get_signing_credentials", lambda: signing_credentials)
    blob = gcs_client.bucket.return_value.blob.return_value
    blob.generate_signed_url.return_value = "https://storage.googleapis.com/signed"

    url = await gcs_provider.sign_put("uploads/a.txt", "text/plain", 600)

    assert url == "https://storage.googleapis.com/signed"
    kwargs = blob.generate_signed_url.call_args.kwargs
    assert kwargs["version"] == "v4"
    assert kwargs["method"] == "PUT"
    assert kwargs["content_type"] == "text/plain"
    assert kwargs["expiration"].total_seconds() == 600
    assert kwargs["credentials"] is signing_credentials


@pytest.mark.asyncio
async def test_sign_upload_part_adds_query_parameters(gcs_provider, gcs_client, monkeypatch):
    monkeypatch.setattr(gcs_provider, "_get_signing_credentials", lambda: MagicMock())
    blob = gcs_client.bucket.return_value.blob.return_value
    blob.generate_signed_url.return_value = "https://storage.googleapis.com/part"

    await gcs_provider.sign_upload_part("VXBsb2FkIElE", "uploads/a.bin", 4, 600)

    kwargs = blob.generate_signed_url.call_args.kwargs
    assert kwargs["query_parameters"] == {"uploadId": "VXBsb2FkIElE", "partNumber": "4"}


@pytest.mark.asyncio
async def test_create_multipart_upload(gcs_provider, gcs_session):
    gcs_session.request.return_value = xml_response(200, INITIATE_RESPONSE)

    upload_id = await gcs_provider.create_multipart_upload("uploads/a.bin", "application/zip")

    assert upload_id == "VXBsb2FkIElE"
    method, url = gcs_session.request.call_args.args
    assert method == "POST"
    assert url == "https://storage.googleapis.com/mixtli-bucket/uploads/a.bin?uploads"


@pytest.mark.asyncio
async def test_complete_multipart_upload_sends_xml(gcs_provider, gcs_session):
    gcs_session.request.return_value = xml_response(200, "<CompleteMultipartUploadResult/>")

    location = await gcs_provider.complete_multipart_upload(
        "VXBsb2FkIElE", "uploads/a.bin", [CompletedPart(1, '"e1"'), CompletedPart(2, '"e2"')]
    )

    assert location == "gs://mixtli-bucket/uploads/a.bin"
    call = gcs_session.request.call_args
    assert call.args[1].endswith("?uploadId=VXBsb2FkIElE")
    body = call.kwargs["data"].decode("utf-8")
    assert "<PartNumber>1</PartNumber>" in body
    assert body.index("<PartNumber>1</PartNumber>") < body.index("<PartNumber>2</PartNumber>")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,expected",
    [
        (401, UpstreamUnauthorized),
        (403, UpstreamForbidden),
        (404, UpstreamNotFound),
        (400, ClientInputError),
        (503, UpstreamTransientError),
    ],
)
async def test_xml_errors_translated(gcs_provider, gcs_session, status, expected):
    gcs_session.request.return_value = xml_response(status, "<Error/>")

    with pytest.raises(expected):
        await gcs_provider.abort_multipart_upload("VXBsb2FkIElE", "uploads/a.bin")


@pytest.mark.asyncio
async def test_xml_network_failure(gcs_provider, gcs_session):
    gcs_session.request.side_effect = requests.ConnectionError("reset")

    with pytest.raises(UpstreamTransientError):
        await gcs_provider.create_multipart_upload("uploads/a.bin", "application/zip")


@pytest.mark.asyncio
async def test_head_missing_object(gcs_provider, gcs_client):
    gcs_client.bucket.return_value.blob.return_value.reload.side_effect = api_exceptions.NotFound("gone")

    assert await gcs_provider.head_object("uploads/none.txt") is None


@pytest.mark.asyncio
async def test_get_object_stream(gcs_provider, gcs_client):
    import io

    blob = gcs_client.bucket.return_value.blob.return_value
    blob.size = 3
    blob.content_type = "text/plain"
    blob.open.return_value = io.BytesIO(b"abc")

    stream = await gcs_provider.get_object_stream("uploads/a.txt")

    assert await stream.read_all(10) == b"abc"
    assert stream.size_bytes == 3
    await stream.aclose()
