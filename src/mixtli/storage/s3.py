"""S3-compatible storage provider (AWS S3, Cloudflare R2, MinIO)."""

import asyncio
import logging
from typing import Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from mixtli.core.errors import (
    ClientInputError,
    GatewayError,
    UpstreamForbidden,
    UpstreamNotFound,
    UpstreamTransientError,
    UpstreamUnauthorized,
)
from mixtli.storage.base import (
    DEFAULT_READ_CHUNK_BYTES,
    CompletedPart,
    ObjectMetadata,
    ObjectStream,
    StorageProvider,
)

logger = logging.getLogger(__name__)

_UNAUTHORIZED_CODES = {
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "TokenRefreshRequired",
    "401",
}
_FORBIDDEN_CODES = {"AccessDenied", "AllAccessDisabled", "Forbidden", "403"}
_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchUpload", "NotFound", "404"}
_CLIENT_CODES = {
    "InvalidPart",
    "InvalidPartOrder",
    "EntityTooSmall",
    "EntityTooLarge",
    "InvalidArgument",
    "InvalidRequest",
    "MalformedXML",
    "KeyTooLongError",
    "400",
}


def translate_s3_error(error: Exception, key: str = "") -> GatewayError:
    """Map a botocore exception onto the gateway error taxonomy."""
    if isinstance(error, GatewayError):
        return error

    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = str(details.get("Code", ""))
        message = details.get("Message") or code or str(error)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

        if code in _UNAUTHORIZED_CODES or status == 401:
            return UpstreamUnauthorized(f"Storage rejected credentials: {message}")
        if code in _FORBIDDEN_CODES or status == 403:
            return UpstreamForbidden(f"Storage denied access to {key or 'bucket'}: {message}")
        if code in _NOT_FOUND_CODES or status == 404:
            return UpstreamNotFound(f"Not found: {key or code}")
        if code in _CLIENT_CODES or (status is not None and 400 <= status < 500):
            return ClientInputError(f"Storage rejected request: {message}")
        return UpstreamTransientError(f"Storage error ({code or status}): {message}")

    if isinstance(error, NoCredentialsError):
        return UpstreamUnauthorized("No storage credentials available")
    if isinstance(error, BotoCoreError):
        return UpstreamTransientError(f"Storage unreachable: {error}")
    return UpstreamTransientError(f"Storage call failed: {error}")


class S3StorageProvider(StorageProvider):
    """S3-compatible storage provider using SigV4 presigning."""

    def __init__(
        self,
        bucket: str,
        endpoint: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "auto",
        force_path_style: bool = True,
        read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES,
        client=None,
    ):
        self._bucket = bucket
        self._read_chunk_bytes = read_chunk_bytes
        if client is None:
            if endpoint and not endpoint.startswith(("http://", "https://")):
                endpoint = f"https://{endpoint}"
            client = boto3.client(
                "s3",
                endpoint_url=endpoint or None,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=Config(
                    signature_version="s3v4",
                    s3={"addressing_style": "path" if force_path_style else "auto"},
                ),
            )
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "S3StorageProvider":
        """Build a provider from application settings."""
        return cls(
            bucket=settings.S3_BUCKET,
            endpoint=settings.S3_ENDPOINT,
            access_key=settings.S3_ACCESS_KEY_ID,
            secret_key=settings.S3_SECRET_ACCESS_KEY,
            region=settings.S3_REGION,
            force_path_style=settings.S3_FORCE_PATH_STYLE,
            read_chunk_bytes=settings.BUNDLE_READ_CHUNK_BYTES,
        )

    async def _call(self, operation: str, key: str, **params):
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, Bucket=self._bucket, Key=key, **params)
        except (ClientError, BotoCoreError) as e:
            error = translate_s3_error(e, key)
            logger.warning(
                f"S3 {operation} failed for {key}: {e}",
                extra={"operation": operation, "bucket": self._bucket, "category": error.category},
            )
            raise error from e

    async def _presign(self, operation: str, ttl_seconds: int, **params) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                operation,
                Params={"Bucket": self._bucket, **params},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_s3_error(e, params.get("Key", "")) from e

    async def sign_put(self, key: str, content_type: str, ttl_seconds: int) -> str:
        return await self._presign("put_object", ttl_seconds, Key=key, ContentType=content_type)

    async def sign_get(self, key: str, ttl_seconds: int) -> str:
        return await self._presign("get_object", ttl_seconds, Key=key)

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._call("create_multipart_upload", key, ContentType=content_type)
        return response["UploadId"]

    async def sign_upload_part(
        self, upload_id: str, key: str, part_number: int, ttl_seconds: int
    ) -> str:
        return await self._presign(
            "upload_part",
            ttl_seconds,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
        )

    async def complete_multipart_upload(
        self, upload_id: str, key: str, parts: Sequence[CompletedPart]
    ) -> Optional[str]:
        response = await self._call(
            "complete_multipart_upload",
            key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"ETag": part.etag, "PartNumber": part.part_number} for part in parts]
            },
        )
        return response.get("Location")

    async def abort_multipart_upload(self, upload_id: str, key: str) -> None:
        await self._call("abort_multipart_upload", key, UploadId=upload_id)

    async def get_object_stream(self, key: str) -> ObjectStream:
        response = await self._call("get_object", key)
        return ObjectStream(
            response["Body"],
            key=key,
            size_bytes=response.get("ContentLength"),
            content_type=response.get("ContentType") or "application/octet-stream",
            chunk_size=self._read_chunk_bytes,
            translate_error=translate_s3_error,
        )

    async def head_object(self, key: str) -> Optional[ObjectMetadata]:
        try:
            response = await self._call("head_object", key)
        except UpstreamNotFound:
            return None
        return ObjectMetadata(
            key=key,
            size_bytes=response.get("ContentLength", 0),
            content_type=response.get("ContentType") or "application/octet-stream",
            etag=response.get("ETag"),
        )

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        await self._call("put_object", key, Body=data, ContentType=content_type)

    def get_backend_name(self) -> str:
        return "s3"
