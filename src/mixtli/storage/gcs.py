"""Google Cloud Storage provider.

Single-shot transfers use V4 signed URLs from the JSON client. Multipart
uploads use the GCS XML API, which speaks the S3 multipart protocol
(``?uploads``, ``?uploadId=&partNumber=``) and accepts V4 signatures.
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from datetime import timedelta
from typing import Optional, Sequence
from urllib.parse import quote

import google.auth
import requests
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.auth.transport.requests import AuthorizedSession
from google.cloud import storage
from google.oauth2 import service_account

from mixtli.core.errors import (
    ClientInputError,
    ConfigurationError,
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

XML_API_ENDPOINT = "https://storage.googleapis.com"
_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_write"]


def translate_gcs_error(error: Exception, key: str = "") -> GatewayError:
    """Map a Google client exception onto the gateway error taxonomy."""
    if isinstance(error, GatewayError):
        return error
    if isinstance(error, api_exceptions.NotFound):
        return UpstreamNotFound(f"Not found: {key or error}")
    if isinstance(error, api_exceptions.Unauthorized):
        return UpstreamUnauthorized(f"Storage rejected credentials: {error}")
    if isinstance(error, api_exceptions.Forbidden):
        return UpstreamForbidden(f"Storage denied access to {key or 'bucket'}: {error}")
    if isinstance(error, auth_exceptions.RefreshError):
        return UpstreamUnauthorized(f"Could not refresh storage credentials: {error}")
    if isinstance(error, api_exceptions.ClientError):
        return ClientInputError(f"Storage rejected request: {error}")
    return UpstreamTransientError(f"Storage call failed: {error}")


def _status_error(status_code: int, body: str, key: str) -> GatewayError:
    if status_code == 401:
        return UpstreamUnauthorized(f"Storage rejected credentials: {body}")
    if status_code == 403:
        return UpstreamForbidden(f"Storage denied access to {key}: {body}")
    if status_code == 404:
        return UpstreamNotFound(f"Not found: {key}")
    if 400 <= status_code < 500:
        return ClientInputError(f"Storage rejected request: {body}")
    return UpstreamTransientError(f"Storage error ({status_code}): {body}")


def _find_text(document: str, tag: str) -> Optional[str]:
    """Find an element's text in an XML API response, ignoring namespaces."""
    root = ET.fromstring(document)
    for element in root.iter():
        if element.tag == tag or element.tag.endswith("}" + tag):
            return element.text
    return None


class GCSStorageProvider(StorageProvider):
    """Google Cloud Storage provider."""

    def __init__(
        self,
        bucket_name: str,
        project_id: Optional[str] = None,
        signing_key_file: Optional[str] = None,
        read_chunk_bytes: int = DEFAULT_READ_CHUNK_BYTES,
        client: Optional[storage.Client] = None,
        session: Optional[AuthorizedSession] = None,
    ):
        self.bucket_name = bucket_name
        self._signing_key_file = signing_key_file
        self._read_chunk_bytes = read_chunk_bytes
        self._signing_credentials = None

        if client is None or session is None:
            try:
                credentials, default_project = google.auth.default(scopes=_SCOPES)
            except auth_exceptions.DefaultCredentialsError as e:
                raise ConfigurationError(f"No Google credentials available: {e}") from e
            if client is None:
                client = storage.Client(
                    project=project_id or default_project, credentials=credentials
                )
            if session is None:
                session = AuthorizedSession(credentials)

        self._client = client
        self._session = session
        self._bucket = client.bucket(bucket_name)

    @classmethod
    def from_settings(cls, settings) -> "GCSStorageProvider":
        """Build a provider from application settings."""
        return cls(
            bucket_name=settings.GCS_BUCKET_NAME,
            project_id=settings.GCP_PROJECT_ID or None,
            signing_key_file=settings.GCS_SIGNING_KEY_FILE or None,
            read_chunk_bytes=settings.BUNDLE_READ_CHUNK_BYTES,
        )

    def _get_signing_credentials(self):
        """Credentials able to sign URLs without a local private key.

        With a key file configured the service account signs directly.
        Otherwise signing goes through the IAM signBlob API, which needs
        roles/iam.serviceAccountTokenCreator on the runtime service account.
        """
        if self._signing_credentials is not None:
            return self._signing_credentials

        if self._signing_key_file:
            self._signing_credentials = service_account.Credentials.from_service_account_file(
                self._signing_key_file
            )
            return self._signing_credentials

        from google.auth import compute_engine, iam
        from google.auth.transport import requests as auth_requests

        credentials = compute_engine.Credentials()
        auth_request = auth_requests.Request()
        credentials.refresh(auth_request)
        service_account_email = credentials.service_account_email

        signer = iam.Signer(
            request=auth_request,
            credentials=credentials,
            service_account_email=service_account_email,
        )
        # token_uri is required by the constructor; signing itself uses the IAM signer
        self._signing_credentials = service_account.Credentials(
            signer=signer,
            service_account_email=service_account_email,
            token_uri="https://oauth2.googleapis.com/token",
        )
        return self._signing_credentials

    def _generate_signed_url(
        self,
        key: str,
        method: str,
        ttl_seconds: int,
        content_type: Optional[str] = None,
        query_parameters: Optional[dict] = None,
    ) -> str:
        blob = self._bucket.blob(key)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=ttl_seconds),
            method=method,
            content_type=content_type,
            query_parameters=query_parameters,
            credentials=self._get_signing_credentials(),
        )

    async def _sign(self, key: str, method: str, ttl_seconds: int, **kwargs) -> str:
        try:
            return await asyncio.to_thread(
                self._generate_signed_url, key, method, ttl_seconds, **kwargs
            )
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise translate_gcs_error(e, key) from e

    def _xml_url(self, key: str) -> str:
        return f"{XML_API_ENDPOINT}/{self.bucket_name}/{quote(key, safe='/')}"

    async def _xml_request(self, method: str, key: str, query: str, **kwargs) -> requests.Response:
        url = f"{self._xml_url(key)}?{query}"
        try:
            response = await asyncio.to_thread(self._session.request, method, url, **kwargs)
        except auth_exceptions.RefreshError as e:
            raise UpstreamUnauthorized(f"Could not refresh storage credentials: {e}") from e
        except (requests.RequestException, auth_exceptions.TransportError) as e:
            raise UpstreamTransientError(f"Storage unreachable: {e}") from e

        if response.status_code >= 400:
            error = _status_error(response.status_code, response.text, key)
            logger.warning(
                f"GCS XML {method} failed for {key}",
                extra={"http_status": response.status_code, "category": error.category},
            )
            raise error
        return response

    async def sign_put(self, key: str, content_type: str, ttl_seconds: int) -> str:
        return await self._sign(key, "PUT", ttl_seconds, content_type=content_type)

    async def sign_get(self, key: str, ttl_seconds: int) -> str:
        return await self._sign(key, "GET", ttl_seconds)

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._xml_request(
            "POST", key, "uploads", headers={"Content-Type": content_type, "Content-Length": "0"}
        )
        upload_id = _find_text(response.text, "UploadId")
        if not upload_id:
            raise UpstreamTransientError(f"Storage returned no upload id for {key}")
        return upload_id

    async def sign_upload_part(
        self, upload_id: str, key: str, part_number: int, ttl_seconds: int
    ) -> str:
        return await self._sign(
            key,
            "PUT",
            ttl_seconds,
            query_parameters={"uploadId": upload_id, "partNumber": str(part_number)},
        )

    async def complete_multipart_upload(
        self, upload_id: str, key: str, parts: Sequence[CompletedPart]
    ) -> Optional[str]:
        root = ET.Element("CompleteMultipartUpload")
        for part in parts:
            element = ET.SubElement(root, "Part")
            ET.SubElement(element, "PartNumber").text = str(part.part_number)
            ET.SubElement(element, "ETag").text = part.etag
        body = ET.tostring(root, encoding="utf-8")

        response = await self._xml_request(
            "POST",
            key,
            f"uploadId={quote(upload_id, safe='')}",
            data=body,
            headers={"Content-Type": "application/xml"},
        )
        return _find_text(response.text, "Location") or f"gs://{self.bucket_name}/{key}"

    async def abort_multipart_upload(self, upload_id: str, key: str) -> None:
        await self._xml_request("DELETE", key, f"uploadId={quote(upload_id, safe='')}")

    def _open_blob(self, key: str):
        blob = self._bucket.blob(key)
        blob.reload()
        return blob, blob.open("rb", chunk_size=max(self._read_chunk_bytes, 256 * 1024))

    async def get_object_stream(self, key: str) -> ObjectStream:
        try:
            blob, reader = await asyncio.to_thread(self._open_blob, key)
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise translate_gcs_error(e, key) from e
        return ObjectStream(
            reader,
            key=key,
            size_bytes=blob.size,
            content_type=blob.content_type or "application/octet-stream",
            chunk_size=self._read_chunk_bytes,
            translate_error=translate_gcs_error,
        )

    async def head_object(self, key: str) -> Optional[ObjectMetadata]:
        blob = self._bucket.blob(key)
        try:
            await asyncio.to_thread(blob.reload)
        except api_exceptions.NotFound:
            return None
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise translate_gcs_error(e, key) from e
        return ObjectMetadata(
            key=key,
            size_bytes=blob.size or 0,
            content_type=blob.content_type or "application/octet-stream",
            etag=blob.etag,
        )

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        blob = self._bucket.blob(key)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise translate_gcs_error(e, key) from e

    def get_backend_name(self) -> str:
        return "gcs"
