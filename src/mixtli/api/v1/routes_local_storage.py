"""Signed-URL endpoints for the local filesystem backend.

These routes play the part of the storage service when ``STORAGE_BACKEND``
is ``local``: clients PUT and GET against them with the URLs the gateway
signed, exactly as they would against S3.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import StreamingResponse

from mixtli.core.errors import UpstreamNotFound
from mixtli.storage.base import StorageProvider
from mixtli.storage.factory import get_storage_provider
from mixtli.storage.local import ROUTE_PREFIX, LocalStorageProvider

router = APIRouter(prefix=ROUTE_PREFIX, tags=["local-storage"])


def get_local_provider(
    provider: StorageProvider = Depends(get_storage_provider),
) -> LocalStorageProvider:
    if not isinstance(provider, LocalStorageProvider):
        raise UpstreamNotFound("Local storage is not enabled")
    return provider


@router.put("/{key:path}")
async def put_object(
    key: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
    upload_id: Optional[str] = Query(None, alias="uploadId"),
    part_number: Optional[int] = Query(None, alias="partNumber"),
    provider: LocalStorageProvider = Depends(get_local_provider),
) -> Response:
    """Receive an object or a multipart part through a signed URL."""
    if upload_id:
        provider.verify_signature(
            "PUT", key, expires, signature, upload_id=upload_id, part_number=part_number or 0
        )
        etag = await provider.write_part(upload_id, key, part_number or 0, request.stream())
    else:
        content_type = request.headers.get("content-type", "")
        provider.verify_signature("PUT", key, expires, signature, content_type=content_type)
        etag = await provider.write_object(key, request.stream(), content_type)

    return Response(status_code=200, headers={"ETag": etag})


@router.get("/{key:path}")
async def get_object(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    provider: LocalStorageProvider = Depends(get_local_provider),
) -> StreamingResponse:
    """Serve an object through a signed URL."""
    provider.verify_signature("GET", key, expires, signature)
    stream = await provider.get_object_stream(key)

    async def body():
        try:
            async for chunk in stream:
                yield chunk
        finally:
            await stream.aclose()

    headers = {}
    if stream.size_bytes is not None:
        headers["Content-Length"] = str(stream.size_bytes)
    return StreamingResponse(body(), media_type=stream.content_type, headers=headers)
