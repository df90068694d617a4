"""Multipart upload routes.

Every request carries the full session identity (upload id and key), so any
instance of the gateway can serve any step of a session.
"""

from fastapi import APIRouter, Body, Depends

from mixtli.api.deps import get_multipart_coordinator, get_plan
from mixtli.models.transfer import (
    MultipartAbortRequest,
    MultipartCompleteRequest,
    MultipartCompleteResponse,
    MultipartCreateRequest,
    MultipartCreateResponse,
    MultipartPartUrlRequest,
    MultipartPartUrlResponse,
    OkResponse,
)
from mixtli.services.multipart import MultipartCoordinator
from mixtli.services.quota import Plan
from mixtli.storage.base import CompletedPart

router = APIRouter(prefix="/api/v1/multipart", tags=["multipart"])


@router.post("/create", response_model=MultipartCreateResponse)
async def create_multipart(
    request: MultipartCreateRequest = Body(...),
    plan: Plan = Depends(get_plan),
    coordinator: MultipartCoordinator = Depends(get_multipart_coordinator),
) -> MultipartCreateResponse:
    """Open a multipart upload for a large file."""
    session = await coordinator.create(
        filename=request.filename,
        declared_size=request.size,
        content_type=request.content_type,
        plan=plan,
        part_size=request.part_size,
    )
    return MultipartCreateResponse(
        upload_id=session.client_upload_id,
        key=session.key,
        part_size=session.part_size,
    )


@router.post("/part-url", response_model=MultipartPartUrlResponse)
async def sign_part(
    request: MultipartPartUrlRequest = Body(...),
    coordinator: MultipartCoordinator = Depends(get_multipart_coordinator),
) -> MultipartPartUrlResponse:
    """Sign the URL for one part."""
    url = await coordinator.part_url(request.upload_id, request.key, request.part_number)
    return MultipartPartUrlResponse(url=url)


@router.post("/complete", response_model=MultipartCompleteResponse)
async def complete_multipart(
    request: MultipartCompleteRequest = Body(...),
    coordinator: MultipartCoordinator = Depends(get_multipart_coordinator),
) -> MultipartCompleteResponse:
    """Complete a multipart upload with the client's part list."""
    parts = [CompletedPart(part_number=p.part_number, etag=p.etag) for p in request.parts]
    completed = await coordinator.complete(request.upload_id, request.key, parts)
    return MultipartCompleteResponse(key=completed.key, location=completed.location)


@router.post("/abort", response_model=OkResponse)
async def abort_multipart(
    request: MultipartAbortRequest = Body(...),
    coordinator: MultipartCoordinator = Depends(get_multipart_coordinator),
) -> OkResponse:
    """Abort a multipart upload and discard its parts."""
    await coordinator.abort(request.upload_id, request.key)
    return OkResponse()
