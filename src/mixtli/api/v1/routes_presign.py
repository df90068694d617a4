"""Single-shot presigned transfer routes."""

from fastapi import APIRouter, Body, Depends, Query

from mixtli.api.deps import get_plan, get_presign_broker
from mixtli.models.transfer import PresignRequest, PresignResponse, SignGetResponse
from mixtli.services.presign import PresignBroker
from mixtli.services.quota import Plan

router = APIRouter(prefix="/api/v1", tags=["presign"])


@router.post("/presign", response_model=PresignResponse)
async def presign_upload(
    request: PresignRequest = Body(...),
    plan: Plan = Depends(get_plan),
    broker: PresignBroker = Depends(get_presign_broker),
) -> PresignResponse:
    """Issue a presigned PUT URL for a new object."""
    transfer = await broker.presign_put(
        filename=request.filename,
        declared_size=request.size,
        content_type=request.content_type,
        plan=plan,
    )
    return PresignResponse(
        key=transfer.key,
        put_url=transfer.url,
        expires_in=transfer.expires_in,
        expires_at=transfer.expires_at,
    )


@router.get("/sign-get", response_model=SignGetResponse)
async def sign_get(
    key: str = Query(""),
    broker: PresignBroker = Depends(get_presign_broker),
) -> SignGetResponse:
    """Issue a presigned GET URL for an existing key."""
    transfer = await broker.presign_get(key)
    return SignGetResponse(
        key=transfer.key,
        get_url=transfer.url,
        expires_in=transfer.expires_in,
        expires_at=transfer.expires_at,
    )
