"""Bundle routes: store a manifest, stream it back as one ZIP."""

import logging
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse

from mixtli.api.deps import get_bundle_assembler
from mixtli.core.config import settings
from mixtli.core.logging import storage_key_context
from mixtli.models.transfer import (
    BundleCreateRequest,
    BundleCreateResponse,
    BundleInfoItem,
    BundleInfoResponse,
)
from mixtli.services.bundle import BundleAssembler, BundleMember, member_name

router = APIRouter(prefix="/api/v1", tags=["bundle"])
logger = logging.getLogger(__name__)


@router.post("/bundles", response_model=BundleCreateResponse, status_code=201)
async def create_bundle(
    request: BundleCreateRequest = Body(...),
    assembler: BundleAssembler = Depends(get_bundle_assembler),
) -> BundleCreateResponse:
    """Store a manifest naming previously uploaded objects."""
    members = [BundleMember(key=item.key, name=member_name(item.name, item.key)) for item in request.items]
    bundle = await assembler.create_manifest(
        members,
        name=request.name,
        expires_in_days=request.expires_in_days or settings.LINK_TTL_DAYS,
    )
    return BundleCreateResponse(
        manifest_key=bundle.manifest_key,
        name=bundle.name,
        count=len(bundle.members),
        download_path=f"{router.prefix}/bundle?m={quote(bundle.manifest_key)}",
        expires_at=bundle.expires_at,
        id=bundle.bundle_id,
    )


@router.get("/bundles/{bundle_id}", response_model=BundleInfoResponse)
async def get_bundle(
    bundle_id: str,
    assembler: BundleAssembler = Depends(get_bundle_assembler),
) -> BundleInfoResponse:
    """Describe a stored bundle without streaming it."""
    manifest_key = assembler.manifest_key_for(bundle_id)
    storage_key_context.set(manifest_key)
    bundle = await assembler.open(manifest_key)

    logger.info(
        "Bundle described",
        extra={"manifest_key": manifest_key, "members": len(bundle.members)},
    )
    return BundleInfoResponse(
        id=bundle_id,
        name=bundle.name,
        count=len(bundle.members),
        total_bytes=bundle.total_bytes,
        items=[
            BundleInfoItem(key=m.key, name=m.name, size=m.size_bytes, type=m.content_type)
            for m in bundle.members
        ],
        expires_at=bundle.expires_at,
        download_path=f"{router.prefix}/bundle?m={quote(manifest_key)}",
    )


@router.get("/bundle")
async def stream_bundle(
    m: str = Query("", description="Manifest key"),
    assembler: BundleAssembler = Depends(get_bundle_assembler),
) -> StreamingResponse:
    """Stream every object named by a manifest as one ZIP archive.

    The manifest is read and validated before the response starts, so an
    empty or missing manifest still gets a proper 4xx status.
    """
    storage_key_context.set(m or None)
    bundle = await assembler.open(m)

    logger.info(
        "Streaming bundle",
        extra={"manifest_key": bundle.manifest_key, "members": len(bundle.members)},
    )
    return StreamingResponse(
        assembler.stream(bundle),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{bundle.name}"',
            "Cache-Control": "no-store",
        },
    )
