"""FastAPI dependencies wiring services to the configured storage provider."""

from typing import Optional

from fastapi import Depends, Header, Query

from mixtli.core.config import settings
from mixtli.services.bundle import BundleAssembler
from mixtli.services.multipart import MultipartCoordinator
from mixtli.services.presign import PresignBroker
from mixtli.services.quota import Plan, QuotaResolver
from mixtli.storage.base import StorageProvider
from mixtli.storage.factory import get_storage_provider

PLAN_HEADER = "x-mixtli-plan"


def get_quota_resolver() -> QuotaResolver:
    """Build the quota resolver from current settings."""
    return QuotaResolver.from_settings(settings)


def get_plan(
    plan_header: Optional[str] = Header(None, alias=PLAN_HEADER),
    plan_query: Optional[str] = Query(None, alias="plan"),
    quota: QuotaResolver = Depends(get_quota_resolver),
) -> Plan:
    """Resolve the caller's plan from the plan header or query parameter."""
    if not settings.ENABLE_PLAN_HEADER:
        return quota.default_plan
    return quota.resolve_plan(plan_header or plan_query)


def get_presign_broker(
    provider: StorageProvider = Depends(get_storage_provider),
    quota: QuotaResolver = Depends(get_quota_resolver),
) -> PresignBroker:
    return PresignBroker(
        provider,
        quota,
        ttl_seconds=settings.URL_TTL_SECONDS,
        key_prefix=settings.key_prefix,
    )


def get_multipart_coordinator(
    provider: StorageProvider = Depends(get_storage_provider),
    quota: QuotaResolver = Depends(get_quota_resolver),
) -> MultipartCoordinator:
    return MultipartCoordinator(
        provider,
        quota,
        ttl_seconds=settings.URL_TTL_SECONDS,
        default_part_size=settings.multipart_part_size_bytes,
        key_prefix=settings.key_prefix,
        enabled=settings.ENABLE_MULTIPART,
    )


def get_bundle_assembler(
    provider: StorageProvider = Depends(get_storage_provider),
) -> BundleAssembler:
    return BundleAssembler(
        provider,
        compression_level=settings.BUNDLE_COMPRESSION_LEVEL,
        missing_member_policy=settings.BUNDLE_MISSING_MEMBER_POLICY,
        max_manifest_bytes=settings.MAX_MANIFEST_BYTES,
    )
