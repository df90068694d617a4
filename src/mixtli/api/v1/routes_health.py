"""Health check endpoint for Mixtli Transfer."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from mixtli.api.deps import get_quota_resolver
from mixtli.core.config import settings
from mixtli.services.quota import Plan, QuotaResolver

router = APIRouter()


@router.get("/health")
async def health_check(quota: QuotaResolver = Depends(get_quota_resolver)) -> dict:
    """Health check endpoint.

    Reports configured plan limits and URL lifetime without touching storage,
    so it stays fast during startup.
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "time": datetime.now(timezone.utc).isoformat(),
        "backend": settings.STORAGE_BACKEND,
        "limits": {plan.value: quota.limit_for(plan) for plan in Plan},
        "ttlSeconds": settings.URL_TTL_SECONDS,
        "defaultPlan": quota.default_plan.value,
        "multipart": settings.ENABLE_MULTIPART,
    }
