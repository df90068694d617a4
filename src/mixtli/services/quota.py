"""Plan resolution and size admission.

Admission is advisory on the single-shot presigned path: the gateway never
sees the uploaded bytes, so a client can declare one size and PUT another.
It is a UX guard, not a security boundary. Real size enforcement, if any,
belongs to the storage service.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from mixtli.core.errors import ClientInputError, QuotaExceeded

logger = logging.getLogger(__name__)


class Plan(str, Enum):
    """Subscription plan enumeration."""

    FREE = "free"
    PRO = "pro"
    PROMAX = "promax"


@dataclass(frozen=True)
class Admission:
    """Outcome of a quota check."""

    allowed: bool
    plan: Plan
    limit_bytes: int


class QuotaResolver:
    """Maps plans to byte ceilings and admits declared sizes."""

    def __init__(self, limits: Mapping[Plan, int], default_plan: Optional[str] = None):
        missing = [plan.value for plan in Plan if plan not in limits]
        if missing:
            raise ValueError(f"Missing limits for plans: {', '.join(missing)}")
        self._limits = dict(limits)

        # Unknown configured default falls back to the most restrictive plan
        most_restrictive = min(self._limits, key=lambda plan: self._limits[plan])
        self.default_plan = self._parse(default_plan) or most_restrictive

    @classmethod
    def from_settings(cls, settings) -> "QuotaResolver":
        """Build a resolver from application settings."""
        limits = {Plan(name): value for name, value in settings.plan_limits.items()}
        return cls(limits, default_plan=settings.DEFAULT_PLAN)

    @staticmethod
    def _parse(raw: Optional[str]) -> Optional[Plan]:
        if not raw:
            return None
        try:
            return Plan(str(raw).strip().lower())
        except ValueError:
            return None

    def resolve_plan(self, raw: Optional[str]) -> Plan:
        """Resolve a header or query value to a plan, defaulting on unknowns."""
        plan = self._parse(raw)
        if plan is None:
            if raw:
                logger.debug(f"Unknown plan {raw!r}, using {self.default_plan.value}")
            return self.default_plan
        return plan

    def limit_for(self, plan: Plan) -> int:
        """Return the maximum object size in bytes for a plan."""
        return self._limits[plan]

    def admit(self, declared_size: int, plan: Plan) -> Admission:
        """Check a declared size against the plan limit."""
        if declared_size <= 0:
            raise ClientInputError("size must be a positive integer")
        limit = self.limit_for(plan)
        return Admission(allowed=declared_size <= limit, plan=plan, limit_bytes=limit)

    def ensure_admitted(self, declared_size: int, plan: Plan) -> Admission:
        """Admit a declared size or raise.

        Raises:
            QuotaExceeded: If the declared size exceeds the plan limit
        """
        admission = self.admit(declared_size, plan)
        if not admission.allowed:
            logger.info(
                "Upload denied by quota",
                extra={
                    "plan": plan.value,
                    "declared_size": declared_size,
                    "limit_bytes": admission.limit_bytes,
                },
            )
            raise QuotaExceeded(admission.limit_bytes)
        return admission
