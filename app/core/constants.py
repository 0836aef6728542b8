# app/core/constants.py
from enum import Enum
from typing import Dict, Any, List


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"


class LicenseStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class AccessRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class IdentityProviderName(str, Enum):
    GOOGLE = "google"
    GITHUB = "github"


DEFAULT_PLAN_TIER = PlanTier.FREE

# Plan Limits Configuration
# The single source of truth for default budgets: license creation and
# usage-stats creation both read from here.
PLAN_LIMITS: Dict[str, Dict[str, Any]] = {
    PlanTier.FREE: {
        "monthly_token_quota": 1_000_000,
    },
    PlanTier.PRO: {
        "monthly_token_quota": 10_000_000,
    },
    PlanTier.TEAM: {
        "monthly_token_quota": 50_000_000,
    },
    PlanTier.ENTERPRISE: {
        "monthly_token_quota": 200_000_000,
    },
}


def monthly_token_quota(plan_tier: str) -> int:
    limits = PLAN_LIMITS.get(plan_tier, PLAN_LIMITS[DEFAULT_PLAN_TIER])
    return limits["monthly_token_quota"]


# Static product catalog, read-only configuration
PRODUCT_CATALOG: List[Dict[str, str]] = [
    {
        "code": "p16-gateway",
        "name": "Topoo Gateway",
        "description": "High-performance AI Gateway with quota management",
    },
    {
        "code": "p13-memory",
        "name": "Topoo Memory Hub",
        "description": "Personal AI Memory Storage",
    },
    {
        "code": "p14-desktop",
        "name": "Topoo Desktop",
        "description": "Unified AI Workspace",
    },
]

DEFAULT_INVITE_CODES: List[str] = [
    "TOPOO-2024-TEST-01",
    "TOPOO-2024-TEST-02",
    "TOPOO-VIP-8888",
]
