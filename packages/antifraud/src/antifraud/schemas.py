"""Pydantic value objects returned by the anti-fraud core.

These are computed per call and never persisted directly; risk decisions
reach the database through RiskLog rows.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from antifraud.db.models import BlacklistType

# =============================================================================
# Enums
# =============================================================================


class RiskFactorName(str, Enum):
    """Named signals contributing to the risk score."""

    BLACKLISTED = "blacklisted"
    BLACKLIST_UNAVAILABLE = "blacklist_unavailable"
    IP_REUSE = "ip_reuse"
    FINGERPRINT_REUSE = "fingerprint_reuse"
    TEMPORARY_EMAIL = "temporary_email"
    VPN_PROXY = "vpn_proxy"
    HIGH_VELOCITY = "high_velocity"
    COUPON_ABUSE = "coupon_abuse"


class Recommendation(str, Enum):
    """What the registration workflow should do next."""

    APPROVE = "approve"
    VERIFY = "verify"
    BLOCK = "block"


# =============================================================================
# Risk assessment
# =============================================================================


class RiskFactor(BaseModel):
    """One independently computed contribution to the risk score."""

    factor: RiskFactorName
    score: int = Field(ge=0)
    description: str


class RiskAssessment(BaseModel):
    """Outcome of scoring a signup or coupon redemption."""

    risk_score: int = Field(ge=0, le=100)
    factors: list[RiskFactor] = Field(default_factory=list)
    recommendation: Recommendation
    requires_verification: bool = False

    def factor_score(self, name: RiskFactorName) -> int:
        """Score of a single factor, 0 if it did not contribute."""
        return sum(f.score for f in self.factors if f.factor == name)


# =============================================================================
# Blacklist / verification / stats
# =============================================================================


class BlacklistCheck(BaseModel):
    """Result of the registration veto check."""

    is_blocked: bool
    reason: str | None = None
    type: BlacklistType | None = None


class VerificationResult(BaseModel):
    """Result of validating a verification code."""

    valid: bool
    expired: bool


class UsageSummary(BaseModel):
    """A recent coupon usage, as reported in usage stats."""

    user_id: str
    ip_address: str
    device_fingerprint: str | None = None
    risk_score: int
    created_at: datetime


class CouponUsageStats(BaseModel):
    """Recent usage of a coupon by an IP and/or fingerprint."""

    total: int
    by_ip: int
    by_fingerprint: int
    recent_usages: list[UsageSummary] = Field(default_factory=list)
