"""Anti-fraud core for signups and coupon redemption.

Provides multi-layer protection against abuse:
- TTL-backed blacklist veto (IP, device fingerprint, email domain)
- Risk scoring over usage history
- Auto-escalation of repeat offenders
- Short-lived verification codes
"""

from antifraud.blacklist import BlacklistStore
from antifraud.config import Settings, load_settings
from antifraud.db.models import ActionTaken, BlacklistType
from antifraud.escalation import AutoEscalator
from antifraud.exceptions import (
    AntiFraudError,
    ConfigurationError,
    ExpiredError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from antifraud.jobs import BlacklistCleanupJob
from antifraud.request_context import extract_real_ip, extract_user_agent
from antifraud.risk_scoring import RiskScorer
from antifraud.schemas import (
    BlacklistCheck,
    Recommendation,
    RiskAssessment,
    RiskFactor,
    RiskFactorName,
    VerificationResult,
)
from antifraud.service import AntiFraudService
from antifraud.verification import VerificationCodeService, generate_code

__all__ = [
    "ActionTaken",
    "AntiFraudError",
    "AntiFraudService",
    "AutoEscalator",
    "BlacklistCheck",
    "BlacklistCleanupJob",
    "BlacklistStore",
    "BlacklistType",
    "ConfigurationError",
    "ExpiredError",
    "NotFoundError",
    "PersistenceError",
    "Recommendation",
    "RiskAssessment",
    "RiskFactor",
    "RiskFactorName",
    "RiskScorer",
    "Settings",
    "ValidationError",
    "VerificationCodeService",
    "VerificationResult",
    "extract_real_ip",
    "extract_user_agent",
    "generate_code",
    "load_settings",
]
