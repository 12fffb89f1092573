"""Entry point used by the registration and coupon-redemption workflow.

AntiFraudService wires the blacklist, risk scorer, auto-escalator and
verification-code service over injected repositories.

Flow:
1. assess_risk(ip, email, fingerprint, coupon_id) -> RiskAssessment
2. track_usage(...) / log_risk(...) once the event is finalized
3. auto_escalate(ip, fingerprint) to promote repeat offenders
4. issue/validate verification codes when the assessment requires it
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from antifraud.blacklist import BlacklistStore
from antifraud.config import Settings
from antifraud.db.models import ActionTaken, BlacklistType, utcnow
from antifraud.escalation import AutoEscalator
from antifraud.exceptions import ValidationError
from antifraud.probes import RiskProbe
from antifraud.repositories import (
    BlacklistRepository,
    SessionRepository,
    SqlBlacklistRepository,
    SqlSessionRepository,
    SqlUsageLedgerRepository,
    UsageLedgerRepository,
)
from antifraud.risk_scoring import RiskScorer, action_taken_for
from antifraud.schemas import (
    CouponUsageStats,
    RiskAssessment,
    RiskFactor,
    UsageSummary,
    VerificationResult,
)
from antifraud.verification import VerificationCodeService

logger = logging.getLogger("antifraud")


class AntiFraudService:
    """Fraud and abuse prevention for signups and coupon redemptions."""

    def __init__(
        self,
        ledger: UsageLedgerRepository,
        blacklist_repository: BlacklistRepository,
        sessions: SessionRepository,
        settings: Settings | None = None,
        probes: list[RiskProbe] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or Settings()
        self.ledger = ledger
        self._clock = clock

        self.blacklist = BlacklistStore(blacklist_repository, clock=clock)
        self.scorer = RiskScorer(
            self.blacklist, ledger, probes=probes, settings=self.settings, clock=clock
        )
        self.escalator = AutoEscalator(self.blacklist, ledger, clock=clock)
        self.verification = VerificationCodeService(
            sessions, settings=self.settings, clock=clock
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "AntiFraudService":
        """Build the service over the SQLAlchemy repositories."""
        return cls(
            ledger=SqlUsageLedgerRepository(session_factory),
            blacklist_repository=SqlBlacklistRepository(session_factory),
            sessions=SqlSessionRepository(session_factory),
            settings=settings,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # Risk
    # -------------------------------------------------------------------------

    async def assess_risk(
        self,
        ip: str,
        email: str,
        fingerprint: str | None = None,
        coupon_id: str | None = None,
    ) -> RiskAssessment:
        return await self.scorer.assess(ip, email, fingerprint, coupon_id)

    async def evaluate_and_record(
        self,
        ip: str,
        email: str,
        fingerprint: str | None = None,
        coupon_id: str | None = None,
        user_id: str | None = None,
    ) -> RiskAssessment:
        """Assess the request and append the decision to the risk log."""
        assessment = await self.assess_risk(ip, email, fingerprint, coupon_id)
        await self.log_risk(
            user_id,
            ip.strip(),
            fingerprint,
            assessment.risk_score,
            assessment.factors,
            action_taken_for(assessment.recommendation),
        )
        return assessment

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    async def track_usage(
        self,
        coupon_id: str | None,
        user_id: str,
        ip: str,
        user_agent: str,
        fingerprint: str | None = None,
        risk_score: int | None = None,
    ) -> None:
        """Append a coupon usage record."""
        if not user_id:
            raise ValidationError("user_id is required to track usage")
        if not ip:
            raise ValidationError("IP address is required to track usage")

        await self.ledger.add_usage(
            coupon_id=coupon_id,
            user_id=user_id,
            ip=ip,
            user_agent=user_agent or "Unknown",
            fingerprint=fingerprint,
            risk_score=risk_score or 0,
            now=self._clock(),
        )
        logger.info(
            f"Coupon usage tracked: {coupon_id} by {user_id} (risk: {risk_score})"
        )

    async def log_risk(
        self,
        user_id: str | None,
        ip: str,
        fingerprint: str | None,
        risk_score: int,
        factors: list[RiskFactor],
        action_taken: ActionTaken,
    ) -> None:
        """Append a risk decision to the audit trail."""
        if not ip:
            raise ValidationError("IP address is required to log risk")

        await self.ledger.add_risk_log(
            user_id=user_id,
            ip=ip,
            fingerprint=fingerprint,
            risk_score=risk_score,
            factors=[f.model_dump(mode="json") for f in factors],
            action_taken=ActionTaken(action_taken).value,
            now=self._clock(),
        )
        logger.info(
            f"Risk logged: {ip} - Score: {risk_score} - "
            f"Action: {ActionTaken(action_taken).value}"
        )

    async def get_coupon_usage_stats(
        self,
        coupon_id: str,
        ip: str | None = None,
        fingerprint: str | None = None,
    ) -> CouponUsageStats:
        """Recent usages of a coupon (last 10) and how many match the ip/fingerprint."""
        usages = await self.ledger.recent_coupon_usages(
            coupon_id, ip=ip, fingerprint=fingerprint, limit=10
        )
        return CouponUsageStats(
            total=len(usages),
            by_ip=sum(1 for u in usages if u.ip_address == ip) if ip else 0,
            by_fingerprint=(
                sum(1 for u in usages if u.device_fingerprint == fingerprint)
                if fingerprint
                else 0
            ),
            recent_usages=[
                UsageSummary(
                    user_id=u.user_id,
                    ip_address=u.ip_address,
                    device_fingerprint=u.device_fingerprint,
                    risk_score=u.risk_score,
                    created_at=u.created_at,
                )
                for u in usages
            ],
        )

    # -------------------------------------------------------------------------
    # Escalation / verification
    # -------------------------------------------------------------------------

    async def auto_escalate(
        self, ip: str, fingerprint: str | None = None
    ) -> list[BlacklistType]:
        return await self.escalator.escalate(ip, fingerprint)

    def generate_verification_code(self) -> str:
        return self.verification.generate_code()

    async def validate_verification_code(
        self, session_token: str, code: str
    ) -> VerificationResult:
        return await self.verification.validate_code(session_token, code)
