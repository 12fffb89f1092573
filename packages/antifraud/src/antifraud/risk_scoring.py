"""Risk scoring system for anti-fraud protection.

Calculates a risk score (0-100) for a signup or coupon redemption.
Higher scores indicate higher fraud risk.

Flow:
1. Blacklist veto - an active entry short-circuits to score 100 / block
2. All probes run concurrently against the same reference time
3. Non-zero factor scores are summed and capped at 100
4. The score maps to approve / verify / block
"""

import asyncio
import ipaddress
import logging
from collections.abc import Callable
from datetime import datetime

from antifraud.blacklist import BlacklistStore
from antifraud.config import Settings
from antifraud.db.models import ActionTaken, utcnow
from antifraud.email_validator import validate_email_domain
from antifraud.exceptions import PersistenceError, ValidationError
from antifraud.probes import RiskProbe, SignupData, default_probes
from antifraud.repositories import UsageLedgerRepository
from antifraud.schemas import (
    Recommendation,
    RiskAssessment,
    RiskFactor,
    RiskFactorName,
)

logger = logging.getLogger("antifraud.risk_scoring")

_ACTIONS = {
    Recommendation.APPROVE: ActionTaken.APPROVED,
    Recommendation.VERIFY: ActionTaken.EMAIL_VERIFICATION,
    Recommendation.BLOCK: ActionTaken.BLOCKED,
}


def action_taken_for(recommendation: Recommendation) -> ActionTaken:
    """Map a recommendation to the action recorded in the risk log."""
    return _ACTIONS[recommendation]


class RiskScorer:
    """Calculates risk scores for signup attempts."""

    MAX_SCORE = 100

    # Action thresholds
    THRESHOLD_VERIFY = 30  # 30-70: Require email verification
    THRESHOLD_BLOCK = 71  # 71+: Block
    # 0-29: Approve

    def __init__(
        self,
        blacklist: BlacklistStore,
        ledger: UsageLedgerRepository,
        probes: list[RiskProbe] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the risk scorer.

        Args:
            blacklist: Store used for the veto check.
            ledger: Usage ledger read by the default probes.
            probes: Probes to run; defaults to the six standard probes.
            settings: Timeouts and failure policy.
            clock: Source of the reference time shared by all probes.
        """
        self.blacklist = blacklist
        self.probes = probes if probes is not None else default_probes(ledger)
        self.settings = settings or Settings()
        self._clock = clock

    async def assess(
        self,
        ip: str,
        email: str,
        fingerprint: str | None = None,
        coupon_id: str | None = None,
    ) -> RiskAssessment:
        """Score a signup or coupon redemption.

        Raises:
            ValidationError: If the IP or email is malformed.
        """
        self._validate(ip, email)
        ip = ip.strip()
        email = email.strip()
        fingerprint = fingerprint or None
        coupon_id = coupon_id or None

        veto = await self._check_blacklist(ip, email, fingerprint)
        if veto is not None:
            return veto

        data = SignupData(
            ip=ip,
            email=email,
            fingerprint=fingerprint,
            coupon_id=coupon_id,
            now=self._clock(),
        )
        results = await asyncio.gather(*(self._run_probe(p, data) for p in self.probes))
        factors = [f for f in results if f is not None and f.score > 0]

        score = min(sum(f.score for f in factors), self.MAX_SCORE)
        recommendation = self.get_action(score)

        logger.info(
            f"Risk assessed: ip={ip} score={score} "
            f"recommendation={recommendation.value} "
            f"factors={[f.factor.value for f in factors]}"
        )
        return RiskAssessment(
            risk_score=score,
            factors=factors,
            recommendation=recommendation,
            requires_verification=recommendation == Recommendation.VERIFY,
        )

    def get_action(self, score: int) -> Recommendation:
        """Determine action based on risk score."""
        if score >= self.THRESHOLD_BLOCK:
            return Recommendation.BLOCK
        elif score >= self.THRESHOLD_VERIFY:
            return Recommendation.VERIFY
        else:
            return Recommendation.APPROVE

    def _validate(self, ip: str, email: str) -> None:
        if not ip or not ip.strip():
            raise ValidationError("IP address is required")
        try:
            ipaddress.ip_address(ip.strip())
        except ValueError:
            raise ValidationError(f"Invalid IP address: {ip!r}") from None

        is_valid, error = validate_email_domain(email)
        if not is_valid:
            raise ValidationError(error)

    async def _check_blacklist(
        self, ip: str, email: str, fingerprint: str | None
    ) -> RiskAssessment | None:
        """Run the veto check. Returns a block assessment or None to keep scoring."""
        try:
            check = await asyncio.wait_for(
                self.blacklist.check_registration(email, ip, fingerprint),
                timeout=self.settings.blacklist_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return self._blacklist_unavailable(
                f"timed out after {self.settings.blacklist_timeout_seconds}s"
            )
        except PersistenceError as e:
            return self._blacklist_unavailable(str(e))

        if not check.is_blocked:
            return None
        return self._blocked(RiskFactorName.BLACKLISTED, f"Bloqueado: {check.reason}")

    def _blacklist_unavailable(self, error: str) -> RiskAssessment | None:
        """Apply the failure policy when the veto lookup cannot complete."""
        if not self.settings.fail_closed:
            logger.error(f"Blacklist unavailable, continuing (fail-open): {error}")
            return None
        logger.error(f"Blacklist unavailable, blocking (fail-closed): {error}")
        return self._blocked(
            RiskFactorName.BLACKLIST_UNAVAILABLE,
            "Bloqueado: verificação de lista de bloqueio indisponível",
        )

    def _blocked(self, name: RiskFactorName, description: str) -> RiskAssessment:
        return RiskAssessment(
            risk_score=self.MAX_SCORE,
            factors=[RiskFactor(factor=name, score=self.MAX_SCORE, description=description)],
            recommendation=Recommendation.BLOCK,
            requires_verification=False,
        )

    async def _run_probe(self, probe: RiskProbe, data: SignupData) -> RiskFactor | None:
        """Run one probe with a timeout. Failures degrade the probe to score 0."""
        try:
            return await asyncio.wait_for(
                probe.evaluate(data), timeout=self.settings.probe_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Probe {probe.factor.value} timed out after "
                f"{self.settings.probe_timeout_seconds}s - scoring 0"
            )
        except Exception as e:
            logger.warning(f"Probe {probe.factor.value} failed - scoring 0: {e}")
        return None

