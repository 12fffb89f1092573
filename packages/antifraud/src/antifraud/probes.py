"""Independent risk probes.

Each probe reads the usage ledger (or static data) for one signal and
returns a RiskFactor, or None when the signal does not contribute. Probes
share no state and all use the same reference time, so the scorer can run
them concurrently.

To swap the coarse VPN/proxy heuristic for a real IP-intelligence provider,
subclass RiskProbe with factor = RiskFactorName.VPN_PROXY and pass it to
RiskScorer in place of VpnProxyProbe.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from antifraud.db.models import utcnow
from antifraud.email_validator import is_disposable_email
from antifraud.exceptions import NotFoundError
from antifraud.repositories import UsageLedgerRepository
from antifraud.schemas import RiskFactor, RiskFactorName

logger = logging.getLogger("antifraud.probes")


@dataclass
class SignupData:
    """Request context collected for one risk assessment."""

    ip: str
    email: str
    fingerprint: str | None = None
    coupon_id: str | None = None
    now: datetime = field(default_factory=utcnow)


class RiskProbe:
    """Base class for a single scoring signal."""

    factor: RiskFactorName

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        raise NotImplementedError

    def _factor(self, score: int, description: str) -> RiskFactor | None:
        if score <= 0:
            return None
        return RiskFactor(factor=self.factor, score=score, description=description)


class IpReuseProbe(RiskProbe):
    """+20 per usage from the same IP in the last 24h, capped at 60."""

    factor = RiskFactorName.IP_REUSE

    SCORE_PER_USE = 20
    MAX_SCORE = 60
    WINDOW = timedelta(hours=24)

    def __init__(self, ledger: UsageLedgerRepository):
        self.ledger = ledger

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        count = await self.ledger.count_usages_by_ip(data.ip, data.now - self.WINDOW)
        return self._factor(
            min(count * self.SCORE_PER_USE, self.MAX_SCORE),
            f"IP usado {count} vez(es) nas últimas 24h",
        )


class FingerprintReuseProbe(RiskProbe):
    """+30 per usage from the same device in the last 7 days, capped at 90."""

    factor = RiskFactorName.FINGERPRINT_REUSE

    SCORE_PER_USE = 30
    MAX_SCORE = 90
    WINDOW = timedelta(days=7)

    def __init__(self, ledger: UsageLedgerRepository):
        self.ledger = ledger

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        if not data.fingerprint:
            return None
        count = await self.ledger.count_usages_by_fingerprint(
            data.fingerprint, data.now - self.WINDOW
        )
        return self._factor(
            min(count * self.SCORE_PER_USE, self.MAX_SCORE),
            f"Dispositivo usado {count} vez(es) nos últimos 7 dias",
        )


class DisposableEmailProbe(RiskProbe):
    """Flat 40 for a known temporary inbox domain."""

    factor = RiskFactorName.TEMPORARY_EMAIL

    SCORE = 40

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        if not is_disposable_email(data.email):
            return None
        return self._factor(self.SCORE, "Email temporário ou descartável detectado")


class VpnProxyProbe(RiskProbe):
    """Coarse proxy heuristic: many distinct users behind one public IP."""

    factor = RiskFactorName.VPN_PROXY

    SCORE = 25
    MAX_DISTINCT_USERS = 5
    WINDOW = timedelta(hours=24)
    LOCAL_ADDRESSES = frozenset(["127.0.0.1", "::1"])
    PRIVATE_PREFIXES = ("192.168.", "10.")

    def __init__(self, ledger: UsageLedgerRepository):
        self.ledger = ledger

    def _is_local(self, ip: str) -> bool:
        return ip in self.LOCAL_ADDRESSES or ip.startswith(self.PRIVATE_PREFIXES)

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        if self._is_local(data.ip):
            return None
        distinct_users = await self.ledger.count_distinct_users_by_ip(
            data.ip, data.now - self.WINDOW
        )
        if distinct_users <= self.MAX_DISTINCT_USERS:
            return None
        return self._factor(self.SCORE, "Possível uso de VPN ou Proxy")


class VelocityProbe(RiskProbe):
    """Flat 15 for 3+ usages from the same IP within an hour."""

    factor = RiskFactorName.HIGH_VELOCITY

    SCORE = 15
    MIN_ATTEMPTS = 3
    WINDOW = timedelta(hours=1)

    def __init__(self, ledger: UsageLedgerRepository):
        self.ledger = ledger

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        count = await self.ledger.count_usages_by_ip(data.ip, data.now - self.WINDOW)
        if count < self.MIN_ATTEMPTS:
            return None
        return self._factor(
            self.SCORE, "Múltiplas tentativas de registro em curto período"
        )


class CouponAbuseProbe(RiskProbe):
    """+30 each for hitting the coupon's per-IP and per-fingerprint caps."""

    factor = RiskFactorName.COUPON_ABUSE

    SCORE_PER_LIMIT = 30

    def __init__(self, ledger: UsageLedgerRepository):
        self.ledger = ledger

    async def evaluate(self, data: SignupData) -> RiskFactor | None:
        if not data.coupon_id:
            return None

        try:
            coupon = await self.ledger.get_coupon(data.coupon_id)
        except NotFoundError:
            logger.info(f"Coupon {data.coupon_id} not found - skipping abuse check")
            return None

        since = data.now - timedelta(hours=coupon.cooldown_hours)
        usages = await self.ledger.list_coupon_usages(coupon.id, since)

        score = 0
        reasons = []

        ip_count = sum(1 for u in usages if u.ip_address == data.ip)
        if coupon.max_uses_per_ip and ip_count >= coupon.max_uses_per_ip:
            score += self.SCORE_PER_LIMIT
            reasons.append(f"IP {ip_count}/{coupon.max_uses_per_ip}")

        if data.fingerprint and coupon.max_uses_per_fingerprint:
            fingerprint_count = sum(
                1 for u in usages if u.device_fingerprint == data.fingerprint
            )
            if fingerprint_count >= coupon.max_uses_per_fingerprint:
                score += self.SCORE_PER_LIMIT
                reasons.append(
                    f"dispositivo {fingerprint_count}/{coupon.max_uses_per_fingerprint}"
                )

        return self._factor(
            score, f"Cupom usado múltiplas vezes ({', '.join(reasons)})"
        )


def default_probes(ledger: UsageLedgerRepository) -> list[RiskProbe]:
    """The six standard probes, in reporting order."""
    return [
        IpReuseProbe(ledger),
        FingerprintReuseProbe(ledger),
        DisposableEmailProbe(),
        VpnProxyProbe(ledger),
        VelocityProbe(ledger),
        CouponAbuseProbe(ledger),
    ]
