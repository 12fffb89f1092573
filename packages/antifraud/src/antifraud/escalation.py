"""Automatic promotion of repeat offenders into the blacklist.

Runs after an event is finalized, whatever the decision was. Safe to call
repeatedly: the blacklist upsert refreshes an existing entry instead of
adding a second one.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from antifraud.blacklist import BlacklistStore
from antifraud.db.models import BlacklistType, utcnow
from antifraud.repositories import UsageLedgerRepository

logger = logging.getLogger("antifraud.escalation")


class AutoEscalator:
    """Blacklists IPs and devices that keep coming back."""

    IP_THRESHOLD = 5
    IP_WINDOW = timedelta(hours=24)
    IP_BLOCK_HOURS = 24

    FINGERPRINT_THRESHOLD = 3
    FINGERPRINT_WINDOW = timedelta(days=7)
    FINGERPRINT_BLOCK_HOURS = 168

    def __init__(
        self,
        blacklist: BlacklistStore,
        ledger: UsageLedgerRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.blacklist = blacklist
        self.ledger = ledger
        self._clock = clock

    async def escalate(
        self, ip: str, fingerprint: str | None = None
    ) -> list[BlacklistType]:
        """Blacklist the IP and/or fingerprint if they crossed their thresholds.

        Returns:
            The identifier types that were (re)blacklisted.
        """
        now = self._clock()
        escalated: list[BlacklistType] = []

        ip_count = await self.ledger.count_usages_by_ip(ip, now - self.IP_WINDOW)
        if ip_count >= self.IP_THRESHOLD:
            await self.blacklist.add(
                BlacklistType.IP,
                ip,
                f"Auto-bloqueado: {ip_count} registros em 24h",
                self.IP_BLOCK_HOURS,
                auto_added=True,
            )
            escalated.append(BlacklistType.IP)

        if fingerprint:
            fingerprint_count = await self.ledger.count_usages_by_fingerprint(
                fingerprint, now - self.FINGERPRINT_WINDOW
            )
            if fingerprint_count >= self.FINGERPRINT_THRESHOLD:
                await self.blacklist.add(
                    BlacklistType.FINGERPRINT,
                    fingerprint,
                    f"Auto-bloqueado: {fingerprint_count} registros em 7 dias",
                    self.FINGERPRINT_BLOCK_HOURS,
                    auto_added=True,
                )
                escalated.append(BlacklistType.FINGERPRINT)

        if escalated:
            logger.warning(
                f"Auto-escalated {[t.value for t in escalated]} for ip={ip} "
                f"fingerprint={fingerprint}"
            )
        return escalated
