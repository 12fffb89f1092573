"""TTL-backed blacklist of IPs, device fingerprints and email domains.

An active entry unconditionally vetoes a signup or coupon redemption before
any risk probe runs. Entries are either permanent (no expiry) or expire
after a number of hours; expired rows are swept by cleanup_expired().

Usage:

    store = BlacklistStore(SqlBlacklistRepository(session_factory))

    # Block an IP for 24 hours
    await store.add(BlacklistType.IP, "203.0.113.7", "brute force", expires_in_hours=24)

    # Veto check during registration
    check = await store.check_registration(email, ip, fingerprint)
    if check.is_blocked:
        ...
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from antifraud.db.models import BlacklistEntry, BlacklistType, utcnow
from antifraud.email_validator import get_domain
from antifraud.repositories import BlacklistRepository
from antifraud.schemas import BlacklistCheck

logger = logging.getLogger("antifraud.blacklist")


class BlacklistStore:
    """Query and manage the blacklist."""

    def __init__(
        self,
        repository: BlacklistRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self._clock = clock

    async def is_blacklisted(self, bl_type: BlacklistType, value: str) -> bool:
        """Check if an identifier has an active entry."""
        entry = await self.repository.find_active(bl_type, value, self._clock())
        return entry is not None

    async def add(
        self,
        bl_type: BlacklistType,
        value: str,
        reason: str,
        expires_in_hours: float | None = None,
        auto_added: bool = False,
    ) -> None:
        """Insert or refresh an entry in one atomic upsert.

        Args:
            bl_type: Kind of identifier.
            value: Identifier to block.
            reason: Why it is blocked. A refresh stores "<reason> (atualizado)".
            expires_in_hours: Lifetime of the block, None for permanent.
            auto_added: True when added by auto-escalation.
        """
        now = self._clock()
        expires_at = (
            now + timedelta(hours=expires_in_hours)
            if expires_in_hours is not None
            else None
        )
        await self.repository.upsert(
            bl_type, value, reason, expires_at, auto_added, now
        )
        logger.info(
            f"Blacklist entry saved: type={bl_type.value} value={value} "
            f"reason={reason} expires_at={expires_at} auto={auto_added}"
        )

    async def remove(self, bl_type: BlacklistType, value: str) -> int:
        """Delete every row for the key. Returns the number removed."""
        removed = await self.repository.delete(bl_type, value)
        if removed:
            logger.info(f"Blacklist entry removed: type={bl_type.value} value={value}")
        return removed

    async def list(self, bl_type: BlacklistType | None = None) -> list[BlacklistEntry]:
        """All entries, newest first, optionally filtered by type."""
        return await self.repository.list_entries(bl_type)

    async def cleanup_expired(self) -> int:
        """Delete entries whose expiry has passed. Returns the number removed."""
        removed = await self.repository.delete_expired(self._clock())
        if removed:
            logger.info(f"Removed {removed} expired blacklist entries")
        return removed

    async def check_multiple(
        self, checks: Iterable[tuple[BlacklistType, str]]
    ) -> bool:
        """True on the first active match, without checking the rest."""
        for bl_type, value in checks:
            if await self.is_blacklisted(bl_type, value):
                return True
        return False

    async def check_registration(
        self,
        email: str,
        ip: str,
        fingerprint: str | None = None,
    ) -> BlacklistCheck:
        """Veto check for a registration attempt.

        Checks the email domain, then the IP, then the fingerprint (if any),
        and reports the first hit.
        """
        now = self._clock()
        checks: list[tuple[BlacklistType, str]] = []

        domain = get_domain(email)
        if domain:
            checks.append((BlacklistType.EMAIL_DOMAIN, domain))
        checks.append((BlacklistType.IP, ip))
        if fingerprint:
            checks.append((BlacklistType.FINGERPRINT, fingerprint))

        for bl_type, value in checks:
            entry = await self.repository.find_active(bl_type, value, now)
            if entry is not None:
                logger.warning(
                    f"Blacklist hit: type={bl_type.value} value={value} "
                    f"reason={entry.reason}"
                )
                return BlacklistCheck(is_blocked=True, reason=entry.reason, type=bl_type)

        return BlacklistCheck(is_blocked=False)
