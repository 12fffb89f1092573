"""Persistence interfaces consumed by the anti-fraud core.

Each repository is a Protocol so services can be constructed with fakes in
tests. The SQL implementations open one short session per call, which lets
the risk probes query the ledger concurrently.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from antifraud.db.models import (
    BlacklistEntry,
    BlacklistType,
    Coupon,
    CouponUsage,
    RegistrationProgress,
    RiskLog,
    new_id,
)
from antifraud.exceptions import NotFoundError, PersistenceError

logger = logging.getLogger("antifraud.repositories")

UPDATED_SUFFIX = " (atualizado)"


@asynccontextmanager
async def _persistence_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise driver/ORM and connection failures as PersistenceError."""
    try:
        yield
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"{operation} failed: {e}")
        raise PersistenceError(f"{operation} failed") from e


# =============================================================================
# Interfaces
# =============================================================================


class BlacklistRepository(Protocol):
    async def find_active(
        self, bl_type: BlacklistType, value: str, now: datetime
    ) -> BlacklistEntry | None: ...

    async def upsert(
        self,
        bl_type: BlacklistType,
        value: str,
        reason: str,
        expires_at: datetime | None,
        auto_added: bool,
        now: datetime,
    ) -> None: ...

    async def delete(self, bl_type: BlacklistType, value: str) -> int: ...

    async def list_entries(
        self, bl_type: BlacklistType | None = None
    ) -> list[BlacklistEntry]: ...

    async def delete_expired(self, now: datetime) -> int: ...


class UsageLedgerRepository(Protocol):
    async def count_usages_by_ip(self, ip: str, since: datetime) -> int: ...

    async def count_usages_by_fingerprint(
        self, fingerprint: str, since: datetime
    ) -> int: ...

    async def count_distinct_users_by_ip(self, ip: str, since: datetime) -> int: ...

    async def get_coupon(self, coupon_id: str) -> Coupon: ...

    async def list_coupon_usages(
        self, coupon_id: str, since: datetime
    ) -> list[CouponUsage]: ...

    async def add_usage(
        self,
        coupon_id: str | None,
        user_id: str,
        ip: str,
        user_agent: str,
        fingerprint: str | None,
        risk_score: int,
        now: datetime,
    ) -> CouponUsage: ...

    async def add_risk_log(
        self,
        user_id: str | None,
        ip: str,
        fingerprint: str | None,
        risk_score: int,
        factors: list[dict[str, Any]],
        action_taken: str,
        now: datetime,
    ) -> RiskLog: ...

    async def recent_coupon_usages(
        self,
        coupon_id: str,
        ip: str | None = None,
        fingerprint: str | None = None,
        limit: int = 10,
    ) -> list[CouponUsage]: ...


class SessionRepository(Protocol):
    async def find_session(
        self, session_token: str, code: str
    ) -> RegistrationProgress | None: ...

    async def set_code(
        self, session_token: str, code: str, expires_at: datetime
    ) -> None: ...

    async def mark_consumed(self, session_id: str, now: datetime) -> bool: ...


# =============================================================================
# SQLAlchemy implementations
# =============================================================================


class SqlBlacklistRepository:
    """Blacklist storage with a unique (type, value) key and atomic upsert."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_active(
        self, bl_type: BlacklistType, value: str, now: datetime
    ) -> BlacklistEntry | None:
        async with _persistence_errors("Blacklist lookup"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(BlacklistEntry)
                    .where(BlacklistEntry.type == bl_type.value)
                    .where(BlacklistEntry.value == value)
                    .where(
                        or_(
                            BlacklistEntry.expires_at.is_(None),
                            BlacklistEntry.expires_at > now,
                        )
                    )
                    .limit(1)
                )
                return result.scalar_one_or_none()

    async def upsert(
        self,
        bl_type: BlacklistType,
        value: str,
        reason: str,
        expires_at: datetime | None,
        auto_added: bool,
        now: datetime,
    ) -> None:
        async with _persistence_errors("Blacklist upsert"):
            async with self._session_factory() as session:
                insert = _dialect_insert(session.bind.dialect.name)
                stmt = insert(BlacklistEntry).values(
                    id=new_id(),
                    type=bl_type.value,
                    value=value,
                    reason=reason,
                    auto_added=auto_added,
                    expires_at=expires_at,
                    created_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["type", "value"],
                    set_={
                        "reason": f"{reason}{UPDATED_SUFFIX}",
                        "expires_at": stmt.excluded.expires_at,
                        "auto_added": stmt.excluded.auto_added,
                        "updated_at": now,
                    },
                )
                await session.execute(stmt)
                await session.commit()

    async def delete(self, bl_type: BlacklistType, value: str) -> int:
        async with _persistence_errors("Blacklist delete"):
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(BlacklistEntry)
                    .where(BlacklistEntry.type == bl_type.value)
                    .where(BlacklistEntry.value == value)
                )
                await session.commit()
                return result.rowcount or 0

    async def list_entries(
        self, bl_type: BlacklistType | None = None
    ) -> list[BlacklistEntry]:
        async with _persistence_errors("Blacklist list"):
            async with self._session_factory() as session:
                query = select(BlacklistEntry)
                if bl_type is not None:
                    query = query.where(BlacklistEntry.type == bl_type.value)
                result = await session.execute(
                    query.order_by(BlacklistEntry.created_at.desc())
                )
                return list(result.scalars().all())

    async def delete_expired(self, now: datetime) -> int:
        async with _persistence_errors("Blacklist cleanup"):
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(BlacklistEntry).where(
                        and_(
                            BlacklistEntry.expires_at.is_not(None),
                            BlacklistEntry.expires_at <= now,
                        )
                    )
                )
                await session.commit()
                return result.rowcount or 0


def _dialect_insert(dialect_name: str):
    """Return the dialect insert() that supports ON CONFLICT DO UPDATE."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Atomic upsert not supported on {dialect_name}")
    return insert


class SqlUsageLedgerRepository:
    """Append-only usage/risk ledger with time-windowed counts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _scalar_count(self, operation: str, query) -> int:
        async with _persistence_errors(operation):
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.scalar() or 0

    async def count_usages_by_ip(self, ip: str, since: datetime) -> int:
        """Count usages from the same IP since the cutoff."""
        return await self._scalar_count(
            "IP usage count",
            select(func.count(CouponUsage.id))
            .where(CouponUsage.ip_address == ip)
            .where(CouponUsage.created_at >= since),
        )

    async def count_usages_by_fingerprint(
        self, fingerprint: str, since: datetime
    ) -> int:
        """Count usages from the same device fingerprint since the cutoff."""
        return await self._scalar_count(
            "Fingerprint usage count",
            select(func.count(CouponUsage.id))
            .where(CouponUsage.device_fingerprint == fingerprint)
            .where(CouponUsage.created_at >= since),
        )

    async def count_distinct_users_by_ip(self, ip: str, since: datetime) -> int:
        """Count distinct users seen on an IP since the cutoff."""
        return await self._scalar_count(
            "Distinct users per IP count",
            select(func.count(func.distinct(CouponUsage.user_id)))
            .where(CouponUsage.ip_address == ip)
            .where(CouponUsage.created_at >= since),
        )

    async def get_coupon(self, coupon_id: str) -> Coupon:
        async with _persistence_errors("Coupon lookup"):
            async with self._session_factory() as session:
                coupon = await session.get(Coupon, coupon_id)
        if coupon is None:
            raise NotFoundError(f"Coupon {coupon_id} not found")
        return coupon

    async def list_coupon_usages(
        self, coupon_id: str, since: datetime
    ) -> list[CouponUsage]:
        async with _persistence_errors("Coupon usage lookup"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CouponUsage)
                    .where(CouponUsage.coupon_id == coupon_id)
                    .where(CouponUsage.created_at >= since)
                )
                return list(result.scalars().all())

    async def add_usage(
        self,
        coupon_id: str | None,
        user_id: str,
        ip: str,
        user_agent: str,
        fingerprint: str | None,
        risk_score: int,
        now: datetime,
    ) -> CouponUsage:
        usage = CouponUsage(
            coupon_id=coupon_id,
            user_id=user_id,
            ip_address=ip,
            device_fingerprint=fingerprint,
            user_agent=user_agent,
            risk_score=risk_score,
            created_at=now,
        )
        async with _persistence_errors("Usage insert"):
            async with self._session_factory() as session:
                session.add(usage)
                await session.commit()
        return usage

    async def add_risk_log(
        self,
        user_id: str | None,
        ip: str,
        fingerprint: str | None,
        risk_score: int,
        factors: list[dict[str, Any]],
        action_taken: str,
        now: datetime,
    ) -> RiskLog:
        log = RiskLog(
            user_id=user_id,
            ip_address=ip,
            device_fingerprint=fingerprint,
            risk_score=risk_score,
            factors=factors,
            action_taken=action_taken,
            created_at=now,
        )
        async with _persistence_errors("Risk log insert"):
            async with self._session_factory() as session:
                session.add(log)
                await session.commit()
        return log

    async def recent_coupon_usages(
        self,
        coupon_id: str,
        ip: str | None = None,
        fingerprint: str | None = None,
        limit: int = 10,
    ) -> list[CouponUsage]:
        """Most recent usages of a coupon, optionally matching ip OR fingerprint."""
        query = select(CouponUsage).where(CouponUsage.coupon_id == coupon_id)
        matchers = []
        if ip:
            matchers.append(CouponUsage.ip_address == ip)
        if fingerprint:
            matchers.append(CouponUsage.device_fingerprint == fingerprint)
        if matchers:
            query = query.where(or_(*matchers))

        async with _persistence_errors("Recent coupon usages"):
            async with self._session_factory() as session:
                result = await session.execute(
                    query.order_by(CouponUsage.created_at.desc()).limit(limit)
                )
                return list(result.scalars().all())


class SqlSessionRepository:
    """Reads and stamps verification codes on registration-progress rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_session(
        self, session_token: str, code: str
    ) -> RegistrationProgress | None:
        """Find an unconsumed session matching (token, code)."""
        async with _persistence_errors("Verification session lookup"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RegistrationProgress)
                    .where(RegistrationProgress.session_token == session_token)
                    .where(RegistrationProgress.verification_code == code)
                    .where(RegistrationProgress.verification_code_consumed_at.is_(None))
                    .limit(1)
                )
                return result.scalar_one_or_none()

    async def set_code(
        self, session_token: str, code: str, expires_at: datetime
    ) -> None:
        async with _persistence_errors("Verification code update"):
            async with self._session_factory() as session:
                result = await session.execute(
                    update(RegistrationProgress)
                    .where(RegistrationProgress.session_token == session_token)
                    .values(
                        verification_code=code,
                        verification_code_expires=expires_at,
                        verification_code_consumed_at=None,
                    )
                )
                await session.commit()
        if not result.rowcount:
            raise NotFoundError(f"Registration session {session_token} not found")

    async def mark_consumed(self, session_id: str, now: datetime) -> bool:
        """Stamp the code as used. False if another request consumed it first."""
        async with _persistence_errors("Verification code consume"):
            async with self._session_factory() as session:
                result = await session.execute(
                    update(RegistrationProgress)
                    .where(RegistrationProgress.id == session_id)
                    .where(RegistrationProgress.verification_code_consumed_at.is_(None))
                    .values(verification_code_consumed_at=now)
                )
                await session.commit()
                return bool(result.rowcount)
