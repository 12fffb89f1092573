"""SQLAlchemy models for coupon usage, risk logs, blacklist and verification sessions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from antifraud.db.database import Base


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Enums
# =============================================================================


class BlacklistType(str, Enum):
    """Identifier kinds that can be blacklisted."""

    IP = "ip"
    FINGERPRINT = "fingerprint"
    EMAIL_DOMAIN = "email_domain"


class ActionTaken(str, Enum):
    """Action recorded in the risk audit trail."""

    APPROVED = "approved"
    EMAIL_VERIFICATION = "email_verification"
    BLOCKED = "blocked"


# =============================================================================
# Blacklist
# =============================================================================


class BlacklistEntry(Base):
    """TTL-backed denylist entry keyed by (type, value)."""

    __tablename__ = "blacklist_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    auto_added: Mapped[bool] = mapped_column(Boolean, default=False)

    # None means permanent
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("type", "value", name="uq_blacklist_entries_type_value"),
        Index("ix_blacklist_entries_expires_at", "expires_at"),
        Index("ix_blacklist_entries_created_at", "created_at"),
    )

    def is_active_at(self, now: datetime) -> bool:
        """An entry is active while it has no expiry or the expiry is in the future."""
        expires_at = as_utc(self.expires_at)
        return expires_at is None or expires_at > now

    def __repr__(self) -> str:
        return f"<BlacklistEntry type={self.type} value={self.value}>"


# =============================================================================
# Coupons and usage ledger
# =============================================================================


class Coupon(Base):
    """Coupon limits read by the abuse probe. Managed by the coupon admin."""

    __tablename__ = "coupons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    # None disables the corresponding limit
    max_uses_per_ip: Mapped[int | None] = mapped_column(Integer)
    max_uses_per_fingerprint: Mapped[int | None] = mapped_column(Integer)
    cooldown_period_hours: Mapped[int | None] = mapped_column(Integer, default=168)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    usages: Mapped[list["CouponUsage"]] = relationship(back_populates="coupon")

    DEFAULT_COOLDOWN_HOURS = 168

    @property
    def cooldown_hours(self) -> int:
        """Window in which the per-IP/per-fingerprint caps are enforced."""
        return self.cooldown_period_hours or self.DEFAULT_COOLDOWN_HOURS


class CouponUsage(Base):
    """Append-only usage record. The evidence every probe counts."""

    __tablename__ = "coupon_usages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    coupon_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("coupons.id")
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)  # IPv6 max
    device_fingerprint: Mapped[str | None] = mapped_column(String(255))
    user_agent: Mapped[str] = mapped_column(Text, default="Unknown")
    risk_score: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    coupon: Mapped["Coupon | None"] = relationship(back_populates="usages")

    __table_args__ = (
        Index("ix_coupon_usages_ip_address", "ip_address", "created_at"),
        Index(
            "ix_coupon_usages_device_fingerprint", "device_fingerprint", "created_at"
        ),
        Index("ix_coupon_usages_coupon_id", "coupon_id", "created_at"),
    )


class RiskLog(Base):
    """Append-only audit trail of risk decisions."""

    __tablename__ = "risk_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str | None] = mapped_column(String(64))
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255))
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    factors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    action_taken: Mapped[str] = mapped_column(String(32), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_risk_logs_ip_address", "ip_address"),
        Index("ix_risk_logs_created_at", "created_at"),
    )


# =============================================================================
# Registration progress (verification sessions)
# =============================================================================


class RegistrationProgress(Base):
    """Registration session owned by the signup workflow.

    Only the verification-code columns are read and written here.
    """

    __tablename__ = "registration_progress"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    session_token: Mapped[str] = mapped_column(String(128), unique=True)
    email: Mapped[str | None] = mapped_column(String(255))

    verification_code: Mapped[str | None] = mapped_column(String(6))
    verification_code_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    verification_code_consumed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index(
            "ix_registration_progress_token_code",
            "session_token",
            "verification_code",
        ),
    )
