"""Database module for the anti-fraud core.

Provides SQLAlchemy models, async engine/session builders, and utilities.
"""

from antifraud.db.database import (
    Base,
    create_engine,
    create_session_factory,
    init_db,
)
from antifraud.db.models import (
    ActionTaken,
    BlacklistEntry,
    BlacklistType,
    Coupon,
    CouponUsage,
    RegistrationProgress,
    RiskLog,
)

__all__ = [
    "ActionTaken",
    "Base",
    "BlacklistEntry",
    "BlacklistType",
    "Coupon",
    "CouponUsage",
    "RegistrationProgress",
    "RiskLog",
    "create_engine",
    "create_session_factory",
    "init_db",
]
