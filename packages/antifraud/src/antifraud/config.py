"""Anti-fraud configuration.

Settings are loaded from environment variables (optionally via .env.local / .env).
Every value has a sensible default so the core works out of the box in
development; invalid values fail fast with a clear error.
"""

import os

from dotenv import load_dotenv

from antifraud.exceptions import ConfigurationError

FAIL_CLOSED = "closed"
FAIL_OPEN = "open"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_float(key: str, default: float) -> float:
    """Read a positive float env var or raise a clear error."""
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {key}: {raw!r}\nExpected a number, e.g. {key}={default}"
        ) from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be greater than zero, got {raw!r}")
    return value


def _env_int(key: str, default: int) -> int:
    """Read a positive integer env var or raise a clear error."""
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {key}: {raw!r}\nExpected an integer, e.g. {key}={default}"
        ) from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be greater than zero, got {raw!r}")
    return value


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"Invalid value for {key}: {raw!r}\nExpected one of: true, false"
    )


class Settings:
    """Anti-fraud settings.

    Environment variables:
    - DATABASE_URL: SQLAlchemy async URL (default: local SQLite file)
    - ANTIFRAUD_PROBE_TIMEOUT_SECONDS: per-probe timeout (default: 2.0)
    - ANTIFRAUD_BLACKLIST_TIMEOUT_SECONDS: bound on the blacklist veto lookup (default: 2.0)
    - ANTIFRAUD_BLACKLIST_FAILURE_POLICY: "closed" blocks when the blacklist
      cannot be read, "open" keeps scoring (default: closed)
    - ANTIFRAUD_OTP_TTL_MINUTES: lifetime of an issued verification code (default: 15)
    - ANTIFRAUD_OTP_SINGLE_USE: invalidate a code once validated (default: true)
    - ANTIFRAUD_CLEANUP_INTERVAL_SECONDS: expired-blacklist sweep period (default: 300)
    """

    def __init__(
        self,
        database_url: str = "sqlite+aiosqlite:///./antifraud.db",
        probe_timeout_seconds: float = 2.0,
        blacklist_timeout_seconds: float = 2.0,
        blacklist_failure_policy: str = FAIL_CLOSED,
        otp_ttl_minutes: int = 15,
        otp_single_use: bool = True,
        cleanup_interval_seconds: int = 300,
    ):
        if blacklist_failure_policy not in (FAIL_CLOSED, FAIL_OPEN):
            raise ConfigurationError(
                "ANTIFRAUD_BLACKLIST_FAILURE_POLICY must be "
                f"'{FAIL_CLOSED}' or '{FAIL_OPEN}', got {blacklist_failure_policy!r}"
            )
        self.database_url = database_url
        self.probe_timeout_seconds = probe_timeout_seconds
        self.blacklist_timeout_seconds = blacklist_timeout_seconds
        self.blacklist_failure_policy = blacklist_failure_policy
        self.otp_ttl_minutes = otp_ttl_minutes
        self.otp_single_use = otp_single_use
        self.cleanup_interval_seconds = cleanup_interval_seconds

    @property
    def fail_closed(self) -> bool:
        """Whether a blacklist outage blocks the request."""
        return self.blacklist_failure_policy == FAIL_CLOSED

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current environment."""
        return cls(
            database_url=os.getenv(
                "DATABASE_URL", "sqlite+aiosqlite:///./antifraud.db"
            ),
            probe_timeout_seconds=_env_float("ANTIFRAUD_PROBE_TIMEOUT_SECONDS", 2.0),
            blacklist_timeout_seconds=_env_float(
                "ANTIFRAUD_BLACKLIST_TIMEOUT_SECONDS", 2.0
            ),
            blacklist_failure_policy=os.getenv(
                "ANTIFRAUD_BLACKLIST_FAILURE_POLICY", FAIL_CLOSED
            )
            .strip()
            .lower(),
            otp_ttl_minutes=_env_int("ANTIFRAUD_OTP_TTL_MINUTES", 15),
            otp_single_use=_env_bool("ANTIFRAUD_OTP_SINGLE_USE", True),
            cleanup_interval_seconds=_env_int(
                "ANTIFRAUD_CLEANUP_INTERVAL_SECONDS", 300
            ),
        )


def load_settings() -> Settings:
    """Load .env files and build settings. Fails fast with clear errors."""
    load_dotenv(".env.local")
    load_dotenv()  # Also try default .env
    return Settings.from_env()
