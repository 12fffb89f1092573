"""Exceptions raised by the anti-fraud core.

All errors derive from AntiFraudError so callers can catch them in one place.
"""


class AntiFraudError(Exception):
    """Base class for anti-fraud errors."""

    message: str = "Anti-fraud error"

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)


class ConfigurationError(AntiFraudError):
    """Raised when configuration is missing or invalid."""

    message = "Invalid anti-fraud configuration"


class ValidationError(AntiFraudError):
    """Malformed input, e.g. a missing IP address or an email without a domain."""

    message = "Invalid input"


class PersistenceError(AntiFraudError):
    """The backing store is unreachable or a query failed."""

    message = "Persistence backend unavailable"


class NotFoundError(AntiFraudError):
    """A coupon or verification session does not exist.

    Scoring treats this as a zero-contribution signal rather than a failure.
    """

    message = "Record not found"


class ExpiredError(AntiFraudError):
    """A verification code is past its expiry."""

    message = "Verification code has expired"
