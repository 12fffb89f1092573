"""Short-lived verification codes gating risky registrations.

Codes are 6-digit numbers drawn from the secrets module and stored on the
registration-progress record of the signup session. With single-use
enabled (the default) a code stops matching once it has been validated.
"""

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from antifraud.config import Settings
from antifraud.db.models import as_utc, utcnow
from antifraud.exceptions import ExpiredError, ValidationError
from antifraud.repositories import SessionRepository
from antifraud.schemas import VerificationResult

logger = logging.getLogger("antifraud.verification")

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Generate a 6-digit numeric code in 100000..999999."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


class VerificationCodeService:
    """Issues and validates verification codes for signup sessions."""

    def __init__(
        self,
        sessions: SessionRepository,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.settings = settings or Settings()
        self._clock = clock

    def generate_code(self) -> str:
        return generate_code()

    async def issue_code(
        self, session_token: str, ttl_minutes: int | None = None
    ) -> str:
        """Store a fresh code with an expiry on the session and return it.

        Raises:
            NotFoundError: If no registration session has this token.
        """
        code = generate_code()
        ttl = ttl_minutes or self.settings.otp_ttl_minutes
        expires_at = self._clock() + timedelta(minutes=ttl)
        await self.sessions.set_code(session_token, code, expires_at)
        logger.info(f"Verification code issued for session {session_token[:8]}...")
        return code

    async def validate_code(self, session_token: str, code: str) -> VerificationResult:
        """Check a code against the session.

        No match -> (valid=False, expired=False); a match without a recorded
        expiry -> (False, True); otherwise expired once now reaches the expiry.
        """
        progress = await self.sessions.find_session(session_token, code.strip())
        if progress is None:
            return VerificationResult(valid=False, expired=False)

        expires = as_utc(progress.verification_code_expires)
        if expires is None:
            return VerificationResult(valid=False, expired=True)

        now = self._clock()
        if now >= expires:
            return VerificationResult(valid=False, expired=True)

        if self.settings.otp_single_use:
            consumed = await self.sessions.mark_consumed(progress.id, now)
            if not consumed:
                logger.warning(
                    f"Verification code for session {session_token[:8]}... "
                    "was already used"
                )
                return VerificationResult(valid=False, expired=False)

        return VerificationResult(valid=True, expired=False)

    async def ensure_valid(self, session_token: str, code: str) -> None:
        """Validate a code, raising instead of returning a result.

        Raises:
            ExpiredError: If the code matched but is past its expiry.
            ValidationError: If the code does not match the session.
        """
        result = await self.validate_code(session_token, code)
        if result.expired:
            raise ExpiredError()
        if not result.valid:
            raise ValidationError("Invalid verification code")
