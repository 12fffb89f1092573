"""Email domain helpers for anti-fraud.

Detects disposable email domains and extracts the domain used by the
email_domain blacklist.
"""

# Known temporary/disposable inbox providers
DISPOSABLE_DOMAINS = frozenset(
    [
        "temp-mail.org",
        "guerrillamail.com",
        "10minutemail.com",
        "throwaway.email",
        "tempmail.com",
        "mailinator.com",
        "yopmail.com",
        "maildrop.cc",
        "trashmail.com",
        "getnada.com",
        "temp-mail.io",
        "mohmal.com",
    ]
)


def get_domain(email: str) -> str:
    """Extract the lower-cased domain from an email address.

    Returns an empty string when the address has no "@".
    """
    _, sep, domain = email.strip().partition("@")
    if not sep:
        return ""
    return domain.lower()


def is_disposable_email(email: str) -> bool:
    """Check if email uses a disposable domain.

    Args:
        email: Email address to check.

    Returns:
        True if the domain is known to be disposable.
    """
    return get_domain(email) in DISPOSABLE_DOMAINS


def validate_email_domain(email: str) -> tuple[bool, str | None]:
    """Check that an email address is well-formed enough to score.

    Args:
        email: Email address to validate.

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not email or not email.strip():
        return False, "Email address is required."

    local, _, _ = email.strip().partition("@")
    domain = get_domain(email)
    if not local or not domain:
        return False, f"Email address {email!r} has no domain."
    if "@" in domain:
        return False, f"Email address {email!r} has more than one '@'."

    return True, None
