MAX_EMAIL_LENGTH = 255


class InvalidIdentity(ValueError):
    """The value cannot be turned into an identity key."""


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= MAX_EMAIL_LENGTH


def identity_key(email) -> str:
    """
    Lockout scope for an email address. Raises InvalidIdentity for anything
    that is not a plausible email.
    """
    if not isinstance(email, str):
        raise InvalidIdentity("email must be a string")
    key = normalize_email(email)
    if not is_valid_email(key):
        raise InvalidIdentity("malformed email")
    return key
