import bcrypt

# compared against when the account does not exist, so unknown and known
# emails take the same time to reject
_DUMMY_HASH = bcrypt.hashpw(b"stockgate-dummy-password", bcrypt.gensalt(rounds=12)).decode("utf-8")

def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")

def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8")
        )
    except ValueError:
        return False

def check_credentials(user, plain_password: str) -> bool:
    """False for a missing or inactive user, after the same amount of bcrypt work."""
    if user is None:
        verify_password(plain_password or "x", _DUMMY_HASH)
        return False
    ok = verify_password(plain_password, user.password_hash)
    return ok and user.is_active
