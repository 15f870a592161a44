"""Password hashing utilities.

Learn: bcrypt salts automatically and is deliberately slow, so the
hashing cost is paid on register/login only, never on the webhook path.
Passwords are truncated to 72 bytes (bcrypt's limit) before hashing.
"""

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    pw_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash. Malformed hashes fail closed."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False
