"""
Password Hashing

bcrypt hashing and verification, plus one-time tokens for email
verification and password reset.
"""

import hashlib
import secrets

import bcrypt

from threatcombat.api.config import settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(
        password.encode(), bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    ).decode()


def verify_password(candidate: str, password_hash: str) -> bool:
    """Check a candidate password. A malformed hash never verifies."""
    try:
        return bcrypt.checkpw(candidate.encode(), password_hash.encode())
    except ValueError:
        return False


def generate_token() -> str:
    """Random URL-safe token for verification and reset links."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """Tokens are stored hashed; only the emailed copy is usable."""
    return hashlib.sha256(token.encode()).hexdigest()
