"""
Token and password helpers.

Session tokens are opaque random strings handed to scan clients. Access tokens
are HS256 JWTs carrying the user id in the ``sub`` claim.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt


def generate_session_token() -> str:
    """Return a 64 character hex token from the system CSPRNG."""
    return secrets.token_hex(32)


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Stored hash is not a bcrypt hash
        return False


def create_access_token(
    subject: str,
    secret: str,
    expires_delta: timedelta,
    algorithm: str = "HS256",
) -> str:
    """Create a signed JWT for ``subject``."""
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"sub": subject, "exp": expire}
    return jwt.encode(to_encode, secret, algorithm=algorithm)


def decode_access_token(token: str, secret: str, algorithm: str = "HS256") -> Optional[str]:
    """
    Decode a JWT and return its subject.

    Returns None for expired, tampered or subject-less tokens.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) else None
