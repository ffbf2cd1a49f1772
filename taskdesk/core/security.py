"""
Token signing and password hashing primitives.

Tokens are HS256 JWTs carrying ``{"id": <user id>, "role": <role>}`` and
expire a fixed number of hours after issue. There is no revocation list.
"""

from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from taskdesk.core.config import Settings, get_settings
from taskdesk.core.errors import AuthenticationError

# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:_BCRYPT_MAX_BYTES], password_hash.encode("utf-8")
        )
    except ValueError:
        # Malformed stored hash
        return False


def create_token(user_id: str, role: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "id": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=settings.token_ttl_hours),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, settings: Settings | None = None) -> dict:
    """Decode a token, raising AuthenticationError if it is invalid or expired."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "id", "role"]},
        )
    except jwt.PyJWTError as e:
        raise AuthenticationError("Token is not valid") from e
    return payload
