"""Password hashing and bearer token utilities."""

from datetime import timedelta
from typing import Any

import bcrypt
from jose import JWTError, jwt

from raksha.core.clock import utcnow
from raksha.core.config import settings


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def create_access_token(user_id: int) -> str:
    """Issue a signed token whose subject is the user id."""
    issued = utcnow()
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def user_id_from_token(token: str) -> int | None:
    """Return the user id carried by a valid token, or None."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    subject = claims.get("sub")
    if subject is None or not str(subject).isdigit():
        return None
    return int(subject)
