"""
Password hashing and access tokens.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import JWTError, jwt

from medizo.config import Settings


class InvalidTokenError(Exception):
    """Raised when an access token cannot be decoded or has expired."""


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    # Google accounts carry no password hash.
    if not plain or not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user: dict, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expires_minutes)
    payload = {"id": str(user["id"]), "role": user.get("role"), "exp": expire}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise InvalidTokenError(str(e)) from e
    if not payload.get("id"):
        raise InvalidTokenError("Token has no subject")
    return payload


def public_user(user: Optional[dict]) -> Optional[dict]:
    """Return the user document without its password hash."""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k != "password"}
