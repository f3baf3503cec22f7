"""
Account registration, password login and Google sign-in.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from medizo.config import Settings
from medizo.db import DbClient, DuplicateEmailError
from medizo.security import create_access_token, hash_password, public_user, verify_password

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ROLES = ("doctor", "patient")
MIN_PASSWORD_LENGTH = 6

# Keys a client may not set on its own account at registration.
PROTECTED_FIELDS = frozenset(
    {
        "id",
        "createdAt",
        "updatedAt",
        "googleId",
        "authProvider",
        "linkedPatients",
        "createdByDoctor",
    }
)


class AuthError(Exception):
    """Invalid credentials or unusable account."""


class RegistrationError(ValueError):
    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class GoogleAuthError(AuthError):
    pass


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email and EMAIL_PATTERN.match(email))


def validate_registration_data(data: dict) -> list[str]:
    errors: list[str] = []
    if not data.get("firstName"):
        errors.append("First name is required")
    if not data.get("lastName"):
        errors.append("Last name is required")
    if not data.get("email"):
        errors.append("Email is required")
    if not data.get("password"):
        errors.append("Password is required")
    if not data.get("role"):
        errors.append("Role is required")

    if data.get("email") and not is_valid_email(data["email"]):
        errors.append("Invalid email format")
    if data.get("password") and len(data["password"]) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if data.get("role") and data["role"] not in ROLES:
        errors.append("Role must be either doctor or patient")
    return errors


def _session(user: dict, settings: Settings) -> dict:
    return {"user": public_user(user), "token": create_access_token(user, settings)}


def register_user(db: DbClient, data: dict, settings: Settings) -> dict:
    errors = validate_registration_data(data)
    if errors:
        raise RegistrationError("Validation failed", errors)

    doc = {k: v for k, v in data.items() if v is not None and k not in PROTECTED_FIELDS}
    doc["email"] = data["email"].strip().lower()
    doc["password"] = hash_password(data["password"])
    doc["authProvider"] = "local"
    try:
        user = db.create_user(doc)
    except DuplicateEmailError as e:
        raise RegistrationError(str(e)) from e
    logger.info("Registered %s %s", user["role"], user["id"])
    return _session(user, settings)


def login_user(db: DbClient, email: str, password: str, settings: Settings) -> dict:
    user = db.get_user_by_email(email)
    if not user or not verify_password(password, user.get("password")):
        raise AuthError("Invalid credentials")
    return _session(user, settings)


@dataclass
class GoogleIdentity:
    google_id: str
    email: str
    first_name: str
    last_name: str
    picture: str


class GoogleTokenVerifier:
    """Validates Google ID tokens with the public tokeninfo endpoint."""

    def __init__(
        self,
        tokeninfo_url: str,
        client_id: Optional[str] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.tokeninfo_url = tokeninfo_url
        self.client_id = client_id
        self._transport = transport
        self._timeout = timeout

    def verify(self, credential: str) -> GoogleIdentity:
        if not credential:
            raise GoogleAuthError("Google credential is required")
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(self.tokeninfo_url, params={"id_token": credential})
        except httpx.HTTPError as e:
            logger.error("Google tokeninfo request failed: %s", e)
            raise GoogleAuthError("Unable to verify Google credential") from e

        if response.status_code != 200:
            raise GoogleAuthError("Invalid Google credential")
        claims = response.json()

        if self.client_id and claims.get("aud") != self.client_id:
            raise GoogleAuthError("Google credential was issued for another client")
        if str(claims.get("email_verified", "")).lower() != "true":
            raise GoogleAuthError("Google account email is not verified")
        if not claims.get("sub") or not claims.get("email"):
            raise GoogleAuthError("Invalid Google credential")

        return GoogleIdentity(
            google_id=claims["sub"],
            email=claims["email"].lower(),
            first_name=claims.get("given_name") or claims.get("name") or "",
            last_name=claims.get("family_name") or "",
            picture=claims.get("picture") or "",
        )


def google_login(
    db: DbClient,
    verifier: GoogleTokenVerifier,
    credential: str,
    role: str,
    settings: Settings,
) -> dict:
    identity = verifier.verify(credential)

    user = db.get_user_by_google_id(identity.google_id)
    if user is None:
        user = db.get_user_by_email(identity.email)
        if user is not None:
            user = db.update_user(
                user["id"],
                {
                    "googleId": identity.google_id,
                    "picture": user.get("picture") or identity.picture,
                },
            )
            logger.info("Linked Google account to user %s", user["id"])

    if user is None:
        if role not in ROLES:
            raise RegistrationError("Role must be either doctor or patient")
        user = db.create_user(
            {
                "firstName": identity.first_name,
                "lastName": identity.last_name,
                "email": identity.email,
                "googleId": identity.google_id,
                "picture": identity.picture,
                "authProvider": "google",
                "role": role,
            }
        )
        logger.info("Created %s %s from Google sign-in", role, user["id"])

    return _session(user, settings)
