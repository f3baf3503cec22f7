"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from medizo.auth import GoogleTokenVerifier
from medizo.config import Settings, get_settings, resolve_database_url
from medizo.db import DbClient, JsonFileDbClient, SqlDocumentDbClient
from medizo.mailer import Mailer, SmtpMailer
from medizo.security import InvalidTokenError, decode_access_token, public_user
from medizo.storage import LocalStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_mailer: Mailer | None = None
_google_verifier: GoogleTokenVerifier | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client. Falls back to the JSON-file store when no
    database is configured or the database cannot be reached.
    """
    global _db_client
    if _db_client is not None:
        return _db_client

    settings = get_settings()
    database_url = resolve_database_url(settings)
    if settings.use_local_backends or not database_url:
        _db_client = JsonFileDbClient(settings.data_dir)
    else:
        try:
            _db_client = SqlDocumentDbClient(database_url)
        except SQLAlchemyError as e:
            logger.error("Database unavailable, falling back to JSON files: %s", e)
            _db_client = JsonFileDbClient(settings.data_dir)
    logger.info("Document storage backend: %s", _db_client.backend_name)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client is not None:
        return _storage_client

    settings = get_settings()
    if settings.use_local_backends or not settings.s3_bucket:
        _storage_client = LocalStorageClient(settings.uploads_dir)
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = SmtpMailer.from_settings(get_settings())
    return _mailer


def get_google_verifier() -> GoogleTokenVerifier:
    global _google_verifier
    if _google_verifier is None:
        settings = get_settings()
        _google_verifier = GoogleTokenVerifier(
            settings.google_tokeninfo_url, settings.google_client_id
        )
    return _google_verifier


def _extract_token(x_auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if x_auth_token:
        return x_auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def get_current_user(
    x_auth_token: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Resolve the authenticated user (without password) from the request token."""
    token = _extract_token(x_auth_token, authorization)
    if not token:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    try:
        payload = decode_access_token(token, settings)
    except InvalidTokenError as e:
        logger.info("Rejected token: %s", e)
        raise HTTPException(status_code=401, detail="Token is not valid")

    user = db.get_user(payload["id"])
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return public_user(user)


def require_doctor(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "doctor":
        raise HTTPException(status_code=403, detail="Access denied: Doctors only")
    return user


def require_patient(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "patient":
        raise HTTPException(status_code=403, detail="Access denied: Patients only")
    return user
