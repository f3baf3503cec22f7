"""
Registration, login and session routes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from medizo.auth import (
    AuthError,
    GoogleTokenVerifier,
    RegistrationError,
    google_login,
    login_user,
    register_user,
)
from medizo.config import Settings, get_settings
from medizo.db import DbClient
from medizo.dependencies import get_current_user, get_db_client, get_google_verifier
from medizo.schemas import GoogleLoginRequest, LoginRequest, RegisterRequest, SessionResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _registration_failed(e: RegistrationError) -> HTTPException:
    if e.errors:
        return HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    return HTTPException(status_code=400, detail=str(e))


@router.post("/register", status_code=201, response_model=SessionResponse)
def register(
    payload: RegisterRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    try:
        session = register_user(db, payload.model_dump(exclude_none=True), settings)
    except RegistrationError as e:
        raise _registration_failed(e)
    return {"message": "User registered successfully", **session}


@router.post("/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    try:
        session = login_user(db, payload.email, payload.password, settings)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"message": "Login successful", **session}


@router.post("/google", response_model=SessionResponse)
def google(
    payload: GoogleLoginRequest,
    db: DbClient = Depends(get_db_client),
    verifier: GoogleTokenVerifier = Depends(get_google_verifier),
    settings: Settings = Depends(get_settings),
):
    try:
        session = google_login(db, verifier, payload.credential, payload.role, settings)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except RegistrationError as e:
        raise _registration_failed(e)
    return {"message": "Google login successful", **session}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return {"user": user}
