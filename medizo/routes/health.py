"""Liveness endpoints served outside the API prefix."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from medizo.config import Settings, get_settings, resolve_database_url
from medizo.db import DbClient, now_iso
from medizo.dependencies import get_db_client
from medizo.schemas import HealthResponse, MessageResponse

router = APIRouter()


@router.get("/", response_model=MessageResponse)
def root():
    return {"message": "Healthcare Management System API is running"}


@router.get("/health", response_model=HealthResponse)
def health(
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    return {
        "status": "ok",
        "timestamp": now_iso(),
        "storage": db.backend_name,
        "databaseUrlConfigured": bool(resolve_database_url(settings)),
    }
