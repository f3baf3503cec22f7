"""
Helpers shared by the route modules: patient lookup and image uploads.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from fastapi import HTTPException, UploadFile

from medizo.db import DbClient
from medizo.storage import StorageClient, StorageError, storage_key_for_url

logger = logging.getLogger(__name__)

MB = 1024 * 1024


async def read_image_upload(
    upload: Optional[UploadFile],
    *,
    allowed_types: tuple[str, ...],
    max_bytes: int,
    type_message: str,
    size_message: str,
) -> tuple[bytes, str]:
    """Return ``(data, content_type)`` or raise a 400 for a missing or unacceptable file."""
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content_type = (upload.content_type or "").lower()
    if content_type == "image/jpg":
        content_type = "image/jpeg"
    if content_type not in allowed_types:
        raise HTTPException(status_code=400, detail=type_message)
    data = await upload.read()
    if len(data) > max_bytes:
        raise HTTPException(status_code=400, detail=size_message)
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    return data, content_type


def unique_filename(prefix: str, extension: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}{extension}"


def delete_stored_image(storage: StorageClient, url: Optional[str]) -> None:
    """Remove the object behind a previously stored image URL, if any."""
    key = storage_key_for_url(url)
    if not key:
        return
    try:
        storage.delete(key)
    except StorageError as e:
        logger.warning("Could not delete old image %s: %s", key, e)


def patient_or_404(db: DbClient, patient_id: str) -> dict:
    patient = db.get_user(patient_id)
    if not patient or patient.get("role") != "patient":
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient
