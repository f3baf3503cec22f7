"""
Doctor profiles and their uploaded images (profile photo, clinic logo,
signature).
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from medizo.config import Settings, get_settings
from medizo.db import DbClient
from medizo.dependencies import get_db_client, get_storage_client, require_doctor
from medizo.images import compress_image, prepare_signature
from medizo.routes.common import MB, delete_stored_image, read_image_upload, unique_filename
from medizo.schemas import DoctorProfileUpdate, UploadResponse
from medizo.security import public_user
from medizo.storage import DOCTOR_IMAGES_PREFIX, StorageClient, StorageError

logger = logging.getLogger(__name__)

router = APIRouter()

DOCTOR_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_DOCTOR_IMAGE_BYTES = 20 * MB
IMAGE_CACHE_CONTROL = "public, max-age=31536000"
_EXTENSIONS = {"image/png": ".png", "image/gif": ".gif", "image/webp": ".webp"}


@router.get("")
def list_doctors(
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    return [public_user(d) for d in db.list_users(role="doctor")]


@router.get("/profile")
def get_profile(doctor: dict = Depends(require_doctor)):
    return doctor


@router.put("/profile")
def update_profile(
    payload: DoctorProfileUpdate,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    updated = db.update_user(doctor["id"], payload.model_dump(exclude_unset=True))
    if not updated:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return public_user(updated)


@router.get("/images/{filename}")
def get_image(filename: str, storage: StorageClient = Depends(get_storage_client)):
    try:
        data = storage.get_bytes(f"{DOCTOR_IMAGES_PREFIX}/{filename}")
    except (FileNotFoundError, StorageError):
        raise HTTPException(status_code=404, detail="Image not found")
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return Response(
        content=data, media_type=media_type, headers={"Cache-Control": IMAGE_CACHE_CONTROL}
    )


async def _read_doctor_image(upload: Optional[UploadFile]) -> tuple[bytes, str]:
    return await read_image_upload(
        upload,
        allowed_types=DOCTOR_IMAGE_TYPES,
        max_bytes=MAX_DOCTOR_IMAGE_BYTES,
        type_message="Invalid file type. Only JPEG, PNG, GIF, and WebP are allowed.",
        size_message="File size must be less than 20MB",
    )


def _store_doctor_image(
    db: DbClient,
    storage: StorageClient,
    settings: Settings,
    doctor: dict,
    field: str,
    data: bytes,
    content_type: str,
) -> dict:
    """Save ``data`` as the doctor's ``field`` image, replacing the previous one."""
    extension = _EXTENSIONS.get(content_type, ".jpg")
    filename = unique_filename(field, extension)
    storage.put_bytes(f"{DOCTOR_IMAGES_PREFIX}/{filename}", data, content_type)
    delete_stored_image(storage, doctor.get(field))

    url = f"{settings.api_prefix}/doctors/images/{filename}"
    db.update_user(doctor["id"], {field: url})
    logger.info("Stored %s for doctor %s (%d bytes)", field, doctor["id"], len(data))
    return {"url": url}


@router.post("/upload-profile-image", response_model=UploadResponse)
async def upload_profile_image(
    profileImage: Optional[UploadFile] = File(default=None),
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    data, content_type = await _read_doctor_image(profileImage)
    compressed, stored_type = compress_image(data, content_type)
    return _store_doctor_image(
        db, storage, settings, doctor, "profileImage", compressed, stored_type
    )


@router.post("/upload-clinic-logo", response_model=UploadResponse)
async def upload_clinic_logo(
    clinicLogo: Optional[UploadFile] = File(default=None),
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    data, _ = await _read_doctor_image(clinicLogo)
    # Logos stay PNG to keep transparency.
    compressed, stored_type = compress_image(data, "image/png")
    return _store_doctor_image(
        db, storage, settings, doctor, "clinicLogo", compressed, stored_type
    )


@router.post("/upload-signature", response_model=UploadResponse)
async def upload_signature(
    signature: Optional[UploadFile] = File(default=None),
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    data, _ = await _read_doctor_image(signature)
    processed = prepare_signature(data)
    return _store_doctor_image(db, storage, settings, doctor, "signature", processed, "image/png")
