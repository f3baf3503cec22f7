"""
User account routes: profile, password, profile picture and doctor-managed
patient accounts.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Response, UploadFile

from medizo.auth import is_valid_email
from medizo.db import DbClient, DuplicateEmailError
from medizo.dependencies import get_current_user, get_db_client, get_storage_client, require_doctor
from medizo.routes.common import (
    MB,
    delete_stored_image,
    patient_or_404,
    read_image_upload,
    unique_filename,
)
from medizo.schemas import (
    DOCTOR_PROFILE_FIELDS,
    PATIENT_PROFILE_FIELDS,
    CreatePatientRequest,
    MessageResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
)
from medizo.security import hash_password, public_user, verify_password
from medizo.storage import PROFILE_PICTURES_PREFIX, StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_PATIENT_PASSWORD = "password123"
PATIENT_EMAIL_TAKEN = "A patient with this email already exists"
PROFILE_PICTURE_TYPES = ("image/jpeg", "image/png", "image/gif")
_EXTENSIONS = {"image/jpeg": ".jpg", "image/png": ".png", "image/gif": ".gif"}
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# Profile picture


@router.post("/profile/picture")
async def upload_profile_picture(
    profilePicture: Optional[UploadFile] = File(default=None),
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    data, content_type = await read_image_upload(
        profilePicture,
        allowed_types=PROFILE_PICTURE_TYPES,
        max_bytes=5 * MB,
        type_message="Invalid file type. Only JPEG, PNG and GIF are allowed.",
        size_message="File size must be less than 5MB",
    )
    filename = unique_filename(f"profile-{user['id']}", _EXTENSIONS[content_type])
    key = f"{PROFILE_PICTURES_PREFIX}/{filename}"
    storage.put_bytes(key, data, content_type)
    delete_stored_image(storage, user.get("profilePicture"))

    url = f"/uploads/{key}"
    updated = db.update_user(user["id"], {"profilePicture": url})
    return {
        "message": "Profile picture uploaded successfully",
        "profilePicture": url,
        "user": public_user(updated),
    }


@router.delete("/profile/picture")
def delete_profile_picture(
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    delete_stored_image(storage, user.get("profilePicture"))
    updated = db.update_user(user["id"], {"profilePicture": None})
    return {"message": "Profile picture deleted successfully", "user": public_user(updated)}


# Doctor-managed patients


@router.post("/patients/create", status_code=201)
def create_patient(
    payload: CreatePatientRequest,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    if not payload.firstName or not payload.lastName or not payload.email:
        raise HTTPException(
            status_code=400, detail="First name, last name, and email are required"
        )
    if not is_valid_email(payload.email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    try:
        patient = db.create_user(
            {
                "firstName": payload.firstName,
                "lastName": payload.lastName,
                "email": payload.email.lower(),
                "password": hash_password(DEFAULT_PATIENT_PASSWORD),
                "role": "patient",
                "authProvider": "local",
                "phone": payload.phone or "",
                "dateOfBirth": payload.dateOfBirth or "",
                "gender": payload.gender or "",
                "address": payload.address or "",
                "allergies": [],
                "chronicConditions": [],
                "createdByDoctor": doctor["id"],
            }
        )
    except DuplicateEmailError:
        raise HTTPException(status_code=400, detail=PATIENT_EMAIL_TAKEN)
    logger.info("Patient %s created by doctor %s", patient["id"], doctor["id"])

    linked = list(doctor.get("linkedPatients") or [])
    if patient["id"] not in linked:
        linked.append(patient["id"])
        db.update_user(doctor["id"], {"linkedPatients": linked})

    return {
        "message": (
            "Patient account created successfully. "
            f"Default password is: {DEFAULT_PATIENT_PASSWORD}"
        ),
        "patient": public_user(patient),
    }


@router.get("/patients")
def list_patients(
    response: Response,
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    response.headers.update(NO_CACHE_HEADERS)
    patients = [public_user(u) for u in db.list_users(role="patient")]
    return {"message": "Patients retrieved successfully", "patients": patients}


@router.get("/patients/my-patients")
def my_patients(
    response: Response,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    """Patients this doctor has prescribed to or explicitly linked."""
    prescribed = [str(p.get("patientId")) for p in db.list_prescriptions(doctor_id=doctor["id"])]
    linked = [str(pid) for pid in doctor.get("linkedPatients") or []]

    patients = []
    for patient_id in dict.fromkeys(prescribed + linked):
        patient = db.get_user(patient_id)
        if patient and patient.get("role") == "patient":
            patients.append(public_user(patient))

    response.headers["Cache-Control"] = NO_CACHE_HEADERS["Cache-Control"]
    return {"message": "My patients retrieved successfully", "patients": patients}


@router.get("/patients/lookup")
def patients_lookup(
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    rows = [
        {
            "id": p["id"],
            "email": p.get("email"),
            "name": f"{p.get('firstName', '')} {p.get('lastName', '')}".strip(),
            "firstName": p.get("firstName"),
            "lastName": p.get("lastName"),
            "contactNumber": p.get("contactNumber"),
            "dateOfBirth": p.get("dateOfBirth"),
        }
        for p in db.list_users(role="patient")
    ]
    return {"message": "Patients lookup data retrieved successfully", "patients": rows}


@router.get("/patients/lookup/{patient_id}")
def lookup_patient(
    patient_id: str,
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient = db.get_user(patient_id)
    if not patient:
        raise HTTPException(
            status_code=404, detail="Patient not found. Please check the Patient ID."
        )
    if patient.get("role") != "patient":
        raise HTTPException(
            status_code=400, detail="The provided ID does not belong to a patient."
        )
    return {"message": "Patient found", "patient": public_user(patient)}


@router.post("/patients/link/{patient_id}")
def link_patient(
    patient_id: str,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient = db.get_user(patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")
    if patient.get("role") != "patient":
        raise HTTPException(
            status_code=400, detail="The provided ID does not belong to a patient."
        )

    linked = list(doctor.get("linkedPatients") or [])
    if patient["id"] in linked:
        return {"message": "Patient already linked", "patient": public_user(patient)}

    linked.append(patient["id"])
    db.update_user(doctor["id"], {"linkedPatients": linked})
    logger.info("Patient %s linked to doctor %s", patient["id"], doctor["id"])
    return {"message": "Patient linked successfully", "patient": public_user(patient)}


# Directory and own account


@router.get("/doctors")
def list_doctors(
    _: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    doctors = [public_user(u) for u in db.list_users(role="doctor")]
    return {"message": "Doctors retrieved successfully", "doctors": doctors}


@router.get("/profile")
def get_profile(user: dict = Depends(get_current_user)):
    return {"message": "Profile retrieved successfully", "user": user}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    allowed = {"firstName", "lastName", "contactNumber"}
    if user.get("role") == "doctor":
        allowed.update(DOCTOR_PROFILE_FIELDS)
    elif user.get("role") == "patient":
        allowed.update(PATIENT_PROFILE_FIELDS)
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if k in allowed}

    updated = db.update_user(user["id"], changes)
    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return {"message": "Profile updated successfully", "user": public_user(updated)}


@router.put("/password", response_model=MessageResponse)
def change_password(
    payload: PasswordChangeRequest,
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if not payload.currentPassword or not payload.newPassword:
        raise HTTPException(
            status_code=400, detail="Current password and new password are required"
        )
    stored = db.get_user(user["id"])
    if not stored:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.currentPassword, stored.get("password")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    db.update_user(user["id"], {"password": hash_password(payload.newPassword)})
    return {"message": "Password updated successfully"}


# Single patient (doctor)


@router.get("/patients/{patient_id}")
def get_patient(
    patient_id: str,
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    return public_user(patient_or_404(db, patient_id))


@router.put("/patients/{patient_id}")
def update_patient(
    patient_id: str,
    changes: dict = Body(...),
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient_or_404(db, patient_id)
    for key in ("role", "id", "password", "createdAt", "updatedAt"):
        changes.pop(key, None)
    if "email" in changes:
        email = str(changes["email"] or "").strip().lower()
        if not is_valid_email(email):
            raise HTTPException(status_code=400, detail="Invalid email format")
        existing = db.get_user_by_email(email)
        if existing and str(existing["id"]) != str(patient_id):
            raise HTTPException(status_code=400, detail=PATIENT_EMAIL_TAKEN)
        changes["email"] = email
    try:
        updated = db.update_user(patient_id, changes)
    except DuplicateEmailError:
        raise HTTPException(status_code=400, detail=PATIENT_EMAIL_TAKEN)
    return {"message": "Patient updated successfully", "patient": public_user(updated)}


@router.delete("/patients/{patient_id}", response_model=MessageResponse)
def delete_patient(
    patient_id: str,
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient_or_404(db, patient_id)
    db.delete_user(patient_id)
    return {"message": "Patient deleted successfully"}
