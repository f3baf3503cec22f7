"""
Prescription routes: listing, statistics, CRUD and PDF download.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response

from medizo.config import Settings, get_settings
from medizo.db import DbClient
from medizo.dependencies import (
    get_current_user,
    get_db_client,
    get_mailer,
    get_storage_client,
    require_doctor,
)
from medizo.mailer import Mailer, send_prescription_notification
from medizo.pdf import render_prescription_pdf
from medizo.prescriptions import (
    PatientNotFound,
    build_prescription,
    can_view,
    doctor_stats,
    list_for_user,
    resolve_patient,
    update_changes,
)
from medizo.schemas import MessageResponse, PrescriptionCreate, PrescriptionUpdate
from medizo.storage import StorageClient, storage_key_for_url

logger = logging.getLogger(__name__)

router = APIRouter()


def _prescription_or_404(db: DbClient, prescription_id: str) -> dict:
    prescription = db.get_prescription(prescription_id)
    if not prescription:
        raise HTTPException(status_code=404, detail="Prescription not found")
    return prescription


def _owned_prescription(db: DbClient, prescription_id: str, doctor: dict) -> dict:
    prescription = _prescription_or_404(db, prescription_id)
    if str(prescription.get("doctorId")) != str(doctor["id"]):
        raise HTTPException(status_code=403, detail="Access denied")
    return prescription


def _visible_prescription(db: DbClient, prescription_id: str, user: dict) -> dict:
    prescription = _prescription_or_404(db, prescription_id)
    if not can_view(user, prescription):
        raise HTTPException(status_code=403, detail="Access denied")
    return prescription


def _notify_patient(
    mailer: Mailer, patient: dict, prescription: dict, doctor: dict, client_url: str
) -> None:
    try:
        send_prescription_notification(mailer, patient, prescription, doctor, client_url)
    except Exception as e:
        logger.warning("Email notification to %s failed: %s", patient.get("email"), e)
        return
    logger.info("Email notification sent to %s", patient.get("email"))


@router.get("")
def list_prescriptions(
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return list_for_user(db, user)


@router.get("/stats")
def prescription_stats(
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    return doctor_stats(db, doctor["id"])


@router.get("/{prescription_id}")
def get_prescription(
    prescription_id: str,
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return _visible_prescription(db, prescription_id, user)


@router.post("", status_code=201)
def create_prescription(
    payload: PrescriptionCreate,
    background_tasks: BackgroundTasks,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    try:
        patient = resolve_patient(db, payload.patientId, payload.patientEmail)
    except PatientNotFound as e:
        logger.info("Prescription patient not found: %s", e.searched)
        raise HTTPException(status_code=404, detail={"message": str(e), "searched": e.searched})

    doc = build_prescription(doctor["id"], patient, payload.model_dump(exclude_none=True))
    prescription = db.create_prescription(doc)
    logger.info("Prescription %s created by doctor %s", prescription["id"], doctor["id"])

    background_tasks.add_task(
        _notify_patient, mailer, patient, prescription, doctor, settings.client_url
    )
    return prescription


@router.put("/{prescription_id}")
def update_prescription(
    prescription_id: str,
    payload: PrescriptionUpdate,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    _owned_prescription(db, prescription_id, doctor)
    changes = update_changes(payload.model_dump(exclude_unset=True))
    updated = db.update_prescription(prescription_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Prescription not found")
    return updated


@router.delete("/{prescription_id}", response_model=MessageResponse)
def delete_prescription(
    prescription_id: str,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    _owned_prescription(db, prescription_id, doctor)
    if not db.delete_prescription(prescription_id):
        raise HTTPException(status_code=500, detail="Failed to delete prescription")
    return {"message": "Prescription deleted successfully"}


@router.get("/{prescription_id}/download")
def download_prescription(
    prescription_id: str,
    user: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    prescription = _visible_prescription(db, prescription_id, user)
    patient = db.get_user(prescription.get("patientId"))
    doctor = db.get_user(prescription.get("doctorId"))
    if not patient or not doctor:
        raise HTTPException(status_code=500, detail="Failed to retrieve user information")

    def load_image(url: str) -> Optional[bytes]:
        key = storage_key_for_url(url)
        return storage.get_bytes(key) if key else None

    pdf = render_prescription_pdf(prescription, patient, doctor, load_image)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="prescription-{prescription_id}.pdf"'
        },
    )
