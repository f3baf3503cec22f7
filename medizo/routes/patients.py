"""
Patient records and the doctor's view of their patients.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from medizo.db import DbClient
from medizo.dependencies import get_current_user, get_db_client, require_doctor, require_patient
from medizo.prescriptions import newest_first, without_qr
from medizo.routes.common import patient_or_404
from medizo.schemas import MedicalInfoUpdate, PatientProfileUpdate
from medizo.security import public_user

router = APIRouter()


@router.get("")
def list_patients(
    _: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return [public_user(p) for p in db.list_users(role="patient")]


@router.get("/profile")
def get_profile(patient: dict = Depends(require_patient)):
    return patient


@router.put("/profile")
def update_profile(
    payload: PatientProfileUpdate,
    patient: dict = Depends(require_patient),
    db: DbClient = Depends(get_db_client),
):
    updated = db.update_user(patient["id"], payload.model_dump(exclude_unset=True))
    if not updated:
        raise HTTPException(status_code=404, detail="Patient not found")
    return public_user(updated)


@router.get("/doctor/managed")
def managed_patients(
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    """Patients with at least one prescription from this doctor, with their history."""
    by_patient: dict[str, list[dict]] = {}
    for p in db.list_prescriptions(doctor_id=doctor["id"]):
        by_patient.setdefault(str(p.get("patientId")), []).append(without_qr(p))

    managed = []
    for patient_id, history in by_patient.items():
        patient = db.get_user(patient_id)
        if not patient or patient.get("role") != "patient":
            continue
        history = newest_first(history)
        managed.append(
            {
                **public_user(patient),
                "prescriptionHistory": history,
                "totalPrescriptions": len(history),
                "latestPrescription": history[0] if history else None,
            }
        )
    return managed


@router.get("/{patient_id}")
def get_patient(
    patient_id: str,
    _: dict = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return public_user(patient_or_404(db, patient_id))


@router.get("/{patient_id}/medical-details")
def medical_details(
    patient_id: str,
    doctor: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient = patient_or_404(db, patient_id)
    prescriptions = db.list_prescriptions(doctor_id=doctor["id"], patient_id=patient_id)
    history = newest_first([without_qr(p) for p in prescriptions])

    medications = []
    for p in history:
        medications.extend(p.get("medications") or [])
    diagnoses = list(dict.fromkeys(p["diagnosis"] for p in history if p.get("diagnosis")))

    return {
        **public_user(patient),
        "prescriptionHistory": history,
        "totalPrescriptions": len(history),
        "activePrescriptions": sum(1 for p in history if p.get("status") == "active"),
        "completedPrescriptions": sum(1 for p in history if p.get("status") == "completed"),
        "allMedications": medications,
        "diagnoses": diagnoses,
        "allergies": patient.get("allergies") or [],
        "medicalHistory": patient.get("medicalHistory") or [],
        "emergencyContact": patient.get("emergencyContact") or None,
        "bloodType": patient.get("bloodType") or None,
        "insurance": patient.get("insurance") or None,
    }


@router.put("/{patient_id}/medical-info")
def update_medical_info(
    patient_id: str,
    payload: MedicalInfoUpdate,
    _: dict = Depends(require_doctor),
    db: DbClient = Depends(get_db_client),
):
    patient = patient_or_404(db, patient_id)
    # Empty values keep what is already on record.
    changes = {
        "allergies": payload.allergies or patient.get("allergies") or [],
        "medicalHistory": payload.medicalHistory or patient.get("medicalHistory") or [],
        "emergencyContact": payload.emergencyContact or patient.get("emergencyContact") or None,
        "bloodType": payload.bloodType or patient.get("bloodType") or None,
        "insurance": payload.insurance or patient.get("insurance") or None,
    }
    updated = db.update_user(patient_id, changes)
    if not updated:
        raise HTTPException(status_code=404, detail="Failed to update patient")
    return public_user(updated)
