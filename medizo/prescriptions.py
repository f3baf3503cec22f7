"""
Prescription service logic shared by the prescription and patient routes.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from medizo.db import DbClient, new_id, now_iso
from medizo.qr import qr_data_url

logger = logging.getLogger(__name__)

STATUSES = ("active", "completed", "cancelled")

# Fields a doctor may change after creation.
UPDATABLE_FIELDS = (
    "vitalSigns",
    "presentingComplaints",
    "clinicalFindings",
    "provisionalDiagnosis",
    "currentMedications",
    "pastSurgicalHistory",
    "medications",
    "medicationNotes",
    "investigations",
    "investigationNotes",
    "dietModifications",
    "lifestyleChanges",
    "warningSigns",
    "followUpInfo",
    "emergencyHelpline",
    "notes",
    "status",
    "medication",
    "dosage",
    "frequency",
    "duration",
    "instructions",
)

_LIST_DEFAULTS = (
    "presentingComplaints",
    "clinicalFindings",
    "provisionalDiagnosis",
    "currentMedications",
    "pastSurgicalHistory",
    "medications",
    "medicationNotes",
    "investigations",
    "dietModifications",
    "lifestyleChanges",
    "warningSigns",
    "testsRequired",
)


class PatientNotFound(LookupError):
    def __init__(self, patient_id: Optional[str], patient_email: Optional[str]):
        super().__init__("Patient not found")
        self.searched = {"patientId": patient_id, "patientEmail": patient_email}


def full_name(user: Optional[dict]) -> str:
    if not user:
        return ""
    return f"{user.get('firstName', '')} {user.get('lastName', '')}".strip()


def resolve_patient(
    db: DbClient, patient_id: Optional[str], patient_email: Optional[str]
) -> dict:
    """Find the patient by id first, then by email."""
    patient = None
    if patient_id:
        candidate = db.get_user(str(patient_id))
        if candidate and candidate.get("role") == "patient":
            patient = candidate
    if patient is None and patient_email:
        candidate = db.get_user_by_email(patient_email)
        if candidate and candidate.get("role") == "patient":
            patient = candidate
    if patient is None:
        raise PatientNotFound(patient_id, patient_email)
    return patient


def build_prescription(doctor_id: str, patient: dict, data: dict) -> dict:
    """
    Assemble a new prescription document from request data.

    Missing collections default to empty values, the legacy ``diagnosis`` and
    ``followUpDate`` fields are derived from the structured ones, and a QR code
    encoding the identifying fields is attached.
    """
    doc = {k: v for k, v in data.items() if v is not None}
    doc.pop("patientId", None)
    doc.pop("patientEmail", None)

    for key in _LIST_DEFAULTS:
        doc[key] = doc.get(key) or []
    doc["vitalSigns"] = doc.get("vitalSigns") or {}
    doc["followUpInfo"] = doc.get("followUpInfo") or {}
    for key in ("investigationNotes", "emergencyHelpline", "notes", "instructions"):
        doc[key] = doc.get(key) or ""

    if not doc.get("diagnosis"):
        doc["diagnosis"] = ", ".join(str(d) for d in doc["provisionalDiagnosis"])
    if not doc.get("followUpDate"):
        doc["followUpDate"] = doc["followUpInfo"].get("appointmentDate") or None
    doc["status"] = doc.get("status") or "active"

    prescription_id = new_id()
    created_at = now_iso()
    doc.update(
        {
            "id": prescription_id,
            "doctorId": str(doctor_id),
            "patientId": str(patient["id"]),
            "patientEmail": patient.get("email"),
            "createdAt": created_at,
        }
    )
    payload = {
        "id": prescription_id,
        "doctorId": doc["doctorId"],
        "patientId": doc["patientId"],
        "createdAt": created_at,
    }
    doc["qrCode"] = qr_data_url(json.dumps(payload))
    return doc


def update_changes(data: dict) -> dict:
    return {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}


def can_view(user: dict, prescription: dict) -> bool:
    if user.get("role") == "doctor":
        return str(prescription.get("doctorId")) == str(user["id"])
    if user.get("role") == "patient":
        return str(prescription.get("patientId")) == str(user["id"])
    return False


def newest_first(prescriptions: list[dict]) -> list[dict]:
    return sorted(prescriptions, key=lambda p: p.get("createdAt") or "", reverse=True)


def list_for_user(db: DbClient, user: dict) -> list[dict]:
    """Prescriptions visible to ``user`` with the counterpart's name attached."""
    if user.get("role") == "doctor":
        rows = []
        for p in db.list_prescriptions(doctor_id=user["id"]):
            patient = db.get_user(p.get("patientId"))
            rows.append(
                {
                    **p,
                    "patientName": full_name(patient) if patient else "Unknown Patient",
                    "patientEmail": patient.get("email") if patient else "N/A",
                }
            )
        return newest_first(rows)

    if user.get("role") == "patient":
        rows = []
        for p in db.list_prescriptions(patient_id=user["id"]):
            doctor = db.get_user(p.get("doctorId"))
            rows.append(
                {
                    **p,
                    "doctorName": f"Dr. {full_name(doctor)}" if doctor else "Unknown Doctor",
                    "doctorSpecialization": (
                        (doctor.get("specialization") or "N/A") if doctor else "N/A"
                    ),
                }
            )
        return newest_first(rows)
    return []


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def doctor_stats(db: DbClient, doctor_id: str, now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    prescriptions = newest_first(db.list_prescriptions(doctor_id=doctor_id))

    this_month = 0
    for p in prescriptions:
        created = _parse(p.get("createdAt"))
        if created and created.year == now.year and created.month == now.month:
            this_month += 1

    recent = []
    for p in prescriptions[:5]:
        patient = db.get_user(p.get("patientId"))
        recent.append(
            {
                "id": p["id"],
                "diagnosis": p.get("diagnosis"),
                "patientName": full_name(patient) if patient else "Unknown",
                "createdAt": p.get("createdAt"),
                "status": p.get("status"),
            }
        )

    return {
        "total": len(prescriptions),
        "active": sum(1 for p in prescriptions if p.get("status") == "active"),
        "completed": sum(1 for p in prescriptions if p.get("status") == "completed"),
        "thisMonth": this_month,
        "uniquePatients": len({str(p.get("patientId")) for p in prescriptions}),
        "recentPrescriptions": recent,
    }


def without_qr(prescription: dict) -> dict:
    return {k: v for k, v in prescription.items() if k != "qrCode"}
