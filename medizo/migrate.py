"""
Copy users and prescriptions from the JSON-file store into another store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from medizo.db import DbClient

logger = logging.getLogger(__name__)

_SYSTEM_KEYS = ("id", "updatedAt")


@dataclass
class MigrationSummary:
    users_created: int = 0
    users_updated: int = 0
    prescriptions_created: int = 0
    prescriptions_skipped: int = 0


def _strip(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k not in _SYSTEM_KEYS}


def migrate(source: DbClient, target: DbClient) -> MigrationSummary:
    """
    Upsert users by email, then import prescriptions with their doctor and
    patient ids remapped. Prescriptions whose doctor or patient cannot be
    resolved are skipped.
    """
    summary = MigrationSummary()
    id_map: dict[str, str] = {}

    source_users = source.list_users()
    for user in source_users:
        existing = target.get_user_by_email(user.get("email", ""))
        if existing:
            target.update_user(existing["id"], _strip(user))
            id_map[str(user["id"])] = existing["id"]
            summary.users_updated += 1
        else:
            created = target.create_user(_strip(user))
            id_map[str(user["id"])] = created["id"]
            summary.users_created += 1

    # Cross-references between users can only be rewritten once every id is known.
    for user in source_users:
        changes = {}
        if user.get("linkedPatients"):
            changes["linkedPatients"] = [
                id_map.get(str(p), str(p)) for p in user["linkedPatients"]
            ]
        if user.get("createdByDoctor"):
            creator = user["createdByDoctor"]
            changes["createdByDoctor"] = id_map.get(str(creator), creator)
        if changes:
            target.update_user(id_map[str(user["id"])], changes)

    for prescription in source.list_prescriptions():
        doctor_id = id_map.get(str(prescription.get("doctorId")))
        patient_id = id_map.get(str(prescription.get("patientId")))
        if not doctor_id or not patient_id:
            logger.warning(
                "Skipping prescription %s: doctor or patient not found", prescription.get("id")
            )
            summary.prescriptions_skipped += 1
            continue
        target.create_prescription(
            {**_strip(prescription), "doctorId": doctor_id, "patientId": patient_id}
        )
        summary.prescriptions_created += 1

    return summary
