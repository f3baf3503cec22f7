"""
Demo accounts created on first start so a fresh install can be logged into.
"""

from __future__ import annotations

import logging

from medizo.db import DbClient
from medizo.security import hash_password

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    {
        "firstName": "John",
        "lastName": "Smith",
        "email": "doctor@test.com",
        "role": "doctor",
        "specialization": "General Physician",
        "licenseNumber": "DOC123456",
    },
    {
        "firstName": "Sarah",
        "lastName": "Johnson",
        "email": "patient@test.com",
        "role": "patient",
        "dateOfBirth": "1990-05-15",
        "gender": "female",
        "phone": "555-0123",
        "address": "123 Main St, City",
        "bloodType": "O+",
        "allergies": ["Penicillin"],
        "chronicConditions": [],
        "emergencyContact": {
            "name": "Mike Johnson",
            "relationship": "Husband",
            "phone": "555-0124",
        },
    },
]


def seed_demo_users(db: DbClient) -> int:
    """
    Create the demo doctor and patient when the store has no users.

    Returns how many users were created.
    """
    if db.list_users():
        return 0
    hashed = hash_password(DEMO_PASSWORD)
    for user in DEMO_USERS:
        db.create_user({**user, "password": hashed, "authProvider": "local"})
    logger.info("Seeded %d demo users (password: %s)", len(DEMO_USERS), DEMO_PASSWORD)
    return len(DEMO_USERS)
