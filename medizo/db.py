"""
Document persistence for users and prescriptions.

Two interchangeable backends implement ``DbClient``: a SQLAlchemy-backed
document store (Postgres in production, SQLite in tests) and a JSON-file
fallback used when no database is configured.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy import JSON, Column, String, create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
PRESCRIPTIONS_FILE = "prescriptions.json"


class DuplicateEmailError(ValueError):
    """Raised when creating a user whose email is already registered."""


class DbClient(Protocol):
    """Interface for document access."""

    backend_name: str

    def list_users(self, role: Optional[str] = None) -> list[dict]:
        ...

    def get_user(self, user_id: str) -> Optional[dict]:
        ...

    def get_user_by_email(self, email: str) -> Optional[dict]:
        ...

    def get_user_by_google_id(self, google_id: str) -> Optional[dict]:
        ...

    def create_user(self, doc: dict) -> dict:
        ...

    def update_user(self, user_id: str, changes: dict) -> Optional[dict]:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def list_prescriptions(
        self,
        *,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> list[dict]:
        ...

    def get_prescription(self, prescription_id: str) -> Optional[dict]:
        ...

    def create_prescription(self, doc: dict) -> dict:
        ...

    def update_prescription(
        self, prescription_id: str, changes: dict
    ) -> Optional[dict]:
        ...

    def delete_prescription(self, prescription_id: str) -> bool:
        ...

    def reset(self) -> None:
        ...


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _new_document(doc: dict) -> dict:
    created = copy.deepcopy(doc)
    created["id"] = str(created.get("id") or new_id())
    stamp = now_iso()
    created.setdefault("createdAt", stamp)
    created["updatedAt"] = stamp
    return created


def _merge_document(existing: dict, changes: dict) -> dict:
    merged = {**existing, **copy.deepcopy(changes)}
    merged["id"] = existing["id"]
    merged["updatedAt"] = now_iso()
    return merged


def _normalize_email(email: Optional[str]) -> str:
    return str(email or "").strip().lower()


class JsonFileDbClient:
    """
    JSON-file document store.

    Each collection is a single JSON array on disk. Every write rewrites the
    whole file; a lock serializes writers inside this process.
    """

    backend_name = "json"

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, name: str) -> Path:
        return self.data_dir / name

    def _read(self, name: str) -> list[dict]:
        path = self._path(name)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "[]")
        except (OSError, ValueError) as e:
            logger.error("Error reading %s: %s", path, e)
            return []
        if not isinstance(data, list):
            logger.error("Expected a JSON array in %s, found %s", path, type(data).__name__)
            return []
        return data

    def _write(self, name: str, rows: list[dict]) -> None:
        path = self._path(name)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self.data_dir), prefix=f".{name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(rows, f, indent=2, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    # Users

    def list_users(self, role: Optional[str] = None) -> list[dict]:
        users = self._read(USERS_FILE)
        if role:
            users = [u for u in users if u.get("role") == role]
        return users

    def get_user(self, user_id: str) -> Optional[dict]:
        for user in self._read(USERS_FILE):
            if str(user.get("id")) == str(user_id):
                return user
        return None

    def get_user_by_email(self, email: str) -> Optional[dict]:
        target = _normalize_email(email)
        if not target:
            return None
        for user in self._read(USERS_FILE):
            if _normalize_email(user.get("email")) == target:
                return user
        return None

    def get_user_by_google_id(self, google_id: str) -> Optional[dict]:
        if not google_id:
            return None
        for user in self._read(USERS_FILE):
            if user.get("googleId") == google_id:
                return user
        return None

    def create_user(self, doc: dict) -> dict:
        with self._lock:
            users = self._read(USERS_FILE)
            email = _normalize_email(doc.get("email"))
            if any(_normalize_email(u.get("email")) == email for u in users):
                raise DuplicateEmailError("User with this email already exists")
            created = _new_document({**doc, "email": email})
            users.append(created)
            self._write(USERS_FILE, users)
            return created

    def update_user(self, user_id: str, changes: dict) -> Optional[dict]:
        if "email" in changes:
            changes = {**changes, "email": _normalize_email(changes["email"])}
        with self._lock:
            users = self._read(USERS_FILE)
            if "email" in changes and any(
                _normalize_email(u.get("email")) == changes["email"]
                and str(u.get("id")) != str(user_id)
                for u in users
            ):
                raise DuplicateEmailError("User with this email already exists")
            for index, user in enumerate(users):
                if str(user.get("id")) == str(user_id):
                    users[index] = _merge_document(user, changes)
                    self._write(USERS_FILE, users)
                    return users[index]
        return None

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            users = self._read(USERS_FILE)
            remaining = [u for u in users if str(u.get("id")) != str(user_id)]
            if len(remaining) == len(users):
                return False
            self._write(USERS_FILE, remaining)
            return True

    # Prescriptions

    def list_prescriptions(
        self,
        *,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> list[dict]:
        rows = self._read(PRESCRIPTIONS_FILE)
        if doctor_id is not None:
            rows = [p for p in rows if str(p.get("doctorId")) == str(doctor_id)]
        if patient_id is not None:
            rows = [p for p in rows if str(p.get("patientId")) == str(patient_id)]
        return rows

    def get_prescription(self, prescription_id: str) -> Optional[dict]:
        for row in self._read(PRESCRIPTIONS_FILE):
            if str(row.get("id")) == str(prescription_id):
                return row
        return None

    def create_prescription(self, doc: dict) -> dict:
        with self._lock:
            rows = self._read(PRESCRIPTIONS_FILE)
            created = _new_document(doc)
            rows.append(created)
            self._write(PRESCRIPTIONS_FILE, rows)
            return created

    def update_prescription(
        self, prescription_id: str, changes: dict
    ) -> Optional[dict]:
        with self._lock:
            rows = self._read(PRESCRIPTIONS_FILE)
            for index, row in enumerate(rows):
                if str(row.get("id")) == str(prescription_id):
                    rows[index] = _merge_document(row, changes)
                    self._write(PRESCRIPTIONS_FILE, rows)
                    return rows[index]
        return None

    def delete_prescription(self, prescription_id: str) -> bool:
        with self._lock:
            rows = self._read(PRESCRIPTIONS_FILE)
            remaining = [p for p in rows if str(p.get("id")) != str(prescription_id)]
            if len(remaining) == len(rows):
                return False
            self._write(PRESCRIPTIONS_FILE, remaining)
            return True

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self._write(USERS_FILE, [])
            self._write(PRESCRIPTIONS_FILE, [])


class SqlDocumentDbClient:
    """
    Document store on top of SQLAlchemy.

    Each entity is one row holding the full document as JSON, with the
    columns used for lookups (email, role, owner ids) kept alongside.
    """

    backend_name = "database"

    def __init__(self, dsn: str):
        engine_kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
        if dsn.startswith("postgres"):
            engine_kwargs.update({"pool_recycle": 1800, "pool_size": 5, "max_overflow": 10})
        self.engine = create_engine(dsn, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _sync_user_columns(row: "UserRow", doc: dict) -> None:
        row.email = _normalize_email(doc.get("email"))
        row.role = doc.get("role") or ""
        row.google_id = doc.get("googleId") or None
        row.created_at = doc["createdAt"]
        row.updated_at = doc["updatedAt"]
        row.document = doc

    @staticmethod
    def _sync_prescription_columns(row: "PrescriptionRow", doc: dict) -> None:
        row.doctor_id = str(doc.get("doctorId") or "")
        row.patient_id = str(doc.get("patientId") or "")
        row.status = doc.get("status") or "active"
        row.created_at = doc["createdAt"]
        row.updated_at = doc["updatedAt"]
        row.document = doc

    # Users

    def list_users(self, role: Optional[str] = None) -> list[dict]:
        with self.Session() as session:
            stmt = select(UserRow).order_by(UserRow.created_at.asc())
            if role:
                stmt = stmt.where(UserRow.role == role)
            return [dict(row.document) for row in session.execute(stmt).scalars()]

    def get_user(self, user_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(UserRow, str(user_id))
            return dict(row.document) if row else None

    def get_user_by_email(self, email: str) -> Optional[dict]:
        target = _normalize_email(email)
        if not target:
            return None
        with self.Session() as session:
            stmt = select(UserRow).where(func.lower(UserRow.email) == target)
            row = session.execute(stmt).scalar_one_or_none()
            return dict(row.document) if row else None

    def get_user_by_google_id(self, google_id: str) -> Optional[dict]:
        if not google_id:
            return None
        with self.Session() as session:
            stmt = select(UserRow).where(UserRow.google_id == google_id)
            row = session.execute(stmt).scalars().first()
            return dict(row.document) if row else None

    def create_user(self, doc: dict) -> dict:
        created = _new_document({**doc, "email": _normalize_email(doc.get("email"))})
        if self.get_user_by_email(created["email"]):
            raise DuplicateEmailError("User with this email already exists")
        with self.Session() as session:
            row = UserRow(id=created["id"])
            self._sync_user_columns(row, created)
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateEmailError("User with this email already exists") from e
        return created

    def update_user(self, user_id: str, changes: dict) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(UserRow, str(user_id))
            if not row:
                return None
            if "email" in changes:
                changes = {**changes, "email": _normalize_email(changes["email"])}
            merged = _merge_document(dict(row.document), changes)
            self._sync_user_columns(row, merged)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateEmailError("User with this email already exists") from e
            return merged

    def delete_user(self, user_id: str) -> bool:
        with self.Session() as session:
            row = session.get(UserRow, str(user_id))
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    # Prescriptions

    def list_prescriptions(
        self,
        *,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> list[dict]:
        with self.Session() as session:
            stmt = select(PrescriptionRow).order_by(PrescriptionRow.created_at.asc())
            if doctor_id is not None:
                stmt = stmt.where(PrescriptionRow.doctor_id == str(doctor_id))
            if patient_id is not None:
                stmt = stmt.where(PrescriptionRow.patient_id == str(patient_id))
            return [dict(row.document) for row in session.execute(stmt).scalars()]

    def get_prescription(self, prescription_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(PrescriptionRow, str(prescription_id))
            return dict(row.document) if row else None

    def create_prescription(self, doc: dict) -> dict:
        created = _new_document(doc)
        with self.Session() as session:
            row = PrescriptionRow(id=created["id"])
            self._sync_prescription_columns(row, created)
            session.add(row)
            session.commit()
        return created

    def update_prescription(
        self, prescription_id: str, changes: dict
    ) -> Optional[dict]:
        with self.Session() as session:
            row = session.get(PrescriptionRow, str(prescription_id))
            if not row:
                return None
            merged = _merge_document(dict(row.document), changes)
            self._sync_prescription_columns(row, merged)
            session.commit()
            return merged

    def delete_prescription(self, prescription_id: str) -> bool:
        with self.Session() as session:
            row = session.get(PrescriptionRow, str(prescription_id))
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def reset(self) -> None:
        with self.Session() as session:
            session.query(PrescriptionRow).delete()
            session.query(UserRow).delete()
            session.commit()


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    role = Column(String, nullable=False, index=True)
    google_id = Column(String, nullable=True, index=True)
    document = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class PrescriptionRow(Base):
    __tablename__ = "prescriptions"

    id = Column(String, primary_key=True)
    doctor_id = Column(String, nullable=False, index=True)
    patient_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default="active")
    document = Column(JSON, nullable=False)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
