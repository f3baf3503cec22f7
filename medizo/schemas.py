"""
Pydantic schemas for request bodies and responses.

Field names follow the camelCase keys stored on documents.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MessageResponse(BaseModel):
    message: str


class RegisterRequest(BaseModel):
    # Role-specific profile fields (specialization, dateOfBirth, ...) pass through.
    model_config = ConfigDict(extra="allow")

    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class GoogleLoginRequest(BaseModel):
    credential: str
    role: str = "patient"


class SessionResponse(BaseModel):
    message: str
    user: dict
    token: str


class PasswordChangeRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = Field(default=None, min_length=6)


class CreatePatientRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    dateOfBirth: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    contactNumber: Optional[str] = None
    # doctor
    specialization: Optional[str] = None
    licenseNumber: Optional[str] = None
    clinicAddress: Optional[str] = None
    experience: Optional[Union[str, int]] = None
    qualifications: Optional[Union[str, list[str]]] = None
    # patient
    dateOfBirth: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    bloodType: Optional[str] = None
    allergies: Optional[Any] = None
    chronicConditions: Optional[list[str]] = None
    emergencyContact: Optional[Any] = None
    gender: Optional[str] = None
    diseaseHistory: Optional[Any] = None


DOCTOR_PROFILE_FIELDS = (
    "specialization",
    "licenseNumber",
    "clinicAddress",
    "experience",
    "qualifications",
)
PATIENT_PROFILE_FIELDS = (
    "dateOfBirth",
    "address",
    "phone",
    "bloodType",
    "allergies",
    "chronicConditions",
    "emergencyContact",
    "gender",
    "diseaseHistory",
)


class PatientProfileUpdate(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    dateOfBirth: Optional[str] = None
    contactNumber: Optional[str] = None
    address: Optional[str] = None


class MedicalInfoUpdate(BaseModel):
    allergies: Optional[Any] = None
    medicalHistory: Optional[list[Any]] = None
    emergencyContact: Optional[Any] = None
    bloodType: Optional[str] = None
    insurance: Optional[Any] = None


class DoctorProfileUpdate(BaseModel):
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    specialization: Optional[str] = None
    contactNumber: Optional[str] = None
    profileImage: Optional[str] = None
    clinicLogo: Optional[str] = None
    signature: Optional[str] = None
    clinicName: Optional[str] = None
    clinicAddress: Optional[str] = None
    alternateEmail: Optional[str] = None
    secondaryPhone: Optional[str] = None
    fax: Optional[str] = None
    whatsapp: Optional[str] = None
    website: Optional[str] = None
    linkedin: Optional[str] = None
    twitter: Optional[str] = None
    facebook: Optional[str] = None
    instagram: Optional[str] = None
    licenseNumber: Optional[str] = None
    registrationNumber: Optional[str] = None
    experience: Optional[Union[str, int]] = None
    qualifications: Optional[Union[str, list[str]]] = None


class UploadResponse(BaseModel):
    url: str


class Medication(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    type: Optional[str] = None
    dosage: Optional[str] = None
    duration: Optional[str] = None
    instructions: Optional[str] = None


class Investigation(BaseModel):
    model_config = ConfigDict(extra="allow")

    testName: str
    reason: Optional[str] = None
    priority: Optional[str] = None
    fasting: Optional[str] = None


class FollowUpInfo(BaseModel):
    appointmentDate: Optional[str] = None
    appointmentTime: Optional[str] = None
    purpose: Optional[str] = None
    bringItems: list[str] = Field(default_factory=list)


PrescriptionStatus = Literal["active", "completed", "cancelled"]


class PrescriptionFields(BaseModel):
    vitalSigns: Optional[dict[str, Any]] = None
    presentingComplaints: Optional[list[str]] = None
    clinicalFindings: Optional[list[str]] = None
    provisionalDiagnosis: Optional[list[str]] = None
    currentMedications: Optional[list[str]] = None
    pastSurgicalHistory: Optional[list[str]] = None
    medications: Optional[list[Medication]] = None
    medicationNotes: Optional[list[str]] = None
    investigations: Optional[list[Union[str, Investigation]]] = None
    investigationNotes: Optional[str] = None
    dietModifications: Optional[list[str]] = None
    lifestyleChanges: Optional[list[str]] = None
    warningSigns: Optional[list[str]] = None
    followUpInfo: Optional[FollowUpInfo] = None
    emergencyHelpline: Optional[str] = None
    notes: Optional[str] = None
    instructions: Optional[str] = None


class PrescriptionCreate(PrescriptionFields):
    patientId: Optional[str] = None
    patientEmail: Optional[str] = None
    diagnosis: Optional[str] = None
    testsRequired: Optional[list[str]] = None
    followUpDate: Optional[str] = None


class PrescriptionUpdate(PrescriptionFields):
    status: Optional[PrescriptionStatus] = None
    medication: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    duration: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    storage: str
    databaseUrlConfigured: bool
