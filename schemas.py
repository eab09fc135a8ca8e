"""
Database Schemas for CuraMind

Each Pydantic model corresponds to a MongoDB collection.
Collection name = lowercase of the class name (handled by caller).

References between collections are stored as 24-hex id strings. They are
not enforced by the store, so a reference can outlive its target.
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

ObjectIdStr = Annotated[str, Field(pattern=r"^[0-9a-fA-F]{24}$")]

Role = Literal["doctor", "admin", "receptionist"]
Gender = Literal["male", "female", "other"]
AppointmentStatus = Literal["scheduled", "completed", "cancelled", "no-show"]
PrescriptionStatus = Literal["pending", "completed", "cancelled"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Doctor(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("doctor", description="doctor | admin | receptionist")
    specialization: str
    experience: int = Field(..., ge=0, description="Years of practice")
    profile_picture: Optional[str] = None
    patients: List[str] = Field(default_factory=list)
    appointments: List[str] = Field(default_factory=list)


class Address(BaseModel):
    street: str
    city: str
    state: str
    pincode: str


class MedicationEntry(BaseModel):
    medicine: str
    dosage: str
    duration: int = Field(..., ge=1, description="Duration in days")
    instructions: str = ""


class MedicalHistory(BaseModel):
    """Embedded in Patient, no identity of its own."""
    date: datetime = Field(default_factory=_now)
    diagnosis: str = Field(..., min_length=1)
    prescriptions: List[MedicationEntry] = Field(default_factory=list)


class Patient(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    medical_history: List[MedicalHistory] = Field(default_factory=list)
    assigned_doctor: Optional[ObjectIdStr] = None
    appointments: List[str] = Field(default_factory=list)


class Appointment(BaseModel):
    doctor: ObjectIdStr
    patient: ObjectIdStr
    date: datetime
    time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:mm")
    status: AppointmentStatus = Field("scheduled", description="scheduled | completed | cancelled | no-show")
    reason: str = "General Checkup"
    notes: Optional[str] = None


class Prescription(BaseModel):
    patient_id: ObjectIdStr
    doctor_id: ObjectIdStr
    symptoms: str
    medical_history: str = ""
    ai_prescription: str = ""
    doctor_final_prescription: str = ""
    is_manual: bool = False
    status: PrescriptionStatus = Field("pending", description="pending | completed | cancelled")
    feedback: str = ""
