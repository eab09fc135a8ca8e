from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ai_prescription import AIPrescriptionError, AIPrescriptionService, get_ai_service
from auth import (
    create_token,
    get_current_user,
    get_optional_user,
    hash_password,
    require_roles,
    verify_password,
)
from config import CORS_ORIGINS, DATABASE_NAME, JWT_EXPIRE_MINUTES, MONGO_URI, OPENAI_API_KEY, PORT
from database import connect, create_document, get_db, get_documents
from schemas import (
    Address,
    Appointment as AppointmentSchema,
    AppointmentStatus,
    Doctor as DoctorSchema,
    Gender,
    MedicalHistory,
    ObjectIdStr,
    Patient as PatientSchema,
    Prescription as PrescriptionSchema,
    PrescriptionStatus,
    Role,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client, db = connect(MONGO_URI, DATABASE_NAME)
    app.state.db = db
    app.state.ai_service = AIPrescriptionService()
    if not OPENAI_API_KEY:
        print("[WARN] OPENAI_API_KEY not set. Prescription generation will fail until it is configured.")
    yield
    client.close()


# App setup
app = FastAPI(title="CuraMind API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# Error responses
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation Error", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=400, content={"detail": "Duplicate field value", "error": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    print(f"[ERROR] {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Database error", "error": str(exc)})


# Helpers
def oid(id_str: str, label: str) -> ObjectId:
    # A malformed id can never match a document, so it reads as absent
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=f"{label} not found")


def serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    d["_id"] = str(d["_id"])
    d.pop("password_hash", None)
    return d


def fetch_or_404(db, collection: str, id_str: str, label: str) -> Dict[str, Any]:
    doc = db[collection].find_one({"_id": oid(id_str, label)})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def apply_update(db, collection: str, id_str: str, updates: Dict[str, Any], label: str) -> Dict[str, Any]:
    updates["updated_at"] = datetime.now(timezone.utc)
    doc = db[collection].find_one_and_update(
        {"_id": oid(id_str, label)},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return serialize(doc)


def delete_or_404(db, collection: str, id_str: str, label: str) -> Dict[str, Any]:
    res = db[collection].delete_one({"_id": oid(id_str, label)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return {"success": True, "id": id_str}


def require_reference(db, collection: str, id_str: str, label: str) -> None:
    if not db[collection].find_one({"_id": ObjectId(id_str)}, {"_id": 1}):
        raise HTTPException(status_code=400, detail=f"{label} not found")


# Models for requests
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: Dict[str, Any]


class DoctorCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    specialization: str
    experience: int = Field(..., ge=0)
    role: Role = "doctor"
    profile_picture: Optional[str] = None


class DoctorUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    specialization: Optional[str] = None
    experience: Optional[int] = Field(None, ge=0)
    role: Optional[Role] = None
    profile_picture: Optional[str] = None


class PatientCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    medical_history: List[MedicalHistory] = Field(default_factory=list)
    assigned_doctor: Optional[ObjectIdStr] = None


class PatientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    assigned_doctor: Optional[ObjectIdStr] = None


class AppointmentCreate(AppointmentSchema):
    pass


class AppointmentUpdate(BaseModel):
    date: Optional[datetime] = None
    time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class AppointmentStatusUpdate(BaseModel):
    status: AppointmentStatus


class PrescriptionGenerate(BaseModel):
    patient_id: ObjectIdStr
    symptoms: str = Field(..., min_length=1)
    medical_history: str = ""


class PrescriptionManual(BaseModel):
    patient_id: ObjectIdStr
    symptoms: str = Field(..., min_length=1)
    medical_history: str = ""
    doctor_final_prescription: str = Field(..., min_length=1)
    feedback: str = ""


class PrescriptionUpdate(BaseModel):
    doctor_final_prescription: Optional[str] = None
    status: Optional[PrescriptionStatus] = None
    feedback: Optional[str] = None


class PrescriptionFinalize(BaseModel):
    doctor_final_prescription: Optional[str] = None
    feedback: Optional[str] = None


class PrescriptionValidate(BaseModel):
    prescription: str = Field(..., min_length=1)


# Routes
@app.get("/")
def root():
    return {"name": "CuraMind API", "status": "ok"}


@app.get("/api/health")
def health():
    return {"status": "ok", "message": "Server is running"}


# Auth
@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, db=Depends(get_db)):
    user = db["doctor"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_token(str(user["_id"]), role=user.get("role", "doctor"))
    return TokenResponse(access_token=token, expires_in=JWT_EXPIRE_MINUTES * 60, user=serialize(user))


@app.get("/api/auth/me")
def me(current=Depends(get_current_user)):
    return current


# Doctors
@app.get("/api/doctors")
def list_doctors(role: Optional[Role] = None, db=Depends(get_db)):
    q = {"role": role} if role else {}
    return [serialize(d) for d in get_documents(db, "doctor", q)]


@app.post("/api/doctors", status_code=201)
def create_doctor(payload: DoctorCreate, db=Depends(get_db), current=Depends(get_optional_user)):
    if payload.role != "doctor" and (current is None or current.get("role") != "admin"):
        raise HTTPException(status_code=403, detail="Only admins can assign roles")
    doctor = DoctorSchema(
        password_hash=hash_password(payload.password),
        **payload.model_dump(exclude={"password"}),
    )
    did = create_document(db, "doctor", doctor)
    return serialize(db["doctor"].find_one({"_id": ObjectId(did)}))


@app.get("/api/doctors/{doctor_id}")
def get_doctor(doctor_id: str, db=Depends(get_db)):
    return serialize(fetch_or_404(db, "doctor", doctor_id, "Doctor"))


@app.put("/api/doctors/{doctor_id}")
def update_doctor(doctor_id: str, payload: DoctorUpdate, db=Depends(get_db), current=Depends(get_current_user)):
    is_admin = current.get("role") == "admin"
    if not is_admin and current["_id"] != doctor_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    updates = payload.model_dump(exclude_none=True)
    if "role" in updates and not is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to change role")
    if "password" in updates:
        updates["password_hash"] = hash_password(updates.pop("password"))
    return apply_update(db, "doctor", doctor_id, updates, "Doctor")


@app.delete("/api/doctors/{doctor_id}")
def delete_doctor(doctor_id: str, db=Depends(get_db), current=Depends(get_current_user)):
    if current.get("role") != "admin" and current["_id"] != doctor_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    # Patients and appointments keep their references to the removed doctor
    return delete_or_404(db, "doctor", doctor_id, "Doctor")


@app.get("/api/doctors/{doctor_id}/appointments")
def doctor_appointments(doctor_id: str, db=Depends(get_db), current=Depends(get_current_user)):
    fetch_or_404(db, "doctor", doctor_id, "Doctor")
    return [serialize(a) for a in get_documents(db, "appointment", {"doctor": doctor_id})]


@app.get("/api/doctors/{doctor_id}/patients")
def doctor_patients(doctor_id: str, db=Depends(get_db), current=Depends(get_current_user)):
    fetch_or_404(db, "doctor", doctor_id, "Doctor")
    return [serialize(p) for p in get_documents(db, "patient", {"assigned_doctor": doctor_id})]


# Patients
@app.get("/api/patients")
def list_patients(db=Depends(get_db)):
    patients = get_documents(db, "patient")
    doctor_ids = [ObjectId(p["assigned_doctor"]) for p in patients if p.get("assigned_doctor")]
    doctors = {
        str(d["_id"]): {"_id": str(d["_id"]), "name": d["name"], "specialization": d.get("specialization")}
        for d in db["doctor"].find({"_id": {"$in": doctor_ids}}, {"name": 1, "specialization": 1})
    }
    items = []
    for p in patients:
        item = serialize(p)
        # Null when unassigned or when the doctor has since been deleted
        item["assigned_doctor_info"] = doctors.get(p.get("assigned_doctor") or "")
        items.append(item)
    return items


@app.post("/api/patients", status_code=201)
def create_patient(payload: PatientCreate, db=Depends(get_db)):
    if payload.assigned_doctor:
        require_reference(db, "doctor", payload.assigned_doctor, "Doctor")
    pid = create_document(db, "patient", PatientSchema(**payload.model_dump()))
    if payload.assigned_doctor:
        db["doctor"].update_one({"_id": ObjectId(payload.assigned_doctor)}, {"$addToSet": {"patients": pid}})
    return serialize(db["patient"].find_one({"_id": ObjectId(pid)}))


@app.get("/api/patients/{patient_id}")
def get_patient(patient_id: str, db=Depends(get_db)):
    return serialize(fetch_or_404(db, "patient", patient_id, "Patient"))


@app.put("/api/patients/{patient_id}")
def update_patient(patient_id: str, payload: PatientUpdate, db=Depends(get_db)):
    existing = fetch_or_404(db, "patient", patient_id, "Patient")
    updates = payload.model_dump(exclude_none=True)
    new_doctor = updates.get("assigned_doctor")
    if new_doctor:
        require_reference(db, "doctor", new_doctor, "Doctor")
    doc = apply_update(db, "patient", patient_id, updates, "Patient")

    # Links change only once the patient update has gone through
    old_doctor = existing.get("assigned_doctor")
    if new_doctor and new_doctor != old_doctor:
        if old_doctor:
            db["doctor"].update_one({"_id": ObjectId(old_doctor)}, {"$pull": {"patients": doc["_id"]}})
        db["doctor"].update_one({"_id": ObjectId(new_doctor)}, {"$addToSet": {"patients": doc["_id"]}})
    return doc


@app.delete("/api/patients/{patient_id}")
def delete_patient(patient_id: str, db=Depends(get_db)):
    return delete_or_404(db, "patient", patient_id, "Patient")


@app.post("/api/patients/{patient_id}/medical-history", status_code=201)
def add_medical_history(patient_id: str, entry: MedicalHistory, db=Depends(get_db), current=Depends(get_current_user)):
    doc = db["patient"].find_one_and_update(
        {"_id": oid(patient_id, "Patient")},
        {
            "$push": {"medical_history": entry.model_dump()},
            "$set": {"updated_at": datetime.now(timezone.utc)},
        },
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Patient not found")
    return serialize(doc)


# Appointments
@app.get("/api/appointments")
def list_appointments(
    doctor: Optional[str] = None,
    patient: Optional[str] = None,
    status: Optional[AppointmentStatus] = None,
    db=Depends(get_db),
    current=Depends(get_current_user),
):
    q: Dict[str, Any] = {}
    if doctor:
        q["doctor"] = doctor
    if patient:
        q["patient"] = patient
    if status:
        q["status"] = status
    return [serialize(a) for a in get_documents(db, "appointment", q)]


@app.post("/api/appointments", status_code=201)
def create_appointment(payload: AppointmentCreate, db=Depends(get_db), current=Depends(get_current_user)):
    require_reference(db, "doctor", payload.doctor, "Doctor")
    require_reference(db, "patient", payload.patient, "Patient")
    aid = create_document(db, "appointment", AppointmentSchema(**payload.model_dump()))
    db["doctor"].update_one({"_id": ObjectId(payload.doctor)}, {"$addToSet": {"appointments": aid}})
    db["patient"].update_one({"_id": ObjectId(payload.patient)}, {"$addToSet": {"appointments": aid}})
    return serialize(db["appointment"].find_one({"_id": ObjectId(aid)}))


@app.get("/api/appointments/{appointment_id}")
def get_appointment(appointment_id: str, db=Depends(get_db), current=Depends(get_current_user)):
    return serialize(fetch_or_404(db, "appointment", appointment_id, "Appointment"))


@app.put("/api/appointments/{appointment_id}")
def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    db=Depends(get_db),
    current=Depends(get_current_user),
):
    return apply_update(db, "appointment", appointment_id, payload.model_dump(exclude_none=True), "Appointment")


@app.put("/api/appointments/{appointment_id}/status")
def update_appointment_status(
    appointment_id: str,
    payload: AppointmentStatusUpdate,
    db=Depends(get_db),
    current=Depends(get_current_user),
):
    return apply_update(db, "appointment", appointment_id, {"status": payload.status}, "Appointment")


@app.delete("/api/appointments/{appointment_id}")
def delete_appointment(appointment_id: str, db=Depends(get_db), current=Depends(get_current_user)):
    appt = fetch_or_404(db, "appointment", appointment_id, "Appointment")
    result = delete_or_404(db, "appointment", appointment_id, "Appointment")
    db["doctor"].update_one({"_id": oid(appt["doctor"], "Doctor")}, {"$pull": {"appointments": appointment_id}})
    db["patient"].update_one({"_id": oid(appt["patient"], "Patient")}, {"$pull": {"appointments": appointment_id}})
    return result


# Prescriptions
prescriber = require_roles("doctor", "admin")


@app.post("/api/prescriptions/generate", status_code=201)
def generate_prescription(
    payload: PrescriptionGenerate,
    db=Depends(get_db),
    ai: AIPrescriptionService = Depends(get_ai_service),
    current=Depends(prescriber),
):
    require_reference(db, "patient", payload.patient_id, "Patient")
    try:
        text = ai.generate(payload.symptoms, payload.medical_history)
    except OpenAIError as e:
        print(f"[ERROR] Prescription generation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to generate prescription: {e}")
    prescription = PrescriptionSchema(
        patient_id=payload.patient_id,
        doctor_id=current["_id"],
        symptoms=payload.symptoms,
        medical_history=payload.medical_history,
        ai_prescription=text,
        doctor_final_prescription=text,
    )
    pid = create_document(db, "prescription", prescription)
    return serialize(db["prescription"].find_one({"_id": ObjectId(pid)}))


@app.post("/api/prescriptions/manual", status_code=201)
def create_manual_prescription(payload: PrescriptionManual, db=Depends(get_db), current=Depends(prescriber)):
    require_reference(db, "patient", payload.patient_id, "Patient")
    prescription = PrescriptionSchema(
        doctor_id=current["_id"],
        is_manual=True,
        status="completed",
        **payload.model_dump(),
    )
    pid = create_document(db, "prescription", prescription)
    return serialize(db["prescription"].find_one({"_id": ObjectId(pid)}))


@app.post("/api/prescriptions/validate")
def validate_prescription(
    payload: PrescriptionValidate,
    ai: AIPrescriptionService = Depends(get_ai_service),
    current=Depends(prescriber),
):
    try:
        return {"is_valid": ai.validate(payload.prescription)}
    except (OpenAIError, AIPrescriptionError) as e:
        print(f"[ERROR] Prescription validation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to validate prescription: {e}")


@app.get("/api/prescriptions")
def list_prescriptions(status: Optional[PrescriptionStatus] = None, db=Depends(get_db), current=Depends(prescriber)):
    q = {"status": status} if status else {}
    return [serialize(p) for p in get_documents(db, "prescription", q)]


@app.get("/api/prescriptions/patient/{patient_id}")
def patient_prescriptions(patient_id: str, db=Depends(get_db), current=Depends(prescriber)):
    items = get_documents(db, "prescription", {"patient_id": patient_id})
    return [serialize(p) for p in sorted(items, key=lambda x: x["created_at"], reverse=True)]


@app.get("/api/prescriptions/doctor/{doctor_id}")
def doctor_prescriptions(doctor_id: str, db=Depends(get_db), current=Depends(prescriber)):
    items = get_documents(db, "prescription", {"doctor_id": doctor_id})
    return [serialize(p) for p in sorted(items, key=lambda x: x["created_at"], reverse=True)]


@app.get("/api/prescriptions/{prescription_id}")
def get_prescription(prescription_id: str, db=Depends(get_db), current=Depends(prescriber)):
    return serialize(fetch_or_404(db, "prescription", prescription_id, "Prescription"))


@app.put("/api/prescriptions/{prescription_id}")
def update_prescription(
    prescription_id: str,
    payload: PrescriptionUpdate,
    db=Depends(get_db),
    current=Depends(prescriber),
):
    return apply_update(db, "prescription", prescription_id, payload.model_dump(exclude_none=True), "Prescription")


@app.put("/api/prescriptions/{prescription_id}/finalize")
def finalize_prescription(
    prescription_id: str,
    payload: PrescriptionFinalize,
    db=Depends(get_db),
    current=Depends(prescriber),
):
    updates = payload.model_dump(exclude_none=True)
    updates["status"] = "completed"
    return apply_update(db, "prescription", prescription_id, updates, "Prescription")


@app.delete("/api/prescriptions/{prescription_id}")
def delete_prescription(prescription_id: str, db=Depends(get_db), current=Depends(prescriber)):
    return delete_or_404(db, "prescription", prescription_id, "Prescription")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
