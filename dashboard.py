"""Terminal screens for the CuraMind dashboard.

Each screen owns its own loading and error presentation: ``load()`` runs the
read query through the shared ``QueryCache``, ``render()`` prints it with rich,
and mutations invalidate the affected cache tags and report where to navigate
next.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Literal, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, Field, ValidationError
from rich.console import Console
from rich.table import Table

from api_client import ApiClient, ApiError
from query_cache import QueryCache, QueryKey

EMAIL_PATTERN = r"^\S+@\S+\.\S+$"
APPOINTMENT_STATUSES = ("scheduled", "completed", "cancelled", "no-show")


@dataclass
class QueryState:
    status: str = "loading"  # loading | error | success
    data: Any = None
    error: Optional[str] = None


@dataclass
class MutationResult:
    ok: bool
    data: Any = None
    errors: Dict[str, str] = field(default_factory=dict)
    message: Optional[str] = None
    navigate_to: Optional[str] = None


# Forms
class LoginForm(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)


class DoctorForm(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6)
    specialization: str = Field(..., min_length=1)
    experience: int = Field(..., ge=0)


class PatientForm(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[Literal["male", "female", "other"]] = None
    phone: Optional[str] = None
    assigned_doctor: Optional[str] = None


class AppointmentForm(BaseModel):
    doctor: str = Field(..., min_length=1)
    patient: str = Field(..., min_length=1)
    date: datetime
    time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    reason: str = "General Checkup"
    notes: Optional[str] = None


class PrescriptionForm(BaseModel):
    patient_id: str = Field(..., min_length=1)
    symptoms: str = Field(..., min_length=1)
    medical_history: str = ""


def form_errors(exc: ValidationError) -> Dict[str, str]:
    """First message per field, keyed by dotted field path."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        name = ".".join(str(p) for p in err["loc"]) or "form"
        errors.setdefault(name, err["msg"])
    return errors


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return str(len(value))
    return str(value)


class Screen:
    tag = ""
    title = ""
    columns: Sequence[Tuple[str, str]] = ()

    def __init__(self, client: ApiClient, cache: QueryCache):
        self.client = client
        self.cache = cache

    def query_key(self) -> QueryKey:
        return (self.tag,)

    def fetch(self) -> Any:
        raise NotImplementedError

    def load(self) -> QueryState:
        try:
            data = self.cache.get(self.query_key(), self.fetch)
        except ApiError as e:
            return QueryState("error", error=e.message)
        return QueryState("success", data=data)

    def render(self, console: Console, state: Optional[QueryState] = None) -> None:
        state = state or self.load()
        if state.status == "loading":
            console.print("Loading...")
            return
        if state.status == "error":
            console.print(f"[red]Error:[/red] {state.error}")
            return

        table = Table(title=self.title)
        for header, _ in self.columns:
            table.add_column(header)
        for row in state.data or []:
            table.add_row(*(_cell(row.get(key)) for _, key in self.columns))
        console.print(table)

    def _mutate(
        self,
        call: Callable[[], Dict[str, Any]],
        navigate_to: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> MutationResult:
        try:
            envelope = call()
        except ApiError as e:
            return MutationResult(ok=False, message=e.message)
        for tag in (self.tag,) if tags is None else tags:
            self.cache.invalidate(tag)
        return MutationResult(ok=True, data=envelope.get("data"), navigate_to=navigate_to)

    def _submit(
        self,
        form_cls: Type[BaseModel],
        values: Dict[str, Any],
        send: Callable[[Dict[str, Any]], Dict[str, Any]],
        navigate_to: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> MutationResult:
        # Invalid input never reaches the API
        try:
            form = form_cls(**values)
        except ValidationError as e:
            return MutationResult(ok=False, errors=form_errors(e), message="Please fix the highlighted fields")
        body = form.model_dump(mode="json", exclude_none=True)
        return self._mutate(lambda: send(body), navigate_to=navigate_to, tags=tags)


class LoginScreen(Screen):
    title = "Sign in"

    def fetch(self) -> Any:
        return None

    def submit(self, values: Dict[str, Any]) -> MutationResult:
        result = self._submit(
            LoginForm,
            values,
            lambda body: self.client.login(body["email"], body["password"]),
            navigate_to="/dashboard",
            tags=(),
        )
        if result.ok:
            # Cached data belongs to the previous user
            self.cache.clear()
        return result


class DoctorsScreen(Screen):
    tag = "doctors"
    title = "Doctors"
    columns = (
        ("Name", "name"),
        ("Email", "email"),
        ("Specialization", "specialization"),
        ("Experience", "experience"),
        ("Role", "role"),
        ("Patients", "patients"),
    )

    def fetch(self) -> Any:
        return self.client.doctors.list(role="doctor")["data"]

    def delete(self, doctor_id: str) -> MutationResult:
        return self._mutate(lambda: self.client.doctors.delete(doctor_id), navigate_to="/doctors")


class AddDoctorScreen(Screen):
    tag = "doctors"
    title = "Add doctor"

    def fetch(self) -> Any:
        return None

    def submit(self, values: Dict[str, Any]) -> MutationResult:
        return self._submit(DoctorForm, values, self.client.doctors.create, navigate_to="/doctors")


class PatientsScreen(Screen):
    tag = "patients"
    title = "Patients"
    columns = (
        ("Name", "name"),
        ("Email", "email"),
        ("Age", "age"),
        ("Gender", "gender"),
        ("Phone", "phone"),
        ("Appointments", "appointments"),
    )

    def fetch(self) -> Any:
        return self.client.patients.list()["data"]

    def create(self, values: Dict[str, Any]) -> MutationResult:
        return self._submit(
            PatientForm,
            values,
            self.client.patients.create,
            navigate_to="/patients",
            tags=("patients", "doctors"),
        )


class AppointmentsScreen(Screen):
    tag = "appointments"
    title = "Appointments"
    columns = (
        ("Date", "date"),
        ("Time", "time"),
        ("Doctor", "doctor"),
        ("Patient", "patient"),
        ("Status", "status"),
        ("Reason", "reason"),
    )

    def __init__(self, client: ApiClient, cache: QueryCache, doctor_id: Optional[str] = None):
        super().__init__(client, cache)
        self.doctor_id = doctor_id

    def query_key(self) -> QueryKey:
        return (self.tag, self.doctor_id)

    def fetch(self) -> Any:
        if self.doctor_id:
            return self.client.appointments.list(doctor=self.doctor_id)["data"]
        return self.client.appointments.list()["data"]

    def create(self, values: Dict[str, Any]) -> MutationResult:
        return self._submit(
            AppointmentForm,
            values,
            self.client.appointments.create,
            navigate_to="/appointments",
            tags=("appointments", "doctors", "patients"),
        )

    def set_status(self, appointment_id: str, status: str) -> MutationResult:
        if status not in APPOINTMENT_STATUSES:
            return MutationResult(ok=False, errors={"status": f"Must be one of: {', '.join(APPOINTMENT_STATUSES)}"})
        return self._mutate(lambda: self.client.appointments.set_status(appointment_id, status))


class PrescriptionScreen(Screen):
    tag = "prescriptions"
    title = "Prescriptions"
    columns = (
        ("Created", "created_at"),
        ("Symptoms", "symptoms"),
        ("Status", "status"),
        ("Manual", "is_manual"),
        ("Prescription", "doctor_final_prescription"),
    )

    def __init__(self, client: ApiClient, cache: QueryCache, patient_id: str):
        super().__init__(client, cache)
        self.patient_id = patient_id

    def query_key(self) -> QueryKey:
        return (self.tag, self.patient_id)

    def fetch(self) -> Any:
        return self.client.prescriptions.for_patient(self.patient_id)["data"]

    def generate(self, symptoms: str, medical_history: str = "") -> MutationResult:
        values = {"patient_id": self.patient_id, "symptoms": symptoms, "medical_history": medical_history}
        result = self._submit(
            PrescriptionForm,
            values,
            lambda body: self.client.prescriptions.generate(**body),
        )
        if result.ok:
            result.navigate_to = f"/prescriptions/{result.data['_id']}"
        return result

    def validate(self, text: str) -> MutationResult:
        if not text.strip():
            return MutationResult(ok=False, errors={"prescription": "Prescription text is required"})
        return self._mutate(lambda: self.client.prescriptions.validate(text), tags=())

    def finalize(self, prescription_id: str, final_text: Optional[str] = None) -> MutationResult:
        return self._mutate(
            lambda: self.client.prescriptions.finalize(prescription_id, final_text),
            navigate_to=f"/patients/{self.patient_id}",
        )
