"""HTTP client for the CuraMind API.

Every successful call returns an envelope ``{"success": True, "data": ...}``.
Replies that already carry a ``success`` flag pass through untouched. Failures
raise ``ApiError``; a 401 also clears the session and sends the caller back
to the login screen.
"""

import os
from typing import Any, Callable, Dict, Optional

import requests

DEFAULT_BASE_URL = os.getenv("CURAMIND_API_URL", "http://localhost:5000/api")
LOGIN_ROUTE = "/login"

NETWORK_ERROR_MESSAGE = "Unable to connect to the server. Please check your internet connection."
REQUEST_ERROR_MESSAGE = "An error occurred while processing your request."


class ApiError(Exception):
    """Raised for any failed API call."""

    def __init__(self, message: str, error: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error = error
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "message": self.message, "status": self.status}


class AuthSession:
    """Holds the bearer token between login and logout."""

    def __init__(self, token: Optional[str] = None):
        self.token = token
        self.user: Optional[Dict[str, Any]] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def login(self, token: str, user: Optional[Dict[str, Any]] = None) -> None:
        self.token = token
        self.user = user

    def logout(self) -> None:
        self.token = None
        self.user = None


class Resource:
    def __init__(self, client: "ApiClient", path: str):
        self.client = client
        self.path = path

    def list(self, **params) -> Dict[str, Any]:
        return self.client.get(self.path, params=params or None)

    def get(self, item_id: str) -> Dict[str, Any]:
        return self.client.get(f"{self.path}/{item_id}")

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post(self.path, data)

    def update(self, item_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.put(f"{self.path}/{item_id}", data)

    def delete(self, item_id: str) -> Dict[str, Any]:
        return self.client.delete(f"{self.path}/{item_id}")


class AppointmentResource(Resource):
    def set_status(self, item_id: str, status: str) -> Dict[str, Any]:
        return self.client.put(f"{self.path}/{item_id}/status", {"status": status})


class PrescriptionResource(Resource):
    def generate(self, patient_id: str, symptoms: str, medical_history: str = "") -> Dict[str, Any]:
        return self.client.post(
            f"{self.path}/generate",
            {"patient_id": patient_id, "symptoms": symptoms, "medical_history": medical_history},
        )

    def manual(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.client.post(f"{self.path}/manual", data)

    def validate(self, prescription: str) -> Dict[str, Any]:
        return self.client.post(f"{self.path}/validate", {"prescription": prescription})

    def finalize(self, item_id: str, final_text: Optional[str] = None) -> Dict[str, Any]:
        body = {"doctor_final_prescription": final_text} if final_text else {}
        return self.client.put(f"{self.path}/{item_id}/finalize", body)

    def for_patient(self, patient_id: str) -> Dict[str, Any]:
        return self.client.get(f"{self.path}/patient/{patient_id}")


class ApiClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[AuthSession] = None,
        on_unauthorized: Optional[Callable[[str], None]] = None,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or AuthSession()
        self.on_unauthorized = on_unauthorized
        self.http = http or requests.Session()

        self.doctors = Resource(self, "/doctors")
        self.patients = Resource(self, "/patients")
        self.appointments = AppointmentResource(self, "/appointments")
        self.prescriptions = PrescriptionResource(self, "/prescriptions")

    def request(self, method: str, path: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"

        try:
            response = self.http.request(method, self.base_url + path, json=json, params=params, headers=headers)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout):
            raise ApiError(NETWORK_ERROR_MESSAGE, error="Network Error")
        except requests.exceptions.RequestException as e:
            raise ApiError(str(e) or REQUEST_ERROR_MESSAGE, error="Request Error")

        return self._handle_response(response)

    def _handle_response(self, response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        if not response.ok:
            status = response.status_code
            if status == 401:
                self.session.logout()
                if self.on_unauthorized:
                    self.on_unauthorized(LOGIN_ROUTE)
            data = body if isinstance(body, dict) else {}
            message = data.get("message") or data.get("detail")
            raise ApiError(
                message if isinstance(message, str) else "An error occurred",
                error=data.get("error") or f"Request failed with status code {status}",
                status=status,
            )

        if isinstance(body, dict) and "success" in body:
            return body
        return {"success": True, "data": body}

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.request("GET", path, params=params)

    def post(self, path: str, data: Any = None) -> Dict[str, Any]:
        return self.request("POST", path, json=data)

    def put(self, path: str, data: Any = None) -> Dict[str, Any]:
        return self.request("PUT", path, json=data)

    def delete(self, path: str) -> Dict[str, Any]:
        return self.request("DELETE", path)

    # Auth
    def login(self, email: str, password: str) -> Dict[str, Any]:
        envelope = self.post("/auth/login", {"email": email, "password": password})
        data = envelope["data"]
        self.session.login(data["access_token"], data.get("user"))
        return envelope

    def logout(self) -> None:
        self.session.logout()

    def me(self) -> Dict[str, Any]:
        return self.get("/auth/me")
