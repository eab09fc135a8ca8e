"""Tests for AI-assisted prescriptions."""

from unittest.mock import MagicMock

import pytest
from bson.objectid import ObjectId
from openai import OpenAIError

from ai_prescription import AIPrescriptionError, AIPrescriptionService
from auth import create_token
from conftest import DEFAULT_REPLY, completion


def _service(reply):
    client = MagicMock()
    client.chat.completions.create.return_value = completion(reply)
    return AIPrescriptionService(client=client, model="gpt-4"), client


class TestAIPrescriptionService:
    """Unit tests for the OpenAI wrapper."""

    def test_generate_returns_reply_verbatim(self):
        service, client = _service("  Amoxicillin 500mg\nthree times daily  ")
        assert service.generate("sore throat", "none") == "  Amoxicillin 500mg\nthree times daily  "

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4"
        assert kwargs["messages"][0]["role"] == "system"
        assert "sore throat" in kwargs["messages"][1]["content"]
        assert "Medical history: none" in kwargs["messages"][1]["content"]

    def test_generate_empty_reply(self):
        service, _ = _service(None)
        assert service.generate("cough", "") == ""

    def test_generate_propagates_upstream_error(self):
        service, client = _service("")
        client.chat.completions.create.side_effect = OpenAIError("rate limited")
        with pytest.raises(OpenAIError):
            service.generate("cough", "")

    @pytest.mark.parametrize("reply,expected", [
        ("This prescription is valid.", True),
        ("Looks SAFE for an adult patient.", True),
        # Known false positive: "not valid" still contains "valid"
        ("This prescription is not valid.", True),
        ("Unsafe dosage for this patient.", True),
        ("Dosage exceeds the recommended maximum.", False),
    ])
    def test_validate_keyword_heuristic(self, reply, expected):
        service, _ = _service(reply)
        assert service.validate("Ibuprofen 400mg") is expected

    def test_validate_empty_reply(self):
        service, _ = _service("")
        with pytest.raises(AIPrescriptionError):
            service.validate("Ibuprofen 400mg")


class TestPrescriptionRoutes:
    """Tests for /api/prescriptions."""

    def test_requires_token(self, client, patient):
        resp = client.post("/api/prescriptions/generate", json={"patient_id": patient["_id"], "symptoms": "fever"})
        assert resp.status_code == 401

    def test_receptionist_forbidden(self, client, db, patient):
        rid = client.post("/api/doctors", json={
            "name": "Front Desk", "email": "desk@clinic.com", "password": "desk1234",
            "specialization": "Reception", "experience": 1,
        }).json()["_id"]
        db["doctor"].update_one({"_id": ObjectId(rid)}, {"$set": {"role": "receptionist"}})
        headers = {"Authorization": f"Bearer {create_token(rid, 'receptionist')}"}
        assert client.get("/api/prescriptions", headers=headers).status_code == 403

    def test_generate_stores_pending_draft(self, client, doctor, patient, auth_headers, openai_client):
        resp = client.post("/api/prescriptions/generate", json={
            "patient_id": patient["_id"],
            "symptoms": "fever, headache",
            "medical_history": "no known allergies",
        }, headers=auth_headers)
        assert resp.status_code == 201
        body = resp.json()
        assert body["ai_prescription"] == DEFAULT_REPLY
        assert body["doctor_final_prescription"] == DEFAULT_REPLY
        assert body["status"] == "pending"
        assert body["is_manual"] is False
        assert body["doctor_id"] == doctor["_id"]
        openai_client.chat.completions.create.assert_called_once()

    def test_generate_unknown_patient(self, client, auth_headers, openai_client):
        resp = client.post(
            "/api/prescriptions/generate",
            json={"patient_id": str(ObjectId()), "symptoms": "fever"},
            headers=auth_headers,
        )
        assert resp.status_code == 400
        openai_client.chat.completions.create.assert_not_called()

    def test_generate_upstream_failure(self, client, db, patient, auth_headers, openai_client):
        """Upstream errors surface as a 500 and nothing is stored."""
        openai_client.chat.completions.create.side_effect = OpenAIError("upstream down")
        resp = client.post(
            "/api/prescriptions/generate",
            json={"patient_id": patient["_id"], "symptoms": "fever"},
            headers=auth_headers,
        )
        assert resp.status_code == 500
        assert "upstream down" in resp.json()["detail"]
        assert db["prescription"].count_documents({}) == 0

    def test_generate_requires_symptoms(self, client, patient, auth_headers):
        resp = client.post(
            "/api/prescriptions/generate",
            json={"patient_id": patient["_id"], "symptoms": ""},
            headers=auth_headers,
        )
        assert resp.status_code == 400

    def test_validate_route_false_positive(self, client, auth_headers, openai_client):
        openai_client.chat.completions.create.return_value = completion("This prescription is not valid.")
        resp = client.post("/api/prescriptions/validate", json={"prescription": "Aspirin 5g"}, headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"is_valid": True}

    def test_validate_route_empty_reply(self, client, auth_headers, openai_client):
        openai_client.chat.completions.create.return_value = completion("")
        resp = client.post("/api/prescriptions/validate", json={"prescription": "Aspirin 5g"}, headers=auth_headers)
        assert resp.status_code == 500

    def test_manual_prescription(self, client, patient, auth_headers, openai_client):
        resp = client.post("/api/prescriptions/manual", json={
            "patient_id": patient["_id"],
            "symptoms": "rash",
            "doctor_final_prescription": "Hydrocortisone 1% cream, twice daily for 7 days",
        }, headers=auth_headers)
        assert resp.status_code == 201
        assert resp.json()["is_manual"] is True
        assert resp.json()["status"] == "completed"
        assert resp.json()["ai_prescription"] == ""
        openai_client.chat.completions.create.assert_not_called()

    def test_edit_and_finalize(self, client, patient, auth_headers):
        pid = client.post(
            "/api/prescriptions/generate",
            json={"patient_id": patient["_id"], "symptoms": "fever"},
            headers=auth_headers,
        ).json()["_id"]

        edited = client.put(f"/api/prescriptions/{pid}", json={"feedback": "Reduce dose"}, headers=auth_headers)
        assert edited.status_code == 200
        assert edited.json()["feedback"] == "Reduce dose"
        assert edited.json()["status"] == "pending"

        final = client.put(
            f"/api/prescriptions/{pid}/finalize",
            json={"doctor_final_prescription": "Paracetamol 250mg"},
            headers=auth_headers,
        )
        assert final.status_code == 200
        assert final.json()["status"] == "completed"
        assert final.json()["doctor_final_prescription"] == "Paracetamol 250mg"
        assert final.json()["ai_prescription"] == DEFAULT_REPLY

    def test_patient_and_doctor_history(self, client, doctor, patient, auth_headers):
        for symptoms in ("fever", "cough"):
            client.post(
                "/api/prescriptions/generate",
                json={"patient_id": patient["_id"], "symptoms": symptoms},
                headers=auth_headers,
            )
        by_patient = client.get(f"/api/prescriptions/patient/{patient['_id']}", headers=auth_headers).json()
        by_doctor = client.get(f"/api/prescriptions/doctor/{doctor['_id']}", headers=auth_headers).json()
        assert {p["symptoms"] for p in by_patient} == {"fever", "cough"}
        assert len(by_doctor) == 2

    def test_get_and_delete(self, client, patient, auth_headers):
        pid = client.post(
            "/api/prescriptions/generate",
            json={"patient_id": patient["_id"], "symptoms": "fever"},
            headers=auth_headers,
        ).json()["_id"]
        assert client.get(f"/api/prescriptions/{pid}", headers=auth_headers).status_code == 200
        assert client.delete(f"/api/prescriptions/{pid}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/prescriptions/{pid}", headers=auth_headers).status_code == 404
        assert client.delete(f"/api/prescriptions/{pid}", headers=auth_headers).status_code == 404
