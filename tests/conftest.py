"""Shared pytest fixtures."""

import uuid
from unittest.mock import MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient

from ai_prescription import AIPrescriptionService, get_ai_service
from auth import create_token, hash_password
from database import create_document, get_db, init_indexes
from main import app
from schemas import Doctor

DEFAULT_REPLY = "Paracetamol 500mg, twice daily for 5 days, after meals."


def completion(text):
    """Build an object shaped like an OpenAI chat completion."""
    message = MagicMock()
    message.content = text
    choice = MagicMock()
    choice.message = message
    response = MagicMock()
    response.choices = [choice]
    return response


@pytest.fixture
def db():
    database = mongomock.MongoClient()[f"curamind_test_{uuid.uuid4().hex[:8]}"]
    init_indexes(database)
    return database


@pytest.fixture
def openai_client():
    """Mock LLM client to avoid API calls during tests."""
    client = MagicMock()
    client.chat.completions.create.return_value = completion(DEFAULT_REPLY)
    return client


@pytest.fixture
def client(db, openai_client):
    service = AIPrescriptionService(client=openai_client, model="gpt-4")
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_ai_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _insert_doctor(db, email, role="doctor", password="secret123"):
    doctor = Doctor(
        name=f"Dr. {email.split('@')[0].title()}",
        email=email,
        password_hash=hash_password(password),
        role=role,
        specialization="General Medicine",
        experience=5,
    )
    return create_document(db, "doctor", doctor)


@pytest.fixture
def doctor(db):
    did = _insert_doctor(db, "jane.roe@clinic.com")
    return {"_id": did, "email": "jane.roe@clinic.com", "password": "secret123"}


@pytest.fixture
def admin(db):
    aid = _insert_doctor(db, "admin@clinic.com", role="admin")
    return {"_id": aid, "email": "admin@clinic.com", "password": "secret123"}


@pytest.fixture
def receptionist(db):
    rid = _insert_doctor(db, "front.desk@clinic.com", role="receptionist")
    return {"_id": rid, "email": "front.desk@clinic.com", "password": "secret123"}


@pytest.fixture
def receptionist_headers(receptionist):
    return {"Authorization": f"Bearer {create_token(receptionist['_id'], 'receptionist')}"}


@pytest.fixture
def auth_headers(doctor):
    return {"Authorization": f"Bearer {create_token(doctor['_id'], 'doctor')}"}


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {create_token(admin['_id'], 'admin')}"}


@pytest.fixture
def patient(client):
    resp = client.post("/api/patients", json={
        "name": "John Smith",
        "email": "john.smith@email.com",
        "age": 42,
        "gender": "male",
        "phone": "555-0101",
    })
    assert resp.status_code == 201
    return resp.json()
