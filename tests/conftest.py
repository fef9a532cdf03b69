"""Shared fixtures: in-memory Mongo, fixed clinic clock, stub gateway."""
import json
import os
from datetime import date, datetime, timedelta

# Never let the module-level app pick up a real database from the environment or .env
os.environ["DATABASE_URL"] = ""

import httpx  # noqa: E402
import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import Actor, create_access_token  # noqa: E402
from main import create_app  # noqa: E402
from payments import RazorpayGateway, compute_signature  # noqa: E402

MONDAY = date(2026, 10, 12)
TUESDAY = MONDAY + timedelta(days=1)
WEDNESDAY = MONDAY + timedelta(days=2)
NEXT_MONDAY = MONDAY + timedelta(days=7)
NOW = datetime(2026, 10, 12, 8, 0)

PAYMENT_SECRET = "test_gateway_secret"
DOCTOR_USER = "doctor-user-1"

SLOT = {"start_time": "09:00", "end_time": "10:00"}

TEMPLATE = {
    "available_days": ["monday", "wednesday"],
    "weekly_template": {
        "monday": [
            {"start_time": "09:00", "end_time": "10:00", "enabled": True},
            {"start_time": "10:00", "end_time": "11:00", "enabled": True},
            {"start_time": "11:00", "end_time": "12:00", "enabled": False},
        ],
        "tuesday": [{"start_time": "09:00", "end_time": "10:00", "enabled": True}],
        "wednesday": [{"start_time": "14:00", "end_time": "15:00", "enabled": True}],
    },
}


def headers(user_id: str, role: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


ADMIN_HEADERS = headers("admin-user-1", "admin")
DOCTOR_HEADERS = headers(DOCTOR_USER, "doctor")
PATIENT_A = Actor(user_id="patient-user-a", role="patient")
PATIENT_B = Actor(user_id="patient-user-b", role="patient")
PATIENT_A_HEADERS = headers(PATIENT_A.user_id, "patient")
PATIENT_B_HEADERS = headers(PATIENT_B.user_id, "patient")
DOCTOR = Actor(user_id=DOCTOR_USER, role="doctor")
ADMIN = Actor(user_id="admin-user-1", role="admin")


class FakeMeetings:
    def __init__(self):
        self.issued = 0

    def new_meeting(self) -> tuple[str, str]:
        self.issued += 1
        meeting_id = f"test-meeting-{self.issued}"
        return meeting_id, f"https://meet.example.test/{meeting_id}"


@pytest.fixture
def db():
    return mongomock.MongoClient().telehealth


@pytest.fixture
def gateway_requests():
    return []


@pytest.fixture
def gateway(gateway_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        if request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            issued = sum(1 for r in gateway_requests if r.url.path.endswith("/orders"))
            return httpx.Response(
                200,
                json={"id": f"order_test_{issued}", "amount": body["amount"], "currency": body["currency"], "receipt": body["receipt"]},
            )
        if request.url.path.endswith("/refund"):
            return httpx.Response(200, json={"id": "rfnd_test_1", "status": "processed"})
        return httpx.Response(404, json={"error": "not found"})

    gw = RazorpayGateway("key_test", PAYMENT_SECRET, "https://gateway.test/v1", transport=httpx.MockTransport(handler))
    yield gw
    gw.close()


@pytest.fixture
def meetings():
    return FakeMeetings()


@pytest.fixture
def app(db, gateway, meetings):
    return create_app(
        database=db,
        meetings=meetings,
        gateway=gateway,
        payment_secret=PAYMENT_SECRET,
        today=lambda: MONDAY,
        now=lambda: NOW,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
def doctor(client):
    """A doctor bookable on Mondays and Wednesdays."""
    response = client.post(
        "/api/v1/doctors",
        json={
            "user_id": DOCTOR_USER,
            "name": "Dr. Rao",
            "specialization": "General Medicine",
            "license_number": "LIC-001",
            "consultation_fee": 500,
            "consultation_types": ["in-person", "video"],
            "languages": ["English", "Hindi"],
            **TEMPLATE,
        },
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def make_patient(client, user_id: str, name: str) -> dict:
    response = client.post("/api/v1/patients", json={"name": name}, headers=headers(user_id, "patient"))
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def patient_a(client):
    return make_patient(client, PATIENT_A.user_id, "Asha")


@pytest.fixture
def patient_b(client):
    return make_patient(client, PATIENT_B.user_id, "Bilal")


def pay(client, as_headers: dict = PATIENT_A_HEADERS, payment_id: str = "pay_test_1", signature: str = None, **target):
    """Raise a gateway order for the target, then post back a signed payment for it."""
    order = client.post("/api/v1/payments/create-order", json=target, headers=as_headers)
    assert order.status_code == 200, order.text
    order_id = order.json()["order_id"]
    return client.post(
        "/api/v1/payments/verify",
        json={
            **target,
            "order_id": order_id,
            "payment_id": payment_id,
            "signature": signature or compute_signature(order_id, payment_id, PAYMENT_SECRET),
        },
        headers=as_headers,
    )


def book(client, doctor_id: str, day: date = MONDAY, slot: dict = SLOT, patient_headers: dict = PATIENT_A_HEADERS, **extra):
    return client.post(
        "/api/v1/appointments",
        json={"provider_id": doctor_id, "date": day.isoformat(), "time_slot": slot, **extra},
        headers=patient_headers,
    )
