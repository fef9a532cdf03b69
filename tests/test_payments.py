"""Tests for consultation payments and the gateway client."""
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN_HEADERS, DOCTOR_HEADERS, MONDAY, NOW, PATIENT_A_HEADERS, PATIENT_B_HEADERS, PAYMENT_SECRET, book, pay
from main import create_app
from payments import RazorpayGateway, compute_signature, verify_signature


@pytest.fixture
def appointment(client, doctor, patient_a):
    return book(client, doctor["id"]).json()


@pytest.fixture
def second_appointment(client, doctor, patient_a):
    return book(client, doctor["id"], slot={"start_time": "10:00", "end_time": "11:00"}).json()


def verify(client, appointment_id, **kwargs):
    return pay(client, appointment_id=appointment_id, **kwargs)


def post_verify(client, appointment_id, order_id, payment_id, as_headers=PATIENT_A_HEADERS):
    return client.post(
        "/api/v1/payments/verify",
        json={
            "appointment_id": appointment_id,
            "order_id": order_id,
            "payment_id": payment_id,
            "signature": compute_signature(order_id, payment_id, PAYMENT_SECRET),
        },
        headers=as_headers,
    )


def is_paid(client, appointment_id):
    return client.get(f"/api/v1/appointments/{appointment_id}", headers=PATIENT_A_HEADERS).json()["is_paid"]


class TestSignature:
    def test_known_vector(self):
        signature = compute_signature("order_1", "pay_1", "secret")
        assert len(signature) == 64
        assert verify_signature("order_1", "pay_1", signature, "secret")

    def test_rejects_tampering(self):
        signature = compute_signature("order_1", "pay_1", "secret")
        assert not verify_signature("order_1", "pay_2", signature, "secret")
        assert not verify_signature("order_1", "pay_1", signature, "other")
        assert not verify_signature("order_1", "pay_1", "", "secret")


class TestCreateOrder:
    def test_amount_from_consultation_fee(self, client, db, appointment, gateway_requests):
        response = client.post(
            "/api/v1/payments/create-order",
            json={"appointment_id": appointment["id"], "receipt": "r-1"},
            headers=PATIENT_A_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"order_id": "order_test_1", "amount": 50000, "currency": "INR", "receipt": "r-1"}
        sent = json.loads(gateway_requests[0].content)
        assert sent["amount"] == 50000
        assert sent["payment_capture"] == 1

        issued = db["gatewayorder"].find_one({"order_id": "order_test_1"})
        assert issued["target"] == "appointment"
        assert issued["target_id"] == appointment["id"]
        assert issued["status"] == "created"

    def test_other_patient_forbidden(self, client, appointment, patient_b):
        response = client.post("/api/v1/payments/create-order", json={"appointment_id": appointment["id"]}, headers=PATIENT_B_HEADERS)
        assert response.status_code == 403

    def test_needs_exactly_one_target(self, client, appointment):
        neither = client.post("/api/v1/payments/create-order", json={}, headers=PATIENT_A_HEADERS)
        both = client.post(
            "/api/v1/payments/create-order",
            json={"appointment_id": appointment["id"], "medicine_order_id": appointment["id"]},
            headers=PATIENT_A_HEADERS,
        )
        assert neither.status_code == 422
        assert both.status_code == 422

    def test_gateway_failure_is_upstream_error(self, db, meetings, doctor, patient_a, appointment):
        failing = RazorpayGateway(
            "key_test", PAYMENT_SECRET, "https://gateway.test/v1", transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        client = TestClient(
            create_app(database=db, meetings=meetings, gateway=failing, payment_secret=PAYMENT_SECRET, today=lambda: MONDAY, now=lambda: NOW)
        )

        response = client.post("/api/v1/payments/create-order", json={"appointment_id": appointment["id"]}, headers=PATIENT_A_HEADERS)

        assert response.status_code == 502
        assert db["gatewayorder"].count_documents({}) == 0
        failing.close()


class TestVerify:
    def test_valid_signature_marks_paid(self, client, db, appointment):
        response = verify(client, appointment["id"])

        assert response.status_code == 200
        payment = response.json()
        assert payment["status"] == "completed"
        assert payment["amount"] == 500
        assert payment["appointment_id"] == appointment["id"]

        updated = client.get(f"/api/v1/appointments/{appointment['id']}", headers=PATIENT_A_HEADERS).json()
        assert updated["is_paid"] is True
        assert updated["payment_ref"] == payment["id"]
        assert db["gatewayorder"].find_one({"order_id": payment["order_id"]})["status"] == "paid"

    def test_invalid_signature(self, client, appointment):
        response = verify(client, appointment["id"], signature="0" * 64)

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_signature"
        assert is_paid(client, appointment["id"]) is False

    def test_already_paid(self, client, appointment):
        verify(client, appointment["id"])

        response = post_verify(client, appointment["id"], "order_test_1", "pay_test_2")

        assert response.status_code == 409
        assert response.json()["code"] == "already_paid"


class TestReplay:
    def test_order_issued_for_another_appointment(self, client, appointment, second_appointment):
        assert verify(client, appointment["id"]).status_code == 200

        response = post_verify(client, second_appointment["id"], "order_test_1", "pay_test_1")

        assert response.status_code == 400
        assert response.json()["code"] == "order_mismatch"
        assert is_paid(client, second_appointment["id"]) is False

    def test_order_never_issued(self, client, appointment):
        response = post_verify(client, appointment["id"], "order_made_up", "pay_test_1")

        assert response.status_code == 400
        assert response.json()["code"] == "order_mismatch"
        assert is_paid(client, appointment["id"]) is False

    def test_payment_id_settles_once(self, client, appointment, second_appointment):
        assert verify(client, appointment["id"]).status_code == 200

        response = verify(client, second_appointment["id"], payment_id="pay_test_1")

        assert response.status_code == 409
        assert response.json()["code"] == "payment_replayed"
        assert is_paid(client, second_appointment["id"]) is False

    def test_settled_order_not_reusable_after_refund(self, client, appointment):
        payment = verify(client, appointment["id"]).json()
        client.post(f"/api/v1/payments/{payment['id']}/refund", headers=ADMIN_HEADERS)

        response = post_verify(client, appointment["id"], payment["order_id"], "pay_test_1")

        assert response.status_code == 409
        assert response.json()["code"] == "payment_replayed"
        assert is_paid(client, appointment["id"]) is False


class TestRefund:
    def test_admin_refunds(self, client, appointment, gateway_requests):
        payment = verify(client, appointment["id"]).json()

        response = client.post(f"/api/v1/payments/{payment['id']}/refund", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "refunded"
        assert gateway_requests[-1].url.path.endswith("/payments/pay_test_1/refund")
        assert is_paid(client, appointment["id"]) is False

    def test_refund_twice_rejected(self, client, appointment):
        payment = verify(client, appointment["id"]).json()
        client.post(f"/api/v1/payments/{payment['id']}/refund", headers=ADMIN_HEADERS)

        response = client.post(f"/api/v1/payments/{payment['id']}/refund", headers=ADMIN_HEADERS)

        assert response.status_code == 409
        assert response.json()["code"] == "not_refundable"

    def test_non_admin_forbidden(self, client, appointment):
        payment = verify(client, appointment["id"]).json()
        assert client.post(f"/api/v1/payments/{payment['id']}/refund", headers=DOCTOR_HEADERS).status_code == 403
        assert client.post(f"/api/v1/payments/{payment['id']}/refund", headers=PATIENT_A_HEADERS).status_code == 403

    def test_listing_is_admin_only(self, client, appointment):
        verify(client, appointment["id"])
        assert len(client.get("/api/v1/payments", headers=ADMIN_HEADERS).json()) == 1
        assert client.get("/api/v1/payments", headers=PATIENT_A_HEADERS).status_code == 403
