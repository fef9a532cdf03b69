"""
Consultation and pharmacy payments through a Razorpay-compatible gateway.

The gateway issues an order; the client pays and posts back the order id,
payment id and signature. The signature is HMAC-SHA256 over
"order_id|payment_id" with the shared secret, hex encoded.

Every issued order is recorded with the appointment or medicine order it
was raised for, so a signed triple only ever settles that one target.
"""
import hashlib
import hmac
import time
from typing import Optional

import httpx
import structlog
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Actor
from database import create_document, find_document, get_document, get_documents, update_document
from errors import Conflict, InvalidState, NotFound, ServiceUnavailable, UpstreamError, ValidationError
from ledger import BookingLedger
from orders import OrderService
from policy import authorize, scope
from profiles import Profiles
from schemas import GatewayOrder, Payment, PaymentOrder, PaymentOrderRequest, PaymentTarget, PaymentVerifyRequest

logger = structlog.get_logger(__name__)


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(order_id, payment_id, secret), signature)


def minor_units(amount: float) -> int:
    return int(round(amount * 100))


class RazorpayGateway:
    """Thin client for the gateway's REST API. One instance per process."""

    def __init__(self, key_id: str, secret: str, api_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.client = httpx.Client(base_url=api_url, auth=(key_id, secret), timeout=timeout, transport=transport)

    def _post(self, path: str, payload: dict) -> dict:
        try:
            response = self.client.post(path, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.error("payment_gateway_error", path=path, error=str(e))
            raise UpstreamError("Payment provider request failed") from e

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        return self._post("/orders", {"amount": amount, "currency": currency, "receipt": receipt, "payment_capture": 1})

    def refund(self, payment_id: str, amount: int) -> dict:
        return self._post(f"/payments/{payment_id}/refund", {"amount": amount})

    def close(self) -> None:
        self.client.close()


class PaymentService:
    collection = "payment"
    orders_collection = "gatewayorder"

    def __init__(
        self,
        database: Database,
        ledger: BookingLedger,
        profiles: Profiles,
        orders: OrderService,
        gateway: Optional[RazorpayGateway],
        secret: Optional[str],
    ):
        self.db = database
        self.ledger = ledger
        self.profiles = profiles
        self.orders = orders
        self.gateway = gateway
        self.secret = secret

    def _payable(self, request: PaymentTarget, actor: Actor, action: str) -> tuple[str, dict, float]:
        """Resolve the target the actor wants to pay for, with the amount due."""
        scope(actor, action)
        kind, target_id = request.target()
        if kind == "appointment":
            record = self.ledger.get(target_id)
            if record is None:
                raise NotFound("Appointment not found")
            paid = record["is_paid"]
        else:
            record = self.orders.require(target_id)
            paid = record["payment_status"] == "completed"
        authorize(actor, action, owner_id=record["patient_id"], profile_id=self.profiles.profile_id(actor))
        if paid:
            raise Conflict(f"{kind.replace('_', ' ').capitalize()} is already paid", code="already_paid")

        if kind == "appointment":
            doctor = self.profiles.require_doctor(record["provider_id"])
            return kind, record, float(doctor.get("consultation_fee", 0))
        if record["order_status"] == "cancelled":
            raise InvalidState("Order is cancelled", code="order_cancelled")
        if record["payment_method"] == "cod":
            raise InvalidState("Order is paid on delivery", code="cash_on_delivery")
        return kind, record, float(record["total_amount"])

    def create_order(self, request: PaymentOrderRequest, actor: Actor) -> PaymentOrder:
        kind, record, amount = self._payable(request, actor, "payment:create")
        if self.gateway is None:
            raise ServiceUnavailable("Payments are not configured")
        amount = minor_units(amount)
        receipt = request.receipt or f"receipt_{int(time.time() * 1000)}"
        order = self.gateway.create_order(amount, request.currency, receipt)
        issued = GatewayOrder(
            order_id=order["id"],
            target=kind,
            target_id=record["id"],
            amount=order.get("amount", amount),
            currency=order.get("currency", request.currency),
            receipt=order.get("receipt", receipt),
        )
        try:
            create_document(self.db, self.orders_collection, issued)
        except DuplicateKeyError:
            raise UpstreamError("Payment provider reissued an order id") from None
        logger.info("payment_order_created", target=kind, target_id=record["id"], order_id=issued.order_id, amount=issued.amount)
        return PaymentOrder(order_id=issued.order_id, amount=issued.amount, currency=issued.currency, receipt=issued.receipt)

    def verify(self, request: PaymentVerifyRequest, actor: Actor) -> dict:
        kind, record, _ = self._payable(request, actor, "payment:verify")
        if not self.secret:
            raise ServiceUnavailable("Payments are not configured")

        issued = find_document(self.db, self.orders_collection, {"order_id": request.order_id})
        if issued is None or issued["target"] != kind or issued["target_id"] != record["id"]:
            logger.warning("payment_order_mismatch", target=kind, target_id=record["id"], order_id=request.order_id)
            raise ValidationError("Payment order was not issued for this purchase", code="order_mismatch")
        if issued["status"] != "created":
            raise Conflict("Payment order already settled", code="payment_replayed")
        if not verify_signature(request.order_id, request.payment_id, request.signature, self.secret):
            logger.warning("payment_signature_invalid", target=kind, target_id=record["id"], order_id=request.order_id)
            raise ValidationError("Invalid payment signature", code="invalid_signature")

        payment = Payment(
            order_id=request.order_id,
            payment_id=request.payment_id,
            signature=request.signature,
            amount=issued["amount"] / 100,
            currency=issued["currency"],
            status="completed",
            **{f"{kind}_id": record["id"]},
        )
        try:
            payment_ref = create_document(self.db, self.collection, payment)
        except DuplicateKeyError:
            logger.warning("payment_replayed", target=kind, target_id=record["id"], payment_id=request.payment_id)
            raise Conflict("Payment already recorded", code="payment_replayed") from None
        update_document(self.db, self.orders_collection, issued["id"], {"status": "paid"})

        if kind == "appointment":
            self.ledger.update_fields(record["id"], {"is_paid": True, "payment_ref": payment_ref})
        else:
            self.orders.set_payment(record["id"], "completed", payment_ref)
        logger.info("payment_verified", target=kind, target_id=record["id"], payment_ref=payment_ref)
        return get_document(self.db, self.collection, payment_ref)

    def list(self, actor: Actor) -> list:
        scope(actor, "payment:read")
        return get_documents(self.db, self.collection, sort=[("created_at", -1)])

    def refund(self, payment_id: str, actor: Actor) -> dict:
        scope(actor, "payment:refund")
        payment = get_document(self.db, self.collection, payment_id)
        if payment is None:
            raise NotFound("Payment not found")
        if payment["status"] != "completed":
            raise InvalidState(f"Cannot refund a {payment['status']} payment", code="not_refundable")
        if self.gateway is None:
            raise ServiceUnavailable("Payments are not configured")
        self.gateway.refund(payment["payment_id"], minor_units(payment["amount"]))
        refunded = update_document(self.db, self.collection, payment_id, {"status": "refunded"}, expected={"status": "completed"})
        if refunded is None:
            raise InvalidState("Payment changed concurrently", code="status_changed")
        if payment.get("appointment_id"):
            self.ledger.update_fields(payment["appointment_id"], {"is_paid": False})
        else:
            self.orders.set_payment(payment["medicine_order_id"], "refunded")
        logger.info("payment_refunded", payment_id=payment_id, appointment_id=payment.get("appointment_id"), medicine_order_id=payment.get("medicine_order_id"))
        return refunded
