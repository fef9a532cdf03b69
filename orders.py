"""
Medicine orders placed against a prescription.

An order takes stock when it is placed and gives it back when it is
cancelled. Placing an order fulfils the prescription, so one prescription
backs at most one live order.
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from pymongo.database import Database

from auth import Actor
from database import create_document, get_document, get_documents, update_document
from errors import Forbidden, InvalidState, NotFound, ValidationError
from medicines import MedicineCatalog
from policy import OWN, authorize, scope
from profiles import Profiles
from schemas import MedicineOrder, MedicineOrderCreate, OrderItem

logger = structlog.get_logger(__name__)

ORDER_TRANSITIONS = {
    "pending": ("processing", "cancelled"),
    "processing": ("dispatched", "cancelled"),
    "dispatched": ("delivered",),
    "delivered": (),
    "cancelled": (),
}


class OrderService:
    collection = "medicineorder"

    def __init__(self, database: Database, catalog: MedicineCatalog, profiles: Profiles):
        self.db = database
        self.catalog = catalog
        self.profiles = profiles

    def create(self, data: MedicineOrderCreate, actor: Actor) -> dict:
        scope(actor, "order:create")
        patient = self.profiles.patient_for(actor)
        if patient is None:
            raise NotFound("Patient not found", code="patient_not_found")
        prescription = get_document(self.db, "prescription", data.prescription_id)
        if prescription is None:
            raise NotFound("Prescription not found")
        authorize(actor, "order:create", owner_id=prescription["patient_id"], profile_id=patient["id"])
        if prescription["status"] != "active":
            raise InvalidState(f"Prescription is {prescription['status']}", code="prescription_not_active")

        prescribed = {m["name"].strip().lower() for m in prescription["medicines"]}
        lines = []
        for item in data.items:
            medicine = self.catalog.get(item.medicine_id)
            if not medicine["is_active"]:
                raise ValidationError(f"{medicine['name']} is not available", code="medicine_unavailable")
            if medicine["requires_prescription"] and medicine["name"].strip().lower() not in prescribed:
                raise ValidationError(f"{medicine['name']} is not on the prescription", code="not_prescribed")
            lines.append((medicine, item.quantity))

        if update_document(self.db, "prescription", prescription["id"], {"status": "fulfilled"}, expected={"status": "active"}) is None:
            raise InvalidState("Prescription already used", code="prescription_not_active")

        items = []
        for medicine, quantity in lines:
            if self.catalog.reserve(medicine["id"], quantity) is None:
                self._give_back(items)
                self._reopen_prescription(prescription["id"])
                raise ValidationError(f"Insufficient stock for {medicine['name']}", code="insufficient_stock")
            items.append(
                OrderItem(
                    medicine_id=medicine["id"],
                    name=medicine["name"],
                    quantity=quantity,
                    price=medicine["price"],
                    total=round(medicine["price"] * quantity, 2),
                )
            )

        order = MedicineOrder(
            patient_id=patient["id"],
            prescription_id=prescription["id"],
            items=items,
            shipping_address=data.shipping_address,
            total_amount=round(sum(i.total for i in items), 2),
            payment_method=data.payment_method,
        )
        order_id = create_document(self.db, self.collection, order)
        logger.info("medicine_order_placed", order_id=order_id, patient_id=patient["id"], total=order.total_amount)
        return get_document(self.db, self.collection, order_id)

    def get(self, order_id: str, actor: Actor) -> dict:
        return self._authorized(order_id, actor, "order:read")

    def require(self, order_id: str) -> dict:
        order = get_document(self.db, self.collection, order_id)
        if order is None:
            raise NotFound("Order not found", code="order_not_found")
        return order

    def mine(self, actor: Actor) -> list[dict]:
        scope(actor, "order:read")
        patient = self.profiles.patient_for(actor)
        if patient is None:
            raise NotFound("Patient not found", code="patient_not_found")
        return get_documents(self.db, self.collection, {"patient_id": patient["id"]}, sort=[("created_at", -1)])

    def list(self, actor: Actor) -> list[dict]:
        if scope(actor, "order:read") == OWN:
            return self.mine(actor)
        return get_documents(self.db, self.collection, sort=[("created_at", -1)])

    def set_status(self, order_id: str, new_status: str, actor: Actor) -> dict:
        order = self._authorized(order_id, actor, "order:status")
        current = order["order_status"]
        if actor.role == "patient" and (new_status != "cancelled" or current != "pending"):
            raise Forbidden("Patients may only cancel a pending order")
        if new_status not in ORDER_TRANSITIONS[current]:
            raise InvalidState(f"Cannot move order from {current} to {new_status}", code="invalid_transition")

        changes: dict = {"order_status": new_status}
        if new_status == "delivered":
            changes["delivered_at"] = datetime.now(timezone.utc)
        updated = update_document(self.db, self.collection, order["id"], changes, expected={"order_status": current})
        if updated is None:
            raise InvalidState("Order changed concurrently", code="status_changed")

        if new_status == "cancelled":
            self._give_back(OrderItem(**item) for item in order["items"])
            self._reopen_prescription(order["prescription_id"])
        logger.info("medicine_order_status", order_id=order["id"], old=current, new=new_status, actor=actor.user_id)
        return updated

    def set_payment(self, order_id: str, payment_status: str, payment_ref: Optional[str] = None) -> Optional[dict]:
        changes: dict = {"payment_status": payment_status}
        if payment_ref is not None:
            changes["payment_ref"] = payment_ref
        return update_document(self.db, self.collection, order_id, changes)

    def _authorized(self, order_id: str, actor: Actor, action: str) -> dict:
        scope(actor, action)
        order = self.require(order_id)
        authorize(actor, action, owner_id=order["patient_id"], profile_id=self.profiles.profile_id(actor))
        return order

    def _give_back(self, items) -> None:
        for item in items:
            self.catalog.restock(item.medicine_id, item.quantity)

    def _reopen_prescription(self, prescription_id: str) -> None:
        update_document(self.db, "prescription", prescription_id, {"status": "active"}, expected={"status": "fulfilled"})
