"""Pharmacy catalog and stock."""
import re
from typing import Optional

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import Actor
from database import create_document, get_document, get_documents, object_id, serialize, update_document
from errors import Conflict, NotFound, ValidationError
from policy import scope
from schemas import Medicine, MedicineUpdate, StockUpdate

logger = structlog.get_logger(__name__)

SEARCH_LIMIT = 50


class MedicineCatalog:
    collection = "medicine"

    def __init__(self, database: Database):
        self.db = database

    def get(self, medicine_id: str) -> dict:
        medicine = get_document(self.db, self.collection, medicine_id)
        if medicine is None:
            raise NotFound("Medicine not found", code="medicine_not_found")
        return medicine

    def search(self, name: Optional[str] = None, category: Optional[str] = None) -> list[dict]:
        """Active medicines, case-insensitive substring match on name and category."""
        query: dict = {"is_active": True}
        if name:
            query["name"] = {"$regex": re.escape(name), "$options": "i"}
        if category:
            query["category"] = {"$regex": re.escape(category), "$options": "i"}
        return get_documents(self.db, self.collection, query, sort=[("name", 1)], limit=SEARCH_LIMIT)

    def create(self, medicine: Medicine, actor: Actor) -> dict:
        scope(actor, "medicine:create")
        try:
            medicine_id = create_document(self.db, self.collection, medicine)
        except DuplicateKeyError:
            raise Conflict(f"Medicine '{medicine.name}' already exists", code="medicine_exists") from None
        logger.info("medicine_created", medicine_id=medicine_id, name=medicine.name)
        return self.get(medicine_id)

    def update(self, medicine_id: str, changes: MedicineUpdate, actor: Actor) -> dict:
        scope(actor, "medicine:update")
        self.get(medicine_id)
        fields = changes.model_dump(exclude_unset=True)
        if not fields:
            return self.get(medicine_id)
        return update_document(self.db, self.collection, medicine_id, fields)

    def update_stock(self, medicine_id: str, change: StockUpdate, actor: Actor) -> dict:
        scope(actor, "medicine:update")
        self.get(medicine_id)
        if change.action == "set":
            return update_document(self.db, self.collection, medicine_id, {"stock": change.quantity})
        delta = change.quantity if change.action == "add" else -change.quantity
        updated = self._adjust(medicine_id, delta)
        if updated is None:
            raise ValidationError("Insufficient stock", code="insufficient_stock")
        logger.info("stock_updated", medicine_id=medicine_id, delta=delta, stock=updated["stock"])
        return updated

    def reserve(self, medicine_id: str, quantity: int) -> Optional[dict]:
        """Take `quantity` units of an active medicine. None when there is not enough stock."""
        return self._adjust(medicine_id, -quantity, {"is_active": True})

    def restock(self, medicine_id: str, quantity: int) -> None:
        self._adjust(medicine_id, quantity)

    def _adjust(self, medicine_id: str, delta: int, expected: Optional[dict] = None) -> Optional[dict]:
        oid = object_id(medicine_id)
        if oid is None:
            return None
        filter_dict: dict = {"_id": oid}
        if expected:
            filter_dict.update(expected)
        if delta < 0:
            filter_dict["stock"] = {"$gte": -delta}
        doc = self.db[self.collection].find_one_and_update(
            filter_dict, {"$inc": {"stock": delta}}, return_document=ReturnDocument.AFTER
        )
        return serialize(doc)
