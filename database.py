"""
MongoDB access helpers.

Documents are stored one collection per schema (lower-cased class name).
Cross-document references are kept as string ids; only `_id` is an ObjectId.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL

_client: Optional[MongoClient] = None


def get_database() -> Optional[Database]:
    """The configured database, connecting on first use. None when unconfigured."""
    global _client
    if not (DATABASE_URL and DATABASE_NAME):
        return None
    if _client is None:
        _client = MongoClient(DATABASE_URL)
    return _client[DATABASE_NAME]


def object_id(value: str) -> Optional[ObjectId]:
    """Parse a path id; malformed ids behave like missing documents."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def to_document(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="python")
    return dict(data)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict], _id: Optional[ObjectId] = None) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    doc = to_document(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    if _id is not None:
        doc["_id"] = _id
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_document(database: Database, collection_name: str, document_id: str) -> Optional[dict]:
    oid = object_id(document_id)
    if oid is None:
        return None
    return serialize(database[collection_name].find_one({"_id": oid}))


def find_document(database: Database, collection_name: str, filter_dict: dict) -> Optional[dict]:
    return serialize(database[collection_name].find_one(filter_dict))


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[list] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]


def update_document(database: Database, collection_name: str, document_id: str, changes: dict, expected: Optional[dict] = None) -> Optional[dict]:
    """Apply `$set` changes and return the updated document.

    `expected` adds extra filter terms, turning the write into a
    compare-and-set: None is returned when they no longer match.
    """
    oid = object_id(document_id)
    if oid is None:
        return None
    filter_dict: dict[str, Any] = {"_id": oid}
    if expected:
        filter_dict.update(expected)
    changes = dict(changes)
    changes["updated_at"] = datetime.now(timezone.utc)
    doc = database[collection_name].find_one_and_update(
        filter_dict, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return serialize(doc)


def count_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None) -> int:
    return database[collection_name].count_documents(filter_dict or {})


def delete_document(database: Database, collection_name: str, document_id: str) -> bool:
    oid = object_id(document_id)
    if oid is None:
        return False
    return database[collection_name].delete_one({"_id": oid}).deleted_count > 0


def ensure_indexes(database: Database) -> None:
    database["doctor"].create_index([("user_id", ASCENDING)], unique=True)
    database["patient"].create_index([("user_id", ASCENDING)], unique=True)
    database["appointment"].create_index(
        [("provider_id", ASCENDING), ("date", ASCENDING), ("status", ASCENDING)]
    )
    database["appointment"].create_index([("patient_id", ASCENDING), ("date", ASCENDING)])
    database["prescription"].create_index([("appointment_id", ASCENDING)])
    database["medicine"].create_index([("name", ASCENDING)], unique=True)
    database["medicineorder"].create_index([("patient_id", ASCENDING), ("created_at", ASCENDING)])
    database["gatewayorder"].create_index([("order_id", ASCENDING)], unique=True)
    # One settled payment per gateway payment and per gateway order
    database["payment"].create_index([("payment_id", ASCENDING)], unique=True)
    database["payment"].create_index([("order_id", ASCENDING)], unique=True)
