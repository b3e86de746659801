"""
MongoDB access helpers

The database handle is created once at startup and handed to the services;
nothing in this module holds a connection at import time.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import BadRequestError

logger = logging.getLogger("vault.database")

DEFAULT_DATABASE = "vault-skate"


def utcnow() -> datetime:
    # BSON dates are UTC without tzinfo; keep the in-memory values comparable.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_database(settings: Settings) -> Database:
    client = MongoClient(settings.mongodb_uri)
    return client.get_default_database(DEFAULT_DATABASE)


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["user"].create_index("role")
    db["product"].create_index("name", unique=True)
    db["product"].create_index("sku", unique=True)
    db["product"].create_index([("category", ASCENDING), ("brand", ASCENDING)])
    db["cart"].create_index("user_id", unique=True)
    db["cart"].create_index("expires_at", expireAfterSeconds=0)
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("order_date", DESCENDING)])
    db["order"].create_index("status")
    db["order"].create_index("payment_status")
    db["order"].create_index([("order_date", DESCENDING)])
    logger.info("Indexes ensured on %s", db.name)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(mode="python")
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: Any, label: str = "") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise BadRequestError(f"Invalid {label} id" if label else "Invalid id")


def serialize_doc(doc: Any) -> Any:
    """Make a Mongo document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(doc, list):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if not isinstance(doc, dict):
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = serialize_doc(v)
    return out
