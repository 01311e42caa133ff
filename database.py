"""
MongoDB access

Owns the client, hands the database to routes through the get_db
dependency and wraps multi-document writes in a transaction.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from config import Settings
from errors import MarketplaceError, ValidationError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db = None


def connect(settings: Settings):
    global client, db
    client = MongoClient(settings.database_url)
    db = client[settings.database_name]
    ensure_indexes(db)
    logger.info("Connected to MongoDB database %s", settings.database_name)
    return db


def disconnect():
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db():
    if db is None:
        raise MarketplaceError("Database not configured")
    return db


def ensure_indexes(database):
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["category"].create_index([("name", ASCENDING)], unique=True)
    database["product"].create_index([("product_name", ASCENDING)], unique=True)
    database["product"].create_index([("category_id", ASCENDING)])
    database["order"].create_index([("buyer_id", ASCENDING), ("created_at", ASCENDING)])
    database["orderitem"].create_index([("order_id", ASCENDING)])
    database["review"].create_index([("buyer_id", ASCENDING), ("product_id", ASCENDING)], unique=True)


@contextmanager
def transaction(database):
    """Run the enclosed writes as one MongoDB transaction.

    Commits when the block exits normally, aborts on any exception. Needs a
    replica set or sharded deployment.
    """
    with database.client.start_session() as session:
        with session.start_transaction():
            yield session


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]], session=None) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    now = datetime.now(timezone.utc)
    doc = {**data, "created_at": now, "updated_at": now}
    return str(database[collection_name].insert_one(doc, session=session).inserted_id)


def to_object_id(value: str, label: str = "id") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label}: {value}")


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif hasattr(v, "isoformat"):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out
