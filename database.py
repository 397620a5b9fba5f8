"""
MongoDB access for BinBeacon.

Collection name = lowercase of the schema class name (User -> "user",
OverflowReport -> "overflowreport"). Timestamps created_at/updated_at are
added by the helpers below.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pydantic import BaseModel

import config
from errors import NotFound, PersistenceError

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]
OLDEST_FIRST = [("created_at", ASCENDING), ("_id", ASCENDING)]


def get_db():
    if db is None:
        raise PersistenceError("Database not configured")
    return db


def ensure_indexes(database):
    logger.info("ensuring indexes on %s", database.name)
    database["user"].create_index("phone", unique=True)
    database["trainingprogress"].create_index(
        [("userId", ASCENDING), ("moduleId", ASCENDING)], unique=True
    )


def to_object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def serialize_doc(doc: Optional[dict]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_document_by_id(database, collection_name: str, doc_id: str, what: str = None):
    what = what or collection_name.capitalize()
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, what)})
    if doc is None:
        raise NotFound(f"{what} not found")
    return serialize_doc(doc)


def get_documents(database, collection_name: str, filter_dict: dict = None, limit: int = None, sort=None):
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def update_document(database, collection_name: str, doc_id: str, changes: dict):
    changes = dict(changes)
    changes["updated_at"] = datetime.now(timezone.utc)
    res = database[collection_name].update_one({"_id": to_object_id(doc_id)}, {"$set": changes})
    if res.matched_count == 0:
        raise NotFound(f"{collection_name.capitalize()} not found")
    return get_document_by_id(database, collection_name, doc_id)


def delete_document(database, collection_name: str, doc_id: str):
    database[collection_name].delete_one({"_id": to_object_id(doc_id)})
