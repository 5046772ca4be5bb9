import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import settings
from errors import NotFound

logger = logging.getLogger("marketplace.database")

# Collections:
# - users
# - tasks
# - teams
# - submissions
USERS = "users"
TASKS = "tasks"
TEAMS = "teams"
SUBMISSIONS = "submissions"

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.MONGODB_URI:
    # MongoClient connects lazily; nothing touches the network until first use
    _client = MongoClient(settings.MONGODB_URI, serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS, tz_aware=True)
    db = _client[settings.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def close_client() -> None:
    if _client is not None:
        _client.close()


def ensure_indexes(database: Database) -> None:
    """Create the unique indexes the coordination logic relies on."""
    database[USERS].create_index([("email", ASCENDING)], unique=True, name="email_unique")
    database[TEAMS].create_index([("code", ASCENDING)], unique=True, name="code_unique")
    database[TEAMS].create_index([("members", ASCENDING)], name="members")
    database[TASKS].create_index([("mentorId", ASCENDING)], name="mentor")
    database[TASKS].create_index([("status", ASCENDING)], name="status")
    database[SUBMISSIONS].create_index(
        [("taskId", ASCENDING), ("studentId", ASCENDING)],
        unique=True,
        name="task_student_unique",
    )
    database[SUBMISSIONS].create_index([("studentId", ASCENDING)], name="student")
    logger.info("Indexes ensured on %s", database.name)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, resource: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFound(f"{resource} not found", resource=resource.lower())


def serialize_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace Mongo's ``_id`` with a string ``id``."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    doc.setdefault("createdAt", utcnow())
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_document(database: Database, collection_name: str, doc_id: Any, resource: str = "Document") -> Dict[str, Any]:
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, resource)})
    if doc is None:
        raise NotFound(f"{resource} not found", resource=resource.lower())
    return doc


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_and_update(
    database: Database,
    collection_name: str,
    filter_dict: Dict[str, Any],
    update: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Single-document conditional update; returns the updated document or None."""
    return database[collection_name].find_one_and_update(
        filter_dict, update, return_document=ReturnDocument.AFTER
    )


def delete_document(database: Database, collection_name: str, filter_dict: Dict[str, Any]) -> bool:
    return database[collection_name].delete_one(filter_dict).deleted_count == 1


def lookup_display(
    database: Database,
    collection_name: str,
    ids: List[str],
    fields: List[str],
) -> Dict[str, Dict[str, Any]]:
    """Resolve a batch of id references to ``{id: {id, <fields>}}`` for read-side joins."""
    object_ids = []
    for value in ids:
        if value and ObjectId.is_valid(str(value)):
            object_ids.append(ObjectId(str(value)))
    if not object_ids:
        return {}
    projection = {f: 1 for f in fields}
    resolved = {}
    for doc in database[collection_name].find({"_id": {"$in": object_ids}}, projection):
        key = str(doc["_id"])
        resolved[key] = {"id": key, **{f: doc.get(f) for f in fields}}
    return resolved
