"""
Database helpers

The Mongo client is created once per application (see main.create_app) and
handed to request handlers through the get_db dependency. Helpers here take
the database handle explicitly.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.client_session import ClientSession
from pymongo.database import Database
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are UTC; some drivers hand them back naive."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def connect(database_url: Optional[str], database_name: str) -> Tuple[Optional[MongoClient], Optional[Database]]:
    if not database_url:
        return None, None
    client = MongoClient(database_url, tz_aware=True)
    return client, client[database_name]


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def supports_transactions(client: MongoClient) -> bool:
    """Transactions need a replica set member or a mongos router."""
    try:
        hello = client.admin.command("hello")
    except PyMongoError as exc:
        logger.warning("Could not read the server topology: %s", exc)
        return False
    return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"


class UnitOfWork:
    """
    Runs a group of writes as one multi-document transaction.

    On a standalone server there are no transactions, so the callback runs
    without a session and a failure part way through leaves earlier writes
    in place.
    """

    def __init__(self, db: Database, transactions: bool = False):
        self.db = db
        self.transactions = transactions

    def run(self, callback: Callable[[Optional[ClientSession]], T]) -> T:
        if not self.transactions:
            logger.debug("Running %s without a transaction", getattr(callback, "__name__", "writes"))
            return callback(None)
        with self.db.client.start_session() as session:
            return session.with_transaction(callback)


def get_unit_of_work(request: Request, db: Database = Depends(get_db)) -> UnitOfWork:
    return UnitOfWork(db, getattr(request.app.state, "transactions", False))


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def serialize(doc: Optional[dict]):
    """Turn a Mongo document into a JSON friendly dict (``_id`` becomes ``id``)."""
    if not doc:
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        else:
            out[key] = _serialize_value(value)
    return out


def _serialize_value(value: Any):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc.setdefault("updatedAt", now)
    result = db[collection].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[dict]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    db["reviews"].create_index([("productId", 1), ("userId", 1)], unique=True)
    db["digitalProductReviews"].create_index([("productId", 1), ("customerId", 1)], unique=True)
    db["reviewHelpful"].create_index([("reviewId", 1), ("userId", 1)], unique=True)
    db["questionHelpful"].create_index([("questionId", 1), ("userId", 1)], unique=True)
    db["messages"].create_index([("conversationId", 1), ("createdAt", 1)])
    db["orders"].create_index([("userId", 1), ("createdAt", -1)])
    db["auditLogs"].create_index([("createdAt", -1)])
