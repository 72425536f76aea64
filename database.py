import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import MongoClient

from errors import ValidationError

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bharatverse")

db = None
if DATABASE_URL:
    client = MongoClient(DATABASE_URL, tz_aware=True)
    db = client[DATABASE_NAME]


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Union[str, ObjectId], label: str = "document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} id")


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_page(database, collection_name: str, filter_dict: Optional[dict], page: int, limit: int,
             sort: list) -> Tuple[List[dict], Dict[str, int]]:
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 50), 100))
    query = filter_dict or {}
    total = database[collection_name].count_documents(query)
    docs = list(database[collection_name].find(query).sort(sort).skip((page - 1) * limit).limit(limit))
    return docs, {"page": page, "limit": limit, "total": total, "has_more": page * limit < total}


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    """Turn a stored document into its camelCase JSON shape (`_id` -> `id`)."""
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = _serialize_value(v)
        elif k == "password_hash":
            continue
        else:
            out[to_camel(k)] = _serialize_value(v)
    return out


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["store"].create_index("username", unique=True)
    database["store"].create_index("email")
    database["store"].create_index([("status", 1), ("is_active", 1)])
    database["product"].create_index([("store_id", 1), ("status", 1)])
    database["coupon"].create_index("code", unique=True)
    database["store_coupon"].create_index("code", unique=True)
    database["order"].create_index("user_id")
    database["order"].create_index("items.store_id")
    database["address"].create_index("user_id")
    database["rating"].create_index([("user_id", 1), ("product_id", 1)], unique=True)
    database["rating"].create_index("product_id")
    database["contact_form"].create_index("status")
    database["chat_conversation"].create_index("store_id", unique=True)
    database["chat_message"].create_index([("conversation_id", 1), ("created_at", -1)])
    database["store_conversation"].create_index([("store1_id", 1), ("store2_id", 1)], unique=True)
    database["store_message"].create_index([("conversation_id", 1), ("created_at", -1)])
