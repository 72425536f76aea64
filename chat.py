import logging
import re
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import as_utc, create_document, get_documents, get_page, to_object_id, utcnow
from errors import AuthError, NotFoundError, ValidationError
from schemas import ChatConversation, ChatMessage, StoreConversation, StoreMessage
from stores import get_store, store_summaries
from visibility import STORE_VISIBLE, is_store_visible

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]
RECENTLY_UPDATED = [("updated_at", -1), ("_id", -1)]
PREVIEW_MESSAGES = 50
MAX_MESSAGE_LENGTH = 2000
ACTIVE_WINDOW = timedelta(hours=24)
SENDER_TYPES = ("admin", "store")
ADMIN_STORE_FILTERS = ("all", "unread", "active")


def _clean_message(message) -> str:
    text = str(message or "").strip()
    if not text:
        raise ValidationError("Message is required")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")
    return text


def _get_or_create(db, collection: str, key: Dict, model) -> Dict:
    now = utcnow()
    fields = {k: v for k, v in model.model_dump().items() if k not in key}
    try:
        return db[collection].find_one_and_update(
            key,
            {"$setOnInsert": {**fields, "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # a concurrent first message created it
        return db[collection].find_one(key)


# ----------------------- Admin <-> store -----------------------
def get_conversation(db, store_id) -> Dict:
    store = get_store(db, store_id)
    key = {"store_id": str(store["_id"])}
    return _get_or_create(db, "chat_conversation", key, ChatConversation(**key))


def open_conversation(db, store_id) -> Tuple[Dict, List[Dict]]:
    """The store's support thread and its latest messages, oldest first."""
    conversation = get_conversation(db, store_id)
    recent = get_documents(db, "chat_message", {"conversation_id": str(conversation["_id"])},
                           limit=PREVIEW_MESSAGES, sort=NEWEST_FIRST)
    return conversation, recent[::-1]


def list_messages(db, store_id, page: int = 1, limit: int = 50) -> Tuple[List[Dict], Dict]:
    conversation = get_conversation(db, store_id)
    messages, pagination = get_page(db, "chat_message", {"conversation_id": str(conversation["_id"])},
                                    page, limit, NEWEST_FIRST)
    return messages[::-1], pagination


def send_message(db, store_id, sender_type: str, sender_id, message, message_type: str = "text") -> Dict:
    if sender_type not in SENDER_TYPES:
        raise ValidationError("Sender must be 'admin' or 'store'")
    text = _clean_message(message)
    conversation = get_conversation(db, store_id)
    message_id = create_document(db, "chat_message", ChatMessage(
        conversation_id=str(conversation["_id"]),
        sender_id=str(sender_id),
        sender_type=sender_type,
        message=text,
        message_type=message_type or "text",
    ))
    now = utcnow()
    db["chat_conversation"].update_one({"_id": conversation["_id"]}, {"$set": {
        "last_message": text,
        "last_message_at": now,
        "updated_at": now,
        "unread_by_admin": sender_type == "store",
        "unread_by_store": sender_type == "admin",
    }})
    logger.info("Chat message from %s in conversation with store %s", sender_type, conversation["store_id"])
    return db["chat_message"].find_one({"_id": ObjectId(message_id)})


def mark_read(db, store_id, reader: str) -> int:
    if reader not in SENDER_TYPES:
        raise ValidationError("Reader must be 'admin' or 'store'")
    conversation = get_conversation(db, store_id)
    sender = "store" if reader == "admin" else "admin"
    result = db["chat_message"].update_many(
        {"conversation_id": str(conversation["_id"]), "sender_type": sender, "is_read": False},
        {"$set": {"is_read": True}},
    )
    db["chat_conversation"].update_one({"_id": conversation["_id"]}, {"$set": {f"unread_by_{reader}": False}})
    return result.modified_count


def list_admin_conversations(db) -> List[Dict]:
    conversations = get_documents(db, "chat_conversation", {"last_message_at": {"$ne": None}},
                                  sort=[("last_message_at", -1), ("_id", -1)])
    ids = [c["store_id"] for c in conversations]
    summaries = store_summaries(db, ids)
    emails = {str(s["_id"]): s.get("email") for s in db["store"].find(
        {"_id": {"$in": [ObjectId(i) for i in ids if ObjectId.is_valid(i)]}}, {"email": 1})}
    for c in conversations:
        store = summaries.get(c["store_id"])
        c["store"] = {**store, "email": emails.get(c["store_id"])} if store else None
        c["unread_count"] = db["chat_message"].count_documents(
            {"conversation_id": str(c["_id"]), "sender_type": "store", "is_read": False})
    return conversations


# ----------------------- Store <-> store -----------------------
def _pair(store_id, other_id) -> Tuple[str, str]:
    a, b = str(store_id), str(other_id)
    if a == b:
        raise ValidationError("Cannot start a conversation with your own store")
    return (a, b) if a < b else (b, a)


def _side(conversation: Dict, store_id) -> str:
    store_id = str(store_id)
    if conversation["store1_id"] == store_id:
        return "store1"
    if conversation["store2_id"] == store_id:
        return "store2"
    raise AuthError("You are not part of this conversation", 403)


def _other(side: str) -> str:
    return "store2" if side == "store1" else "store1"


def available_stores(db, store_id, search: Optional[str] = None) -> List[Dict]:
    query = {**STORE_VISIBLE, "_id": {"$ne": to_object_id(store_id, "store")}}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"username": pattern}]
    projection = {"name": 1, "username": 1, "logo": 1, "description": 1}
    return list(db["store"].find(query, projection).sort("name", 1))


def open_store_conversation(db, store_id, other_store_id) -> Dict:
    store1_id, store2_id = _pair(store_id, other_store_id)
    other = get_store(db, other_store_id)
    if not is_store_visible(other):
        raise NotFoundError("Store not found or not active")
    key = {"store1_id": store1_id, "store2_id": store2_id}
    return _get_or_create(db, "store_conversation", key, StoreConversation(**key))


def get_store_conversation(db, conversation_id, store_id=None) -> Dict:
    """Load a store-to-store thread; with `store_id`, only its participants may see it."""
    conversation = db["store_conversation"].find_one({"_id": to_object_id(conversation_id, "conversation")})
    if not conversation:
        raise NotFoundError("Conversation not found")
    if store_id is not None:
        _side(conversation, store_id)
    return conversation


def list_store_conversations(db, store_id) -> List[Dict]:
    store_id = str(store_id)
    conversations = get_documents(db, "store_conversation",
                                  {"$or": [{"store1_id": store_id}, {"store2_id": store_id}]},
                                  sort=RECENTLY_UPDATED)
    others = {c["_id"]: c[f"{_other(_side(c, store_id))}_id"] for c in conversations}
    summaries = store_summaries(db, others.values())
    for c in conversations:
        other_id = others[c["_id"]]
        c["other_store"] = summaries.get(other_id)
        c["unread_count"] = db["store_message"].count_documents(
            {"conversation_id": str(c["_id"]), "sender_id": other_id, "is_read": False})
    return conversations


def send_store_message(db, conversation_id, store_id, message, message_type: str = "text") -> Dict:
    text = _clean_message(message)
    conversation = get_store_conversation(db, conversation_id)
    side = _side(conversation, store_id)
    message_id = create_document(db, "store_message", StoreMessage(
        conversation_id=str(conversation["_id"]),
        sender_id=str(store_id),
        message=text,
        message_type=message_type or "text",
    ))
    now = utcnow()
    db["store_conversation"].update_one({"_id": conversation["_id"]}, {"$set": {
        "last_message": text,
        "last_message_at": now,
        "updated_at": now,
        f"unread_by_{side}": False,
        f"unread_by_{_other(side)}": True,
        "unread_by_admin": True,
    }})
    return db["store_message"].find_one({"_id": ObjectId(message_id)})


def list_store_messages(db, conversation_id, store_id=None, page: int = 1,
                        limit: int = 50) -> Tuple[List[Dict], Dict]:
    conversation = get_store_conversation(db, conversation_id, store_id)
    messages, pagination = get_page(db, "store_message", {"conversation_id": str(conversation["_id"])},
                                    page, limit, NEWEST_FIRST)
    return messages[::-1], pagination


def mark_store_read(db, conversation_id, store_id=None) -> int:
    """Mark the thread read for one participant, or for the admins when `store_id` is None."""
    conversation = get_store_conversation(db, conversation_id, store_id)
    if store_id is None:
        db["store_conversation"].update_one({"_id": conversation["_id"]}, {"$set": {"unread_by_admin": False}})
        return 0
    side = _side(conversation, store_id)
    result = db["store_message"].update_many(
        {"conversation_id": str(conversation["_id"]), "sender_id": {"$ne": str(store_id)}, "is_read": False},
        {"$set": {"is_read": True}},
    )
    db["store_conversation"].update_one({"_id": conversation["_id"]}, {"$set": {f"unread_by_{side}": False}})
    return result.modified_count


def list_admin_store_conversations(db, filter_by: str = "all") -> List[Dict]:
    if filter_by not in ADMIN_STORE_FILTERS:
        raise ValidationError(f"Filter must be one of: {', '.join(ADMIN_STORE_FILTERS)}")
    query = {"unread_by_admin": True} if filter_by == "unread" else {}
    conversations = get_documents(db, "store_conversation", query, sort=RECENTLY_UPDATED)
    if filter_by == "active":
        since = utcnow() - ACTIVE_WINDOW
        conversations = [c for c in conversations
                         if c.get("last_message_at") and as_utc(c["last_message_at"]) >= since]
    summaries = store_summaries(db, [c[k] for c in conversations for k in ("store1_id", "store2_id")])
    for c in conversations:
        cid = str(c["_id"])
        c["store1"] = summaries.get(c["store1_id"])
        c["store2"] = summaries.get(c["store2_id"])
        c["message_count"] = db["store_message"].count_documents({"conversation_id": cid})
        c["unread_counts"] = {
            side: db["store_message"].count_documents(
                {"conversation_id": cid, "sender_id": c[f"{_other(side)}_id"], "is_read": False})
            for side in ("store1", "store2")
        }
    return conversations
