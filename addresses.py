import logging
from typing import Dict, List

from bson import ObjectId
from pydantic import ValidationError as SchemaError

from database import create_document, get_documents, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import Address, SavedAddress

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "phone", "street", "city", "state", "pincode")


def list_addresses(db, user_id: str) -> List[Dict]:
    return get_documents(db, "address", {"user_id": user_id}, sort=[("is_default", -1), ("created_at", -1)])


def get_address(db, user_id: str, address_id) -> Dict:
    address = db["address"].find_one({"_id": to_object_id(address_id, "address"), "user_id": user_id})
    if not address:
        raise NotFoundError("Address not found")
    return address


def _clear_default(db, user_id: str) -> None:
    db["address"].update_many({"user_id": user_id, "is_default": True}, {"$set": {"is_default": False}})


def add_address(db, user_id: str, fields: Dict) -> Dict:
    missing = [f for f in REQUIRED_FIELDS if not str(fields.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    given = {k: v for k, v in fields.items() if v is not None and k != "user_id"}
    try:
        address = SavedAddress(**given, user_id=user_id)
    except SchemaError as e:
        raise ValidationError(e.errors()[0]["msg"])
    # the first saved address becomes the default
    if not db["address"].find_one({"user_id": user_id}):
        address.is_default = True
    if address.is_default:
        _clear_default(db, user_id)
    address_id = create_document(db, "address", address)
    return db["address"].find_one({"_id": ObjectId(address_id)})


def delete_address(db, user_id: str, address_id) -> None:
    address = get_address(db, user_id, address_id)
    db["address"].delete_one({"_id": address["_id"]})
    if address.get("is_default"):
        newest = get_documents(db, "address", {"user_id": user_id}, limit=1, sort=[("created_at", -1)])
        if newest:
            db["address"].update_one({"_id": newest[0]["_id"]}, {"$set": {"is_default": True}})


def set_default_address(db, user_id: str, address_id) -> Dict:
    address = get_address(db, user_id, address_id)
    _clear_default(db, user_id)
    db["address"].update_one({"_id": address["_id"]}, {"$set": {"is_default": True, "updated_at": utcnow()}})
    logger.info("User %s set default address %s", user_id, address_id)
    return get_address(db, user_id, address_id)


def shipping_address(db, user_id: str, address_id) -> Address:
    saved = get_address(db, user_id, address_id)
    return Address(**{f: saved[f] for f in (*REQUIRED_FIELDS, "country")})
