import logging
from typing import Dict, List, Optional

from bson import ObjectId
from pydantic import EmailStr, TypeAdapter, ValidationError as SchemaError
from pymongo.errors import DuplicateKeyError

from auth import hash_password, verify_password
from database import create_document, get_documents, to_object_id, utcnow
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from events import invalidate_listing
from lifecycle import REVIEW_CLEARED, review_fields, transition
from schemas import Store

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "username", "email", "contact", "password")
PROFILE_FIELDS = ("name", "username", "email", "contact", "logo", "description", "address")
MIN_PASSWORD_LENGTH = 6


def get_store(db, store_id) -> Dict:
    store = db["store"].find_one({"_id": to_object_id(store_id, "store")})
    if not store:
        raise NotFoundError("Store not found")
    return store


def store_summaries(db, store_ids) -> Dict[str, Dict]:
    ids = [ObjectId(s) for s in set(store_ids) if ObjectId.is_valid(s)]
    return {
        str(s["_id"]): {"id": str(s["_id"]), "name": s["name"], "username": s["username"],
                        "logo": s.get("logo"), "status": s["status"], "is_active": s.get("is_active", False)}
        for s in db["store"].find({"_id": {"$in": ids}})
    }


def find_store_for_user(db, user_id: Optional[str]) -> Optional[Dict]:
    # anonymous stores carry user_id=None and must never match here
    if not user_id:
        return None
    return db["store"].find_one({"user_id": user_id})


def submit_store(db, details: Dict, user_id: Optional[str] = None,
                 location: Optional[Dict] = None) -> Dict:
    missing = [f for f in REQUIRED_FIELDS if not str(details.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    username = details["username"].strip().lower()
    if db["store"].find_one({"username": username}):
        raise ConflictError("Store username already taken")

    existing = find_store_for_user(db, user_id)
    if existing:
        raise ConflictError(f"You already have a store request ({existing['status']})")

    try:
        store = Store(
            name=details["name"].strip(),
            username=username,
            description=details.get("description"),
            email=details["email"],
            contact=details["contact"],
            address=details.get("address"),
            password_hash=hash_password(details["password"]),
            user_id=user_id,
            logo=details.get("logo"),
            location=location,
        )
    except SchemaError as e:
        raise ValidationError(e.errors()[0]["msg"])

    try:
        store_id = create_document(db, "store", store)
    except DuplicateKeyError:
        raise ConflictError("Store username already taken")
    logger.info("Store request submitted: %s (@%s)", store.name, username)
    return get_store(db, store_id)


def list_stores(db, status: Optional[str] = None) -> List[Dict]:
    query = {"status": status} if status and status != "all" else {}
    stores = get_documents(db, "store", query, sort=[("created_at", -1)])
    for s in stores:
        s["product_count"] = db["product"].count_documents({"store_id": str(s["_id"])})
    return stores


def review_store(db, store_id, decision: str, admin_id: str, note: Optional[str] = None) -> Dict:
    if decision not in ("approved", "rejected"):
        raise ValidationError("Status must be 'approved' or 'rejected'")
    update = {"is_active": decision == "approved", **review_fields(admin_id, note)}
    store = transition(db, "store", store_id, decision, update, from_states=("pending",))
    invalidate_listing("store reviewed", store_id=str(store["_id"]), status=decision)
    return store


def set_store_active(db, store_id, active: bool, admin_id: str, note: Optional[str] = None) -> Dict:
    """Suspend an approved store or reinstate a suspended one.

    The original review metadata is kept; the suspension is recorded beside it.
    """
    if active:
        update = {"is_active": True, "suspended_by": None, "suspended_at": None, "suspension_note": None}
        store = transition(db, "store", store_id, "approved", update, from_states=("suspended",))
    else:
        update = {"is_active": False, "suspended_by": admin_id, "suspended_at": utcnow(),
                  "suspension_note": note or None}
        store = transition(db, "store", store_id, "suspended", update)
    invalidate_listing("store activation changed", store_id=str(store["_id"]), active=active)
    return store


def resubmit_store(db, store_id) -> Dict:
    return transition(db, "store", store_id, "pending", dict(REVIEW_CLEARED), from_states=("rejected",))


def authenticate_store(db, email: str, password: str) -> Dict:
    store = db["store"].find_one({"email": email})
    if not store or not verify_password(password, store.get("password_hash")):
        raise AuthError("Invalid email or password")
    return store


# ----------------------- Owner profile -----------------------
def update_store_profile(db, store_id, changes: Dict) -> Dict:
    unknown = set(changes) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    update = {k: v for k, v in changes.items() if v is not None}
    for field in ("name", "username", "email", "contact"):
        if field in update and not str(update[field]).strip():
            raise ValidationError(f"{field} cannot be empty")
    if "username" in update:
        update["username"] = update["username"].strip().lower()
        taken = db["store"].find_one({"username": update["username"], "_id": {"$ne": to_object_id(store_id, "store")}})
        if taken:
            raise ConflictError("Store username already taken")
    if "email" in update:
        try:
            update["email"] = str(TypeAdapter(EmailStr).validate_python(update["email"]))
        except SchemaError:
            raise ValidationError("Invalid email address")
    if not update:
        return get_store(db, store_id)
    update["updated_at"] = utcnow()
    try:
        db["store"].update_one({"_id": to_object_id(store_id, "store")}, {"$set": update})
    except DuplicateKeyError:
        raise ConflictError("Store username already taken")
    logger.info("Store %s updated profile fields: %s", store_id, ", ".join(sorted(update)))
    return get_store(db, store_id)


def change_store_password(db, store_id, current_password: str, new_password: str) -> None:
    store = get_store(db, store_id)
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required")
    if not verify_password(current_password, store.get("password_hash")):
        raise ValidationError("Current password is incorrect")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    db["store"].update_one({"_id": store["_id"]},
                           {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}})
    logger.info("Store %s changed its password", store_id)
