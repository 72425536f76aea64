import logging
import math
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument

from database import create_document, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import ContactForm

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "email", "subject", "message")
CONTACT_STATUSES = ("new", "in_progress", "replied", "closed")
DEFAULT_PAGE_SIZE = 10


def submit_contact_form(db, fields: Dict) -> Dict:
    missing = [f for f in REQUIRED_FIELDS if not str(fields.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    try:
        form = ContactForm(
            name=fields["name"].strip(),
            email=fields["email"].strip(),
            subject=fields["subject"].strip(),
            message=fields["message"].strip(),
            type=fields.get("type") or "general",
        )
    except SchemaError:
        raise ValidationError("Invalid email address")
    form_id = create_document(db, "contact_form", form)
    logger.info("Contact form %s received from %s", form_id, form.email)
    return db["contact_form"].find_one({"_id": ObjectId(form_id)})


def list_contact_forms(db, status: Optional[str] = None, page: int = 1,
                       limit: int = DEFAULT_PAGE_SIZE) -> Tuple[List[Dict], Dict]:
    query = {}
    if status and status != "all":
        if status not in CONTACT_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(CONTACT_STATUSES)}")
        query["status"] = status
    page = max(1, int(page or 1))
    limit = max(1, int(limit or DEFAULT_PAGE_SIZE))
    total = db["contact_form"].count_documents(query)
    forms = list(db["contact_form"].find(query).sort([("created_at", -1), ("_id", -1)])
                 .skip((page - 1) * limit).limit(limit))
    pagination = {
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total_items": total,
        "items_per_page": limit,
    }
    return forms, pagination


def _update_form(db, form_id, changes: Dict) -> Dict:
    form = db["contact_form"].find_one_and_update(
        {"_id": to_object_id(form_id, "contact form")},
        {"$set": {**changes, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if form is None:
        raise NotFoundError("Contact form not found")
    return form


def reply_contact_form(db, form_id, reply: str, admin_name: str) -> Dict:
    reply = (reply or "").strip()
    if not reply:
        raise ValidationError("Reply is required")
    form = _update_form(db, form_id, {
        "admin_reply": reply,
        "replied_by": admin_name,
        "replied_at": utcnow(),
        "status": "replied",
    })
    logger.info("Contact form %s replied by %s", form_id, admin_name)
    return form


def set_contact_status(db, form_id, status: str) -> Dict:
    if status not in CONTACT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(CONTACT_STATUSES)}")
    return _update_form(db, form_id, {"status": status})
