import logging
from typing import Dict, Iterable, Optional

from pymongo import ReturnDocument

from database import to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "store": {
        ("pending", "approved"),
        ("pending", "rejected"),
        ("rejected", "pending"),
        ("approved", "suspended"),
        ("suspended", "approved"),
    },
    "product": {
        ("pending", "approved"),
        ("pending", "rejected"),
        ("rejected", "pending"),
    },
    "store_coupon": {
        ("pending", "approved"),
        ("pending", "rejected"),
    },
}

LABELS = {"store": "Store", "product": "Product", "store_coupon": "Coupon"}

REVIEW_CLEARED = {"reviewed_by": None, "reviewed_at": None, "admin_note": None}


class StaleWriteError(ConflictError):
    """The status allowed the move but another guarded field changed underneath."""


def sources_for(kind: str, target: str):
    return sorted(src for src, dst in TRANSITIONS[kind] if dst == target)


def review_fields(admin_id: str, note: Optional[str] = None) -> Dict:
    return {"reviewed_by": admin_id, "reviewed_at": utcnow(), "admin_note": note or None}


def transition(db, kind: str, doc_id, target: str, update: Optional[Dict] = None,
               scope: Optional[Dict] = None, expect: Optional[Dict] = None,
               from_states: Optional[Iterable[str]] = None) -> Dict:
    """Move one document to `target`.

    `scope` narrows which document may be touched (e.g. its owning store);
    a miss there reads as "not found". `expect` holds compare-and-swap
    guards on other fields; a miss there raises StaleWriteError.
    `from_states` narrows the legal sources further for this call.
    """
    label = LABELS[kind]
    sources = sources_for(kind, target)
    if from_states is not None:
        sources = [s for s in sources if s in from_states]
    if not sources:
        raise ValidationError(f"Invalid status '{target}'")

    _id = to_object_id(doc_id, label.lower())
    scoped = {"_id": _id, **(scope or {})}
    fields = {**(update or {}), "status": target, "updated_at": utcnow()}
    doc = db[kind].find_one_and_update(
        {**scoped, **(expect or {}), "status": {"$in": sources}},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if doc is not None:
        logger.info("%s %s -> %s", label, _id, target)
        return doc

    current = db[kind].find_one(scoped)
    if current is None:
        raise NotFoundError(f"{label} not found")
    if current["status"] in sources:
        raise StaleWriteError(f"{label} changed while it was being updated, please retry")
    raise ConflictError(f"{label} is {current['status']} and cannot be moved to {target}")
