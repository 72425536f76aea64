import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import as_utc, create_document, get_documents, to_object_id, utcnow
from errors import (ApplicabilityError, ConflictError, ExhaustedError, ExpiredError, InactiveError,
                    NotFoundError, ThresholdError, ValidationError)
from lifecycle import review_fields, transition
from schemas import Coupon, StoreCoupon

logger = logging.getLogger(__name__)

GLOBAL = "coupon"
STORE = "store_coupon"
TERM_FIELDS = ("description", "discount_type", "discount_value", "max_discount_amount", "min_order_amount",
               "for_new_user", "for_member", "is_public", "is_active", "usage_limit", "expires_at")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def round_currency(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_discount(coupon: Dict, amount: float) -> int:
    if coupon["discount_type"] == "percentage":
        discount = amount * coupon["discount_value"] / 100
        cap = coupon.get("max_discount_amount")
        if cap is not None:
            discount = min(discount, cap)
    else:
        discount = min(coupon["discount_value"], amount)
    return round_currency(discount)


def _clean_terms(data: Dict) -> Dict:
    terms = {k: data.get(k) for k in TERM_FIELDS if k in data}
    if not str(terms.get("description") or "").strip():
        raise ValidationError("Required fields missing: description")
    if terms.get("expires_at") is None:
        raise ValidationError("Required fields missing: expiresAt")
    if not isinstance(terms["expires_at"], datetime):
        raise ValidationError("expiresAt must be a date")
    terms["expires_at"] = as_utc(terms["expires_at"])

    discount_type = terms.get("discount_type") or "percentage"
    if discount_type not in ("percentage", "fixed"):
        raise ValidationError("Discount type must be 'percentage' or 'fixed'")
    terms["discount_type"] = discount_type
    value = terms.get("discount_value")
    if value is None or value <= 0:
        raise ValidationError("Discount value must be greater than 0")
    if discount_type == "percentage" and not 0 <= value <= 100:
        raise ValidationError("Percentage discount must be between 0 and 100")
    if terms.get("min_order_amount") is None:
        terms["min_order_amount"] = 0
    return terms


def _claim_code(db, code: str, kind: str) -> None:
    if not code:
        raise ValidationError("Required fields missing: code")
    if db[GLOBAL].find_one({"code": code}) or db[STORE].find_one({"code": code}):
        raise ConflictError("Coupon code already exists")
    try:
        db["coupon_code"].insert_one({"_id": code, "kind": kind, "created_at": utcnow()})
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists")


def _release_code(db, code: str) -> None:
    db["coupon_code"].delete_one({"_id": code})


def _insert_claimed(db, kind: str, code: str, coupon) -> Dict:
    try:
        coupon_id = create_document(db, kind, coupon)
    except DuplicateKeyError:
        _release_code(db, code)
        raise ConflictError("Coupon code already exists")
    except Exception:
        _release_code(db, code)
        raise
    return db[kind].find_one({"_id": ObjectId(coupon_id)})


# ----------------------- Global coupons -----------------------
def create_coupon(db, data: Dict) -> Dict:
    code = normalize_code(data.get("code"))
    terms = _clean_terms(data)
    _claim_code(db, code, "global")
    coupon = _insert_claimed(db, GLOBAL, code, Coupon(code=code, **terms))
    logger.info("Global coupon created: %s", code)
    return coupon


def list_coupons(db) -> List[Dict]:
    return get_documents(db, GLOBAL, sort=[("created_at", -1)])


def list_public_coupons(db, now: Optional[datetime] = None) -> List[Dict]:
    now = now or utcnow()
    coupons = get_documents(db, GLOBAL, {"is_active": True, "is_public": True}, sort=[("created_at", -1)])
    return [c for c in coupons if as_utc(c["expires_at"]) >= now]


def get_coupon(db, code: str) -> Dict:
    coupon = db[GLOBAL].find_one({"code": normalize_code(code)})
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def update_coupon(db, code: str, data: Dict) -> Dict:
    terms = _clean_terms(data)
    coupon = db[GLOBAL].find_one_and_update(
        {"code": normalize_code(code)},
        {"$set": {**terms, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if coupon is None:
        raise NotFoundError("Coupon not found")
    return coupon


def delete_coupon(db, code: str) -> None:
    code = normalize_code(code)
    res = db[GLOBAL].delete_one({"code": code})
    if res.deleted_count == 0:
        raise NotFoundError("Coupon not found")
    _release_code(db, code)


# ----------------------- Store coupons -----------------------
def create_store_coupon(db, store_id, data: Dict) -> Dict:
    code = normalize_code(data.get("code"))
    terms = _clean_terms(data)
    # moderation decides when a store coupon goes live
    terms.update({"is_active": False, "is_public": False})
    _claim_code(db, code, "store")
    coupon = _insert_claimed(db, STORE, code, StoreCoupon(code=code, store_id=str(store_id), **terms))
    logger.info("Store coupon %s submitted for approval by store %s", code, store_id)
    return coupon


def list_store_coupons(db, store_id) -> List[Dict]:
    return get_documents(db, STORE, {"store_id": str(store_id)}, sort=[("created_at", -1)])


def delete_store_coupon(db, store_id, coupon_id) -> None:
    coupon = db[STORE].find_one_and_delete({"_id": to_object_id(coupon_id, "coupon"), "store_id": str(store_id)})
    if coupon is None:
        raise NotFoundError("Coupon not found")
    _release_code(db, coupon["code"])


def list_admin_store_coupons(db, status: Optional[str] = None) -> List[Dict]:
    query = {"status": status} if status and status != "all" else {}
    coupons = get_documents(db, STORE, query, sort=[("created_at", -1)])
    ids = [ObjectId(c["store_id"]) for c in coupons if ObjectId.is_valid(c["store_id"])]
    names = {str(s["_id"]): s["name"] for s in db["store"].find({"_id": {"$in": ids}}, {"name": 1})}
    for c in coupons:
        c["store_name"] = names.get(c["store_id"])
    return coupons


def review_store_coupon(db, coupon_id, action: str, admin_id: str, note: Optional[str] = None) -> Dict:
    if action not in ("approve", "reject"):
        raise ValidationError("Invalid action")
    coupon = db[STORE].find_one({"_id": to_object_id(coupon_id, "coupon")})
    if not coupon:
        raise NotFoundError("Coupon not found")
    if coupon["status"] != "pending":
        raise ConflictError("Coupon has already been reviewed")
    if action == "approve" and db[GLOBAL].find_one({"code": coupon["code"]}):
        raise ConflictError("Coupon code conflicts with existing global coupon")

    target = "approved" if action == "approve" else "rejected"
    update = {"is_active": action == "approve", **review_fields(admin_id, note)}
    return transition(db, STORE, coupon["_id"], target, update, from_states=("pending",))


# ----------------------- Validation -----------------------
def _clean_lines(cart_lines: List[Dict]) -> List[Dict]:
    if not cart_lines:
        raise ValidationError("Cart items are required")
    lines = []
    for line in cart_lines:
        try:
            price = float(line["price"])
            quantity = int(line["quantity"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError("Each cart item needs a price and a quantity")
        if price < 0 or quantity < 1:
            raise ValidationError("Cart item prices must be positive and quantities at least 1")
        lines.append({"product_id": line.get("product_id"), "store_id": line.get("store_id"),
                      "price": price, "quantity": quantity})
    return lines


def _store_coupon_live(coupon: Dict, now: datetime) -> bool:
    return (coupon.get("status") == "approved" and coupon.get("is_active") is True
            and as_utc(coupon["expires_at"]) >= now)


def validate_coupon(db, code: str, cart_lines: List[Dict], now: Optional[datetime] = None,
                    user_id: Optional[str] = None) -> Dict:
    """Work out the discount a code gives on a cart. Does not consume a use."""
    code = normalize_code(code)
    if not code:
        raise ValidationError("Coupon code is required")
    lines = _clean_lines(cart_lines)
    now = now or utcnow()

    store_name = None
    coupon = db[GLOBAL].find_one({"code": code})
    if coupon:
        kind = GLOBAL
        applicable = lines
    else:
        coupon = db[STORE].find_one({"code": code})
        if not coupon or not _store_coupon_live(coupon, now):
            raise NotFoundError("Invalid coupon code")
        kind = STORE
        store = db["store"].find_one({"_id": to_object_id(coupon["store_id"], "store")})
        store_name = store["name"] if store else "this store"
        applicable = [line for line in lines if line["store_id"] == coupon["store_id"]]
        if not applicable:
            raise ApplicabilityError(f"This coupon is only valid for products from {store_name}")

    amount = sum(line["price"] * line["quantity"] for line in applicable)

    if as_utc(coupon["expires_at"]) < now:
        raise ExpiredError("Coupon has expired")
    if not coupon.get("is_active", True):
        raise InactiveError("Coupon is not active")
    if amount < coupon.get("min_order_amount", 0):
        suffix = f" for {store_name} products" if store_name else ""
        raise ThresholdError(f"Minimum order value of ₹{coupon['min_order_amount']:g} required{suffix}")
    limit = coupon.get("usage_limit")
    if limit and coupon.get("used_count", 0) >= limit:
        raise ExhaustedError("Coupon usage limit exceeded")
    if coupon.get("for_new_user") and user_id and db["order"].count_documents({"user_id": user_id}) > 0:
        raise ApplicabilityError("This coupon is only valid on your first order")

    return {
        "coupon": {
            "id": str(coupon["_id"]),
            "kind": kind,
            "code": coupon["code"],
            "description": coupon.get("description"),
            "discount_type": coupon["discount_type"],
            "discount_value": coupon["discount_value"],
            "max_discount_amount": coupon.get("max_discount_amount"),
            "min_order_amount": coupon.get("min_order_amount", 0),
            "usage_limit": limit,
            "is_store_coupon": kind == STORE,
            "store_id": coupon.get("store_id"),
            "store_name": store_name,
        },
        "discount": compute_discount(coupon, amount),
        "applicable_amount": round(amount, 2),
        "applicable_items": [{"product_id": line["product_id"], "store_id": line["store_id"],
                              "quantity": line["quantity"], "price": line["price"]} for line in applicable],
    }


def redeem_coupon(db, coupon_summary: Dict) -> Dict:
    """Consume one use of a validated coupon; the usage limit is re-checked atomically."""
    kind = coupon_summary["kind"]
    query = {"_id": ObjectId(coupon_summary["id"])}
    limit = coupon_summary.get("usage_limit")
    if limit:
        query["used_count"] = {"$lt": limit}
    coupon = db[kind].find_one_and_update(query, {"$inc": {"used_count": 1}},
                                          return_document=ReturnDocument.AFTER)
    if coupon is None:
        raise ExhaustedError("Coupon usage limit exceeded")
    logger.info("Coupon %s redeemed (%s/%s)", coupon["code"], coupon["used_count"], limit or "unlimited")
    return coupon


def release_coupon(db, coupon_summary: Dict) -> None:
    db[coupon_summary["kind"]].update_one({"_id": ObjectId(coupon_summary["id"])},
                                          {"$inc": {"used_count": -1}})
