import logging
import math
import os
import re
from typing import Callable, Dict, List, Optional, Tuple

from pydantic.alias_generators import to_snake
from pymongo import ReturnDocument

from database import create_document, get_documents, to_object_id, utcnow
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from events import invalidate_listing
from lifecycle import REVIEW_CLEARED, StaleWriteError, review_fields, transition
from schemas import Product
from stores import get_store, store_summaries
from visibility import is_store_visible, marketplace_query

logger = logging.getLogger(__name__)

DEFAULT_RESTOCK_QUANTITY = int(os.getenv("DEFAULT_RESTOCK_QUANTITY", "50"))
CAS_ATTEMPTS = 5
# Mongo stores integers as int64
MAX_STOCK_QUANTITY = 2 ** 63 - 1

TEXT_FIELDS = ("name", "description", "category")
PRICE_FIELDS = ("mrp", "price")
CONTENT_FIELDS = TEXT_FIELDS + PRICE_FIELDS + ("images",)
EDITABLE_FIELDS = CONTENT_FIELDS + ("stock_quantity", "in_stock")
STOCK_OPERATIONS = ("set", "add", "subtract")
IN_STOCK_NEEDS_QUANTITY = (
    "Cannot mark product as in stock when stock quantity is 0. Please update stock quantity first.")


def stock_fields(quantity: int) -> Dict:
    """Every write of stock_quantity goes through here so in_stock never drifts."""
    quantity = max(0, int(quantity))
    if quantity > MAX_STOCK_QUANTITY:
        raise ValidationError("Stock quantity is too large")
    return {"stock_quantity": quantity, "in_stock": quantity > 0}


def _parse_quantity(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("Stock quantity must be a whole number")
    try:
        quantity = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Stock quantity must be a whole number")
    if abs(quantity) > MAX_STOCK_QUANTITY:
        raise ValidationError("Stock quantity is too large")
    if quantity != float(value):
        raise ValidationError("Stock quantity must be a whole number")
    return quantity


def _parse_flag(value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("inStock must be true or false")
    return value


def _parse_price(field: str, value) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a valid number")
    if math.isnan(amount) or math.isinf(amount):
        raise ValidationError(f"{field} must be a valid number")
    if amount < 0:
        raise ValidationError("Prices and stock quantity must be positive numbers")
    return amount


def _clean_content(fields: Dict, partial: bool) -> Dict:
    out = {}
    missing = []
    for key in TEXT_FIELDS:
        if key in fields or not partial:
            value = str(fields.get(key) or "").strip()
            if not value:
                missing.append(key)
            out[key] = value
    for key in PRICE_FIELDS:
        if key in fields or not partial:
            if fields.get(key) in (None, ""):
                missing.append(key)
                continue
            out[key] = _parse_price(key, fields[key])
    if "images" in fields or not partial:
        images = [i for i in (fields.get("images") or []) if isinstance(i, str) and i.strip()]
        if not images:
            raise ValidationError("At least one product image is required")
        out["images"] = images
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return out


def _normalize_keys(data: Dict) -> Dict:
    return {to_snake(k): v for k, v in (data or {}).items()}


# ----------------------- Reads -----------------------
def get_product(db, product_id) -> Dict:
    """Direct lookup by id. Does not apply the marketplace visibility gate."""
    product = db["product"].find_one({"_id": to_object_id(product_id, "product")})
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_owned_product(db, store_id, product_id) -> Dict:
    product = db["product"].find_one({"_id": to_object_id(product_id, "product"), "store_id": str(store_id)})
    if not product:
        raise NotFoundError("Product not found or unauthorized")
    return product


def list_store_products(db, store_id, status: Optional[str] = None) -> List[Dict]:
    query = {"store_id": str(store_id)}
    if status:
        query["status"] = status
    return get_documents(db, "product", query, sort=[("created_at", -1)])


def list_admin_products(db, status: Optional[str] = None, store_id: Optional[str] = None) -> Tuple[List[Dict], Dict]:
    query = {}
    if status and status != "all":
        query["status"] = status
    if store_id:
        query["store_id"] = store_id
    products = get_documents(db, "product", query, sort=[("created_at", -1)])
    stores = store_summaries(db, [p["store_id"] for p in products])
    for p in products:
        p["store"] = stores.get(p["store_id"])
    summary = {"total": len(products)}
    for s in ("pending", "approved", "rejected"):
        summary[s] = db["product"].count_documents({"status": s})
    return products, summary


def list_marketplace(db, q: Optional[str] = None, category: Optional[str] = None,
                     store_id: Optional[str] = None, limit: int = 100) -> List[Dict]:
    extra = {}
    if q:
        extra["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        extra["category"] = category
    if store_id:
        extra["store_id"] = store_id
    products = get_documents(db, "product", marketplace_query(db, extra or None),
                             limit=limit, sort=[("created_at", -1)])
    stores = store_summaries(db, [p["store_id"] for p in products])
    for p in products:
        p["store"] = stores.get(p["store_id"])
    return products


# ----------------------- Owner writes -----------------------
def create_product(db, store_id, fields: Dict) -> Dict:
    store = get_store(db, store_id)
    fields = _normalize_keys(fields)
    content = _clean_content(fields, partial=False)
    quantity = _parse_quantity(fields.get("stock_quantity") or 0)
    if quantity < 0:
        raise ValidationError("Prices and stock quantity must be positive numbers")
    # a client-sent in_stock is ignored, it is derived from the quantity
    product = Product(store_id=str(store["_id"]), **content, **stock_fields(quantity))
    product_id = create_document(db, "product", product)
    logger.info("Product created: %s - Stock: %s, InStock: %s, Status: %s",
                product.name, product.stock_quantity, product.in_stock, product.status)
    return get_product(db, product_id)


def _write_stock(db, store_id, product_id, compute: Callable[[int], int], extra: Optional[Dict] = None) -> Dict:
    for _ in range(CAS_ATTEMPTS):
        product = get_owned_product(db, store_id, product_id)
        previous = product.get("stock_quantity", 0)
        fields = {**(extra or {}), **stock_fields(compute(previous)), "updated_at": utcnow()}
        updated = db["product"].find_one_and_update(
            {"_id": product["_id"], "store_id": str(store_id), "stock_quantity": previous},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            logger.info("Stock for %s: %s -> %s (inStock=%s)",
                        updated["name"], previous, updated["stock_quantity"], updated["in_stock"])
            if previous != updated["stock_quantity"]:
                invalidate_listing("stock changed", product_id=str(updated["_id"]))
            return updated
    raise ConflictError("Stock changed while it was being updated, please retry")


def update_stock(db, store_id, product_id, quantity, operation: str = "set") -> Dict:
    if operation not in STOCK_OPERATIONS:
        raise ValidationError("Operation must be one of: set, add, subtract")
    amount = _parse_quantity(quantity)
    if operation != "set" and amount < 0:
        raise ValidationError("Quantity must not be negative")

    def compute(previous: int) -> int:
        if operation == "add":
            return previous + amount
        if operation == "subtract":
            return previous - amount
        return amount

    return _write_stock(db, store_id, product_id, compute)


def set_in_stock(db, store_id, product_id, flag: bool) -> Dict:
    """Mark a product in or out of stock without breaking the stock invariant.

    Marking in stock needs a positive quantity. Marking out of stock zeroes
    the quantity.
    """
    product = get_owned_product(db, store_id, product_id)
    if flag:
        if product.get("stock_quantity", 0) <= 0:
            raise ValidationError(IN_STOCK_NEEDS_QUANTITY)
        return product
    return _write_stock(db, store_id, product_id, lambda previous: 0)


def _clean_edit(changes: Optional[Dict]) -> Tuple[Dict, Dict]:
    data = _normalize_keys(changes)
    unknown = sorted(set(data) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
    if "in_stock" in data:
        data["in_stock"] = _parse_flag(data["in_stock"])
    if "stock_quantity" in data:
        data["stock_quantity"] = _parse_quantity(data["stock_quantity"])
    content = _clean_content({k: v for k, v in data.items() if k in CONTENT_FIELDS}, partial=True)
    return data, content


def _send_back_for_review(db, store_id, product: Dict, data: Dict, content: Dict) -> Dict:
    update = {**content, **REVIEW_CLEARED}
    if "stock_quantity" in data:
        update.update(stock_fields(data["stock_quantity"]))
    elif data.get("in_stock") is False:
        update.update(stock_fields(0))
    elif data.get("in_stock") is True and product.get("stock_quantity", 0) <= 0:
        raise ValidationError(IN_STOCK_NEEDS_QUANTITY)
    return transition(db, "product", product["_id"], "pending", update,
                      scope={"store_id": str(store_id)}, from_states=("rejected",))


def update_product(db, store_id, product_id, update_data: Dict) -> Dict:
    data, content = _clean_edit(update_data)
    product = get_owned_product(db, store_id, product_id)
    if product["status"] == "rejected":
        updated = _send_back_for_review(db, store_id, product, data, content)
        logger.info("Rejected product edited and sent back for approval: %s", updated["name"])
        return updated

    if "stock_quantity" in data:
        quantity = data["stock_quantity"]
        return _write_stock(db, store_id, product_id, lambda previous: quantity, extra=content)

    if "in_stock" in data:
        product = set_in_stock(db, store_id, product_id, data["in_stock"])
        if not content:
            return product

    if not content:
        return get_owned_product(db, store_id, product_id)
    updated = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "product"), "store_id": str(store_id)},
        {"$set": {**content, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFoundError("Product not found or unauthorized")
    logger.info("Product updated: %s (%s)", updated["name"], ", ".join(sorted(content)))
    return updated


def update_price(db, store_id, product_id, price) -> Dict:
    amount = _parse_price("price", price)
    if amount <= 0:
        raise ValidationError("Invalid product ID or price")
    return update_product(db, store_id, product_id, {"price": amount})


def resubmit_product(db, store: Dict, product_id, changes: Optional[Dict] = None) -> Dict:
    if not is_store_visible(store):
        raise AuthError("Store not approved or not active. Cannot resubmit products.", 403)
    data, content = _clean_edit(changes)
    current = get_owned_product(db, store["_id"], product_id)
    product = _send_back_for_review(db, store["_id"], current, data, content)
    logger.info("Product resubmitted for approval: %s (Store: %s)", product["name"], store["name"])
    return product


def delete_product(db, store: Dict, product_id) -> None:
    if not is_store_visible(store):
        raise AuthError("Store not approved or not active. Cannot delete products.", 403)
    res = db["product"].delete_one({"_id": to_object_id(product_id, "product"), "store_id": str(store["_id"])})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found or unauthorized")
    invalidate_listing("product deleted", product_id=str(product_id))


# ----------------------- Admin review -----------------------
def review_product(db, product_id, decision: str, admin_id: str, note: Optional[str] = None) -> Dict:
    if decision not in ("approved", "rejected"):
        raise ValidationError('Status must be "approved" or "rejected"')

    for _ in range(CAS_ATTEMPTS):
        product = get_product(db, product_id)
        if product["status"] != "pending":
            raise ConflictError("Product is not pending approval")
        update = review_fields(admin_id, note)
        expect = None
        if decision == "approved":
            quantity = product.get("stock_quantity", 0)
            update.update(stock_fields(quantity if quantity > 0 else DEFAULT_RESTOCK_QUANTITY))
            expect = {"stock_quantity": quantity}
        try:
            reviewed = transition(db, "product", product["_id"], decision, update, expect=expect,
                                  from_states=("pending",))
        except StaleWriteError:
            continue
        logger.info("Product %s by admin %s: %s", decision, admin_id, reviewed["name"])
        invalidate_listing("product reviewed", product_id=str(reviewed["_id"]), status=decision)
        return reviewed
    raise ConflictError("Product changed while it was being reviewed, please retry")
