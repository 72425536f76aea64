import logging
import os
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument

from coupons import redeem_coupon, release_coupon, validate_coupon
from database import create_document, get_documents, to_object_id, utcnow
from errors import NotFoundError, ValidationError
from ratings import RECENT_RATINGS, list_ratings, rating_summary
from schemas import Order, OrderItem
from visibility import is_marketplace_visible

logger = logging.getLogger(__name__)

FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "999"))
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "50"))

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("COD", "CARD", "RAZORPAY")
PREPAID_METHODS = ("CARD", "RAZORPAY")


def shipping_for(subtotal: float) -> float:
    return 0.0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE


def _snapshot_lines(db, items: List[Dict]) -> Tuple[List[OrderItem], List[Dict]]:
    if not items:
        raise ValidationError("Items are required")
    lines = []
    stores = {}
    for item in items:
        product = db["product"].find_one({"_id": to_object_id(item.get("product_id"), "product")})
        if not product:
            raise ValidationError("Product not found")
        store_id = product["store_id"]
        if store_id not in stores:
            stores[store_id] = db["store"].find_one({"_id": to_object_id(store_id, "store")})
        if not is_marketplace_visible(product, stores[store_id]):
            raise ValidationError(f"{product['name']} is not available for purchase")
        quantity = int(item.get("quantity") or 0)
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if quantity > product["stock_quantity"]:
            raise ValidationError(f"Only {product['stock_quantity']} left of {product['name']}")
        lines.append(OrderItem(product_id=str(product["_id"]), store_id=store_id, name=product["name"],
                               quantity=quantity, price=product["price"]))
    return lines, list(stores.values())


def create_order(db, user_id: str, items: List[Dict], address, payment_method: str = "COD",
                 payment_id: Optional[str] = None, coupon_code: Optional[str] = None) -> Tuple[Dict, List[Dict]]:
    method = (payment_method or "").upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
    if address is None:
        raise ValidationError("Address is required")

    lines, stores = _snapshot_lines(db, items)
    subtotal = round(sum(line.price * line.quantity for line in lines), 2)

    discount = 0
    redeemed = None
    if coupon_code:
        result = validate_coupon(db, coupon_code, [line.model_dump() for line in lines], user_id=user_id)
        redeemed = result["coupon"]
        redeem_coupon(db, redeemed)
        discount = result["discount"]

    shipping = shipping_for(subtotal)
    order = Order(
        user_id=user_id,
        items=lines,
        address=address,
        payment_method=method,
        payment_id=payment_id,
        is_paid=method in PREPAID_METHODS,
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        total=round(max(subtotal + shipping - discount, 0), 2),
        coupon_code=redeemed["code"] if redeemed else None,
        is_coupon_used=discount > 0,
    )
    try:
        order_id = create_document(db, "order", order)
    except Exception:
        if redeemed:
            release_coupon(db, redeemed)
        raise
    logger.info("Order %s placed by %s: %s items, total %s", order_id, user_id, len(lines), order.total)
    return db["order"].find_one({"_id": ObjectId(order_id)}), stores


def list_user_orders(db, user_id: str) -> List[Dict]:
    return get_documents(db, "order", {"user_id": user_id}, sort=[("created_at", -1)])


def list_store_orders(db, store_id) -> List[Dict]:
    store_id = str(store_id)
    orders = get_documents(db, "order", {"items.store_id": store_id}, sort=[("created_at", -1)])
    for order in orders:
        order["items"] = [i for i in order["items"] if i["store_id"] == store_id]
    return [o for o in orders if o["items"]]


def update_order_status(db, store_id, order_id, status: str) -> Dict:
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    order = db["order"].find_one_and_update(
        {"_id": to_object_id(order_id, "order"), "items.store_id": str(store_id)},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        raise NotFoundError("Order not found or unauthorized")
    logger.info("Order %s set to %s by store %s", order_id, status, store_id)
    return order


def store_dashboard(db, store_id) -> Dict:
    store_id = str(store_id)
    products = {s: db["product"].count_documents({"store_id": store_id, "status": s})
                for s in ("pending", "approved", "rejected")}
    orders = list_store_orders(db, store_id)
    revenue = sum(i["price"] * i["quantity"] for o in orders if o["status"] != "cancelled" for i in o["items"])
    return {
        "total_products": sum(products.values()),
        "products_by_status": products,
        "in_stock_products": db["product"].count_documents({"store_id": store_id, "in_stock": True}),
        "total_orders": len(orders),
        "revenue": round(revenue, 2),
        "recent_orders": orders[:5],
        "average_rating": rating_summary(db, store_id=store_id)["average"],
        "recent_ratings": list_ratings(db, store_id=store_id, limit=RECENT_RATINGS),
    }
