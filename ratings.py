import logging
from typing import Dict, List, Optional

from bson import ObjectId
from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument

from database import get_documents, to_object_id, utcnow
from errors import ValidationError
from products import get_product
from schemas import Rating
from stores import store_summaries

logger = logging.getLogger(__name__)

RECENT_RATINGS = 10


def add_rating(db, user_id: str, product_id, rating, review: Optional[str] = None) -> Dict:
    """Record a customer's rating of a product they have ordered; rating again replaces it."""
    product = get_product(db, product_id)
    product_id = str(product["_id"])
    try:
        data = Rating(product_id=product_id, user_id=user_id, rating=rating, review=(review or "").strip() or None)
    except SchemaError:
        raise ValidationError("Rating must be between 1 and 5")
    if not db["order"].find_one({"user_id": user_id, "items.product_id": product_id}):
        raise ValidationError("You can only rate products you have ordered")
    now = utcnow()
    doc = db["rating"].find_one_and_update(
        {"user_id": user_id, "product_id": product_id},
        {"$set": {"rating": data.rating, "review": data.review, "updated_at": now},
         "$setOnInsert": {"store_id": product["store_id"], "created_at": now}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("User %s rated product %s: %s", user_id, product_id, data.rating)
    return doc


def _attach(db, ratings: List[Dict]) -> List[Dict]:
    user_ids = {r["user_id"] for r in ratings}
    users = {str(u["_id"]): {"id": str(u["_id"]), "name": u["name"]} for u in db["user"].find(
        {"_id": {"$in": [ObjectId(u) for u in user_ids if ObjectId.is_valid(u)]}}, {"name": 1})}
    product_ids = {r["product_id"] for r in ratings}
    found = {str(p["_id"]): p for p in db["product"].find(
        {"_id": {"$in": [ObjectId(p) for p in product_ids if ObjectId.is_valid(p)]}},
        {"name": 1, "images": 1, "store_id": 1})}
    stores = store_summaries(db, [p["store_id"] for p in found.values()])
    for r in ratings:
        r["user"] = users.get(r["user_id"])
        product = found.get(r["product_id"])
        r["product"] = {"id": r["product_id"], "name": product["name"], "images": product.get("images", []),
                        "store": stores.get(product["store_id"])} if product else None
    return ratings


def list_ratings(db, product_id: Optional[str] = None, store_id: Optional[str] = None,
                 limit: Optional[int] = None) -> List[Dict]:
    query = {}
    if product_id:
        query["product_id"] = str(to_object_id(product_id, "product"))
    if store_id:
        query["store_id"] = str(store_id)
    return _attach(db, get_documents(db, "rating", query, limit=limit, sort=[("created_at", -1), ("_id", -1)]))


def rating_summary(db, product_id=None, store_id=None) -> Dict:
    query = {}
    if product_id:
        query["product_id"] = str(product_id)
    if store_id:
        query["store_id"] = str(store_id)
    values = [r["rating"] for r in db["rating"].find(query, {"rating": 1})]
    average = round(sum(values) / len(values), 1) if values else 0
    return {"average": average, "count": len(values)}
