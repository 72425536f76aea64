from typing import Dict, List, Optional

STORE_VISIBLE = {"status": "approved", "is_active": True}
PRODUCT_LISTABLE = {"status": "approved", "stock_quantity": {"$gt": 0}}


def is_store_visible(store: Optional[Dict]) -> bool:
    if not store:
        return False
    return all(store.get(field) == value for field, value in STORE_VISIBLE.items())


def is_product_listable(product: Optional[Dict]) -> bool:
    if not product:
        return False
    return product.get("status") == PRODUCT_LISTABLE["status"] and product.get("stock_quantity", 0) > 0


def is_marketplace_visible(product: Optional[Dict], store: Optional[Dict]) -> bool:
    if not product or not store or product.get("store_id") != str(store.get("_id")):
        return False
    return is_store_visible(store) and is_product_listable(product)


def visible_store_ids(db) -> List[str]:
    return [str(s["_id"]) for s in db["store"].find(STORE_VISIBLE, {"_id": 1})]


def marketplace_query(db, extra: Optional[Dict] = None) -> Dict:
    query = {**PRODUCT_LISTABLE, "store_id": {"$in": visible_store_ids(db)}}
    if extra:
        return {"$and": [query, extra]}
    return query
