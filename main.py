import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import EmailStr, Field
from pymongo.errors import DuplicateKeyError

import addresses
import chat
import contact
import coupons
import database
import orders
import products
import ratings
import stores
from auth import (ROLE_CUSTOMER, ROLE_STORE_OWNER, admin_login, create_token, get_current_store,
                  get_current_user, get_optional_user, hash_password, require_admin, verify_password)
from collaborators import (best_effort, fallback_description, geocode, improve_description,
                           notify_contact_received, notify_contact_reply, notify_order_created,
                           notify_order_status, notify_store_reviewed, placeholder_image_url)
from database import create_document, ensure_indexes, get_db, serialize_doc, utcnow
from errors import MarketplaceError, NotFoundError, UpstreamError
from events import listing_version
from schemas import Address, ApiModel, User as UserSchema

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="BharatVerse Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if database.db is not None:
    ensure_indexes(database.db)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


def ok(**payload):
    return {"success": True, **payload}


# ----------------------- Models -----------------------
class SignupBody(ApiModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(ApiModel):
    email: EmailStr
    password: str


class AdminLoginBody(ApiModel):
    username: str
    password: str


class StoreCreateBody(ApiModel):
    name: Optional[str] = None
    username: Optional[str] = None
    description: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None
    address: Optional[str] = None
    password: Optional[str] = None
    logo: Optional[str] = None


class StoreReviewBody(ApiModel):
    store_id: str
    status: str
    rejection_reason: Optional[str] = None


class StoreActiveBody(ApiModel):
    store_id: str
    is_active: bool
    note: Optional[str] = None


class ProductCreateBody(ApiModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    mrp: Optional[float] = None
    price: Optional[float] = None
    images: List[str] = []
    stock_quantity: Optional[int] = 0


class ProductUpdateBody(ApiModel):
    product_id: str
    update_data: dict


class ProductIdBody(ApiModel):
    product_id: str


class ProductResubmitBody(ApiModel):
    product_id: str
    changes: Optional[dict] = None


class StockBody(ApiModel):
    product_id: str
    quantity: int
    operation: str = "set"


class PriceBody(ApiModel):
    product_id: str
    price: float


class ProductReviewBody(ApiModel):
    product_id: str
    status: str
    admin_note: Optional[str] = None


class CartLine(ApiModel):
    product_id: Optional[str] = None
    store_id: Optional[str] = None
    price: float
    quantity: int


class CouponValidateBody(ApiModel):
    code: Optional[str] = None
    cart_items: List[CartLine] = []


class CouponBody(ApiModel):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: str = "percentage"
    discount_value: Optional[float] = None
    max_discount_amount: Optional[float] = None
    min_order_amount: Optional[float] = None
    for_new_user: bool = False
    for_member: bool = False
    is_public: bool = False
    is_active: bool = True
    usage_limit: Optional[int] = None
    expires_at: Optional[datetime] = None


class StoreCouponReviewBody(ApiModel):
    action: str
    note: Optional[str] = None


class OrderItemBody(ApiModel):
    product_id: str
    quantity: int = 1


class OrderCreateBody(ApiModel):
    items: List[OrderItemBody] = []
    address: Optional[Address] = None
    address_id: Optional[str] = None
    payment_method: str = "COD"
    payment_id: Optional[str] = None
    coupon_code: Optional[str] = None


class OrderStatusBody(ApiModel):
    order_id: str
    status: str


class DescriptionBody(ApiModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None


class ImageBody(ApiModel):
    name: str
    category: Optional[str] = None


class ProfileBody(ApiModel):
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None
    logo: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None


class PasswordChangeBody(ApiModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None
    email: Optional[str] = None


class ChatMessageBody(ApiModel):
    message: Optional[str] = None
    message_type: str = "text"


class StoreConversationBody(ApiModel):
    store_id: str


class RatingBody(ApiModel):
    product_id: str
    rating: Optional[float] = None
    review: Optional[str] = None


class AddressBody(ApiModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    country: Optional[str] = None
    is_default: bool = False


class ContactBody(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None


class ContactReplyBody(ApiModel):
    reply: Optional[str] = None
    admin_name: Optional[str] = None


class ContactStatusBody(ApiModel):
    status: str


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "BharatVerse marketplace API running"}


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.get("/schema")
def get_schema():
    from schemas import ContactForm, Coupon, Order, Product, Rating, Store, StoreCoupon
    return {
        "store": Store.model_json_schema(),
        "product": Product.model_json_schema(),
        "coupon": Coupon.model_json_schema(),
        "store_coupon": StoreCoupon.model_json_schema(),
        "order": Order.model_json_schema(),
        "rating": Rating.model_json_schema(),
        "contact_form": ContactForm.model_json_schema(),
    }


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, db=Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(name=body.name, email=body.email, password_hash=hash_password(body.password))
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already registered")
    token = create_token({"id": user_id, "email": body.email, "role": ROLE_CUSTOMER})
    return {"token": token, "user": {"id": user_id, "name": body.name, "email": body.email}}


@app.post("/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    suser = serialize_doc(user)
    token = create_token({"id": suser["id"], "email": suser["email"], "role": ROLE_CUSTOMER})
    return {"token": token, "user": {"id": suser["id"], "name": suser["name"], "email": suser["email"]}}


@app.post("/admin/login")
def login_admin(body: AdminLoginBody):
    token = admin_login(body.username, body.password)
    if not token:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return ok(token=token, message="Admin login successful")


@app.post("/store-owner/login")
def login_store_owner(body: LoginBody, db=Depends(get_db)):
    store = stores.authenticate_store(db, body.email, body.password)
    token = create_token({"id": str(store["_id"]), "store_id": str(store["_id"]), "email": store["email"],
                          "role": ROLE_STORE_OWNER})
    return ok(token=token, store={"id": str(store["_id"]), "name": store["name"], "status": store["status"],
                                  "email": store["email"]})


# ----------------------- Stores -----------------------
@app.post("/stores")
def create_store(body: StoreCreateBody, user=Depends(get_optional_user), db=Depends(get_db)):
    warnings: List[str] = []
    details = body.model_dump()
    location = best_effort(warnings, "geocoding", geocode, details.get("address")) if details.get("address") else None
    store = stores.submit_store(db, details, user_id=user["id"] if user else None, location=location)
    return ok(message="Store request submitted successfully", data=serialize_doc(store), warnings=warnings)


@app.get("/stores")
def list_stores(status: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    items = stores.list_stores(db, status)
    return ok(data=[serialize_doc(s) for s in items], count=len(items))


@app.get("/stores/status")
def my_store_status(user=Depends(get_optional_user), db=Depends(get_db)):
    store = stores.find_store_for_user(db, user["id"]) if user else None
    return ok(has_store=store is not None, data=serialize_doc(store))


@app.patch("/stores/approve")
def approve_store(body: StoreReviewBody, admin=Depends(require_admin), db=Depends(get_db)):
    store = stores.review_store(db, body.store_id, body.status, admin["id"], body.rejection_reason)
    warnings: List[str] = []
    best_effort(warnings, "store review email", notify_store_reviewed, store, body.status, body.rejection_reason)
    return ok(message=f"Store {body.status} successfully", data=serialize_doc(store), warnings=warnings)


@app.patch("/stores/active")
def set_store_active(body: StoreActiveBody, admin=Depends(require_admin), db=Depends(get_db)):
    store = stores.set_store_active(db, body.store_id, body.is_active, admin["id"], body.note)
    return ok(data=serialize_doc(store))


@app.patch("/store-owner/store/resubmit")
def resubmit_store(store=Depends(get_current_store), db=Depends(get_db)):
    updated = stores.resubmit_store(db, store["_id"])
    return ok(message="Store resubmitted for admin approval", data=serialize_doc(updated))


# ----------------------- Store owner: profile -----------------------
@app.get("/store-owner/profile")
def store_profile(store=Depends(get_current_store)):
    return ok(store=serialize_doc(store))


@app.put("/store-owner/profile")
def update_store_profile(body: ProfileBody, store=Depends(get_current_store), db=Depends(get_db)):
    updated = stores.update_store_profile(db, store["_id"], body.model_dump(exclude_none=True))
    return ok(store=serialize_doc(updated), message="Profile updated successfully")


@app.post("/store-owner/change-password")
def change_store_password(body: PasswordChangeBody, store=Depends(get_current_store), db=Depends(get_db)):
    if body.email and body.email.lower() != (store.get("email") or "").lower():
        raise HTTPException(status_code=403, detail="Email does not match this store")
    stores.change_store_password(db, store["_id"], body.current_password, body.new_password)
    return ok(message="Password changed successfully")


# ----------------------- Marketplace -----------------------
@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, store_id: Optional[str] = None,
                  db=Depends(get_db)):
    items = products.list_marketplace(db, q=q, category=category, store_id=store_id)
    return ok(data=[serialize_doc(p) for p in items], count=len(items), version=listing_version())


@app.get("/products/version")
def products_version():
    return {"version": listing_version()}


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return ok(product=serialize_doc(products.get_product(db, product_id)))


@app.patch("/products/approve")
def approve_product(body: ProductReviewBody, admin=Depends(require_admin), db=Depends(get_db)):
    product = products.review_product(db, body.product_id, body.status, admin["id"], body.admin_note)
    suffix = " with feedback" if body.admin_note else ""
    return ok(product=serialize_doc(product), message=f"Product {body.status} successfully{suffix}")


# ----------------------- Store owner: products -----------------------
@app.get("/store-owner/products")
def list_own_products(status: Optional[str] = None, store=Depends(get_current_store), db=Depends(get_db)):
    items = products.list_store_products(db, store["_id"], status)
    return ok(products=[serialize_doc(p) for p in items])


@app.get("/store-owner/products/rejected")
def list_rejected_products(store=Depends(get_current_store), db=Depends(get_db)):
    items = products.list_store_products(db, store["_id"], "rejected")
    return ok(products=[serialize_doc(p) for p in items])


@app.post("/store-owner/products")
def add_product(body: ProductCreateBody, store=Depends(get_current_store), db=Depends(get_db)):
    product = products.create_product(db, store["_id"], body.model_dump())
    return ok(product=serialize_doc(product),
              message="Product submitted for admin approval. It will be live once approved.")


@app.patch("/store-owner/products")
def update_product(body: ProductUpdateBody, store=Depends(get_current_store), db=Depends(get_db)):
    product = products.update_product(db, store["_id"], body.product_id, body.update_data)
    return ok(product=serialize_doc(product), message="Product updated successfully")


@app.delete("/store-owner/products")
def delete_product(body: ProductIdBody, store=Depends(get_current_store), db=Depends(get_db)):
    products.delete_product(db, store, body.product_id)
    return ok(message="Product deleted successfully")


@app.put("/store-owner/products/stock")
def update_stock(body: StockBody, store=Depends(get_current_store), db=Depends(get_db)):
    product = products.update_stock(db, store["_id"], body.product_id, body.quantity, body.operation)
    return ok(product=serialize_doc(product), message="Stock updated successfully")


@app.put("/store-owner/products/price")
def update_price(body: PriceBody, store=Depends(get_current_store), db=Depends(get_db)):
    product = products.update_price(db, store["_id"], body.product_id, body.price)
    return ok(product=serialize_doc(product), message="Price updated successfully")


@app.patch("/store-owner/products/resubmit")
def resubmit_product(body: ProductResubmitBody, store=Depends(get_current_store), db=Depends(get_db)):
    product = products.resubmit_product(db, store, body.product_id, body.changes)
    return ok(product=serialize_doc(product), message="Product resubmitted for admin approval")


# ----------------------- Admin: products -----------------------
@app.get("/admin/products")
def admin_products(status: Optional[str] = None, store_id: Optional[str] = None,
                   admin=Depends(require_admin), db=Depends(get_db)):
    items, summary = products.list_admin_products(db, status, store_id)
    return ok(products=[serialize_doc(p) for p in items], summary=summary)


@app.get("/admin/products/pending")
def admin_pending_products(admin=Depends(require_admin), db=Depends(get_db)):
    items, _ = products.list_admin_products(db, "pending")
    return ok(products=[serialize_doc(p) for p in items], count=len(items))


# ----------------------- Coupons -----------------------
@app.get("/coupons")
def public_coupons(db=Depends(get_db)):
    items = coupons.list_public_coupons(db)
    return ok(data=[serialize_doc(c) for c in items], count=len(items))


@app.post("/coupons/validate")
def validate_coupon(body: CouponValidateBody, user=Depends(get_optional_user), db=Depends(get_db)):
    result = coupons.validate_coupon(db, body.code, [line.model_dump() for line in body.cart_items],
                                     user_id=user["id"] if user else None)
    return ok(data=serialize_doc(result))


@app.get("/admin/coupons")
def admin_coupons(admin=Depends(require_admin), db=Depends(get_db)):
    items = coupons.list_coupons(db)
    return ok(data=[serialize_doc(c) for c in items], count=len(items))


@app.post("/admin/coupons")
def create_coupon(body: CouponBody, admin=Depends(require_admin), db=Depends(get_db)):
    coupon = coupons.create_coupon(db, body.model_dump())
    return ok(data=serialize_doc(coupon), message="Coupon created successfully")


@app.get("/admin/coupons/{code}")
def admin_coupon(code: str, admin=Depends(require_admin), db=Depends(get_db)):
    return ok(data=serialize_doc(coupons.get_coupon(db, code)))


@app.put("/admin/coupons/{code}")
def update_coupon(code: str, body: CouponBody, admin=Depends(require_admin), db=Depends(get_db)):
    coupon = coupons.update_coupon(db, code, body.model_dump(exclude={"code"}))
    return ok(data=serialize_doc(coupon), message="Coupon updated successfully")


@app.delete("/admin/coupons/{code}")
def delete_coupon(code: str, admin=Depends(require_admin), db=Depends(get_db)):
    coupons.delete_coupon(db, code)
    return ok(message="Coupon deleted successfully")


@app.get("/store/coupons")
def store_coupons(store=Depends(get_current_store), db=Depends(get_db)):
    items = coupons.list_store_coupons(db, store["_id"])
    return ok(data=[serialize_doc(c) for c in items])


@app.post("/store/coupons")
def create_store_coupon(body: CouponBody, store=Depends(get_current_store), db=Depends(get_db)):
    coupon = coupons.create_store_coupon(db, store["_id"], body.model_dump())
    return ok(data=serialize_doc(coupon), message="Coupon submitted for admin approval")


@app.delete("/store/coupons/{coupon_id}")
def delete_store_coupon(coupon_id: str, store=Depends(get_current_store), db=Depends(get_db)):
    coupons.delete_store_coupon(db, store["_id"], coupon_id)
    return ok(message="Coupon deleted successfully")


@app.get("/admin/store-coupons")
def admin_store_coupons(status: Optional[str] = None, admin=Depends(require_admin), db=Depends(get_db)):
    items = coupons.list_admin_store_coupons(db, status)
    return ok(data=[serialize_doc(c) for c in items], count=len(items))


@app.put("/admin/store-coupons/{coupon_id}")
def review_store_coupon(coupon_id: str, body: StoreCouponReviewBody, admin=Depends(require_admin),
                        db=Depends(get_db)):
    coupon = coupons.review_store_coupon(db, coupon_id, body.action, admin["id"], body.note)
    return ok(data=serialize_doc(coupon), message=f"Coupon {body.action}d successfully")


# ----------------------- Orders -----------------------
@app.get("/orders")
def my_orders(user=Depends(get_current_user), db=Depends(get_db)):
    return ok(data=[serialize_doc(o) for o in orders.list_user_orders(db, user["id"])])


@app.post("/orders")
def create_order(body: OrderCreateBody, user=Depends(get_current_user), db=Depends(get_db)):
    address = body.address
    if address is None and body.address_id:
        address = addresses.shipping_address(db, user["id"], body.address_id)
    order, order_stores = orders.create_order(
        db, user["id"], [i.model_dump() for i in body.items], address,
        body.payment_method, body.payment_id, body.coupon_code,
    )
    warnings: List[str] = []
    best_effort(warnings, "order confirmation email", notify_order_created, order, user.get("email"), order_stores)
    return ok(data=serialize_doc(order), warnings=warnings)


@app.get("/store-owner/orders")
def store_orders(store=Depends(get_current_store), db=Depends(get_db)):
    if store["status"] != "approved":
        raise NotFoundError("Store not found or not approved")
    return ok(orders=[serialize_doc(o) for o in orders.list_store_orders(db, store["_id"])])


@app.patch("/store-owner/orders")
def update_order_status(body: OrderStatusBody, store=Depends(get_current_store), db=Depends(get_db)):
    order = orders.update_order_status(db, store["_id"], body.order_id, body.status)
    warnings: List[str] = []
    customer = db["user"].find_one({"_id": database.to_object_id(order["user_id"], "user")})
    best_effort(warnings, "order status email", notify_order_status, order,
                customer.get("email") if customer else None, store, body.status)
    return ok(order=serialize_doc(order), message="Order status updated successfully", warnings=warnings)


@app.get("/store-owner/dashboard")
def store_dashboard(store=Depends(get_current_store), db=Depends(get_db)):
    stats = orders.store_dashboard(db, store["_id"])
    return ok(store=serialize_doc(store), stats=serialize_doc(stats))


# ----------------------- Chat: admin <-> store -----------------------
@app.get("/store-owner/chat")
def store_chat(store=Depends(get_current_store), db=Depends(get_db)):
    conversation, messages = chat.open_conversation(db, store["_id"])
    return ok(conversation=serialize_doc(conversation), messages=[serialize_doc(m) for m in messages],
              store_name=store["name"])


@app.get("/store-owner/chat/messages")
def store_chat_messages(page: int = 1, limit: int = 50, store=Depends(get_current_store), db=Depends(get_db)):
    messages, pagination = chat.list_messages(db, store["_id"], page, limit)
    return ok(messages=[serialize_doc(m) for m in messages], pagination=serialize_doc(pagination))


@app.post("/store-owner/chat/messages")
def store_chat_send(body: ChatMessageBody, store=Depends(get_current_store), db=Depends(get_db)):
    message = chat.send_message(db, store["_id"], "store", store["_id"], body.message, body.message_type)
    return ok(message=serialize_doc(message))


@app.put("/store-owner/chat/read")
def store_chat_read(store=Depends(get_current_store), db=Depends(get_db)):
    return ok(updated=chat.mark_read(db, store["_id"], "store"))


@app.get("/admin/chat/conversations")
def admin_chat_conversations(admin=Depends(require_admin), db=Depends(get_db)):
    items = chat.list_admin_conversations(db)
    return ok(conversations=[serialize_doc(c) for c in items], count=len(items))


@app.get("/admin/chat/conversations/{store_id}")
def admin_chat_conversation(store_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    conversation, messages = chat.open_conversation(db, store_id)
    return ok(conversation=serialize_doc(conversation), messages=[serialize_doc(m) for m in messages],
              store_name=stores.get_store(db, store_id)["name"])


@app.get("/admin/chat/conversations/{store_id}/messages")
def admin_chat_messages(store_id: str, page: int = 1, limit: int = 50, admin=Depends(require_admin),
                        db=Depends(get_db)):
    messages, pagination = chat.list_messages(db, store_id, page, limit)
    return ok(messages=[serialize_doc(m) for m in messages], pagination=serialize_doc(pagination))


@app.post("/admin/chat/conversations/{store_id}/messages")
def admin_chat_send(store_id: str, body: ChatMessageBody, admin=Depends(require_admin), db=Depends(get_db)):
    message = chat.send_message(db, store_id, "admin", admin["id"], body.message, body.message_type)
    return ok(message=serialize_doc(message))


@app.put("/admin/chat/conversations/{store_id}/read")
def admin_chat_read(store_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    return ok(updated=chat.mark_read(db, store_id, "admin"))


# ----------------------- Chat: store <-> store -----------------------
@app.get("/store-owner/store-chat/stores")
def chat_available_stores(search: Optional[str] = None, store=Depends(get_current_store), db=Depends(get_db)):
    items = chat.available_stores(db, store["_id"], search)
    return ok(stores=[serialize_doc(s) for s in items])


@app.get("/store-owner/store-chat/conversations")
def store_conversations(store=Depends(get_current_store), db=Depends(get_db)):
    items = chat.list_store_conversations(db, store["_id"])
    return ok(conversations=[serialize_doc(c) for c in items])


@app.post("/store-owner/store-chat/conversations")
def open_store_conversation(body: StoreConversationBody, store=Depends(get_current_store), db=Depends(get_db)):
    conversation = chat.open_store_conversation(db, store["_id"], body.store_id)
    return ok(conversation=serialize_doc(conversation))


@app.get("/store-owner/store-chat/conversations/{conversation_id}/messages")
def store_conversation_messages(conversation_id: str, page: int = 1, limit: int = 50,
                                store=Depends(get_current_store), db=Depends(get_db)):
    messages, pagination = chat.list_store_messages(db, conversation_id, store["_id"], page, limit)
    return ok(messages=[serialize_doc(m) for m in messages], pagination=serialize_doc(pagination))


@app.post("/store-owner/store-chat/conversations/{conversation_id}/messages")
def store_conversation_send(conversation_id: str, body: ChatMessageBody, store=Depends(get_current_store),
                            db=Depends(get_db)):
    message = chat.send_store_message(db, conversation_id, store["_id"], body.message, body.message_type)
    return ok(message=serialize_doc(message))


@app.put("/store-owner/store-chat/conversations/{conversation_id}/read")
def store_conversation_read(conversation_id: str, store=Depends(get_current_store), db=Depends(get_db)):
    return ok(updated=chat.mark_store_read(db, conversation_id, store["_id"]))


@app.get("/admin/store-chat")
def admin_store_conversations(filter: str = "all", admin=Depends(require_admin), db=Depends(get_db)):
    items = chat.list_admin_store_conversations(db, filter)
    return ok(conversations=[serialize_doc(c) for c in items], count=len(items))


@app.get("/admin/store-chat/{conversation_id}/messages")
def admin_store_conversation_messages(conversation_id: str, page: int = 1, limit: int = 50,
                                      admin=Depends(require_admin), db=Depends(get_db)):
    messages, pagination = chat.list_store_messages(db, conversation_id, None, page, limit)
    return ok(messages=[serialize_doc(m) for m in messages], pagination=serialize_doc(pagination))


@app.put("/admin/store-chat/{conversation_id}/read")
def admin_store_conversation_read(conversation_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    chat.mark_store_read(db, conversation_id)
    return ok(message="Conversation marked as read")


# ----------------------- Ratings -----------------------
@app.get("/ratings")
def all_ratings(product_id: Optional[str] = None, db=Depends(get_db)):
    items = ratings.list_ratings(db, product_id=product_id)
    return ok(data=[serialize_doc(r) for r in items], count=len(items))


@app.post("/ratings")
def rate_product(body: RatingBody, user=Depends(get_current_user), db=Depends(get_db)):
    rating = ratings.add_rating(db, user["id"], body.product_id, body.rating, body.review)
    return ok(data=serialize_doc(rating), message="Rating saved")


@app.get("/products/{product_id}/ratings")
def product_ratings(product_id: str, db=Depends(get_db)):
    items = ratings.list_ratings(db, product_id=product_id)
    return ok(data=[serialize_doc(r) for r in items], summary=ratings.rating_summary(db, product_id=product_id))


# ----------------------- Addresses -----------------------
@app.get("/addresses")
def my_addresses(user=Depends(get_current_user), db=Depends(get_db)):
    return ok(data=[serialize_doc(a) for a in addresses.list_addresses(db, user["id"])])


@app.post("/addresses")
def add_address(body: AddressBody, user=Depends(get_current_user), db=Depends(get_db)):
    saved = addresses.add_address(db, user["id"], body.model_dump())
    return ok(data=serialize_doc(saved), message="Address saved")


@app.delete("/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    addresses.delete_address(db, user["id"], address_id)
    return ok(message="Address deleted")


@app.put("/addresses/{address_id}/default")
def default_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return ok(data=serialize_doc(addresses.set_default_address(db, user["id"], address_id)))


# ----------------------- Contact -----------------------
@app.post("/contact")
def submit_contact(body: ContactBody, db=Depends(get_db)):
    form = contact.submit_contact_form(db, body.model_dump())
    warnings: List[str] = []
    best_effort(warnings, "contact confirmation email", notify_contact_received, form)
    return ok(data=serialize_doc(form), message="Thanks for reaching out. We will get back to you soon.",
              warnings=warnings)


@app.get("/admin/contact-forms")
def admin_contact_forms(status: Optional[str] = None, page: int = 1, limit: int = contact.DEFAULT_PAGE_SIZE,
                        admin=Depends(require_admin), db=Depends(get_db)):
    forms, pagination = contact.list_contact_forms(db, status, page, limit)
    return ok(data=[serialize_doc(f) for f in forms], pagination=serialize_doc(pagination))


@app.post("/admin/contact-forms/{form_id}/reply")
def reply_contact(form_id: str, body: ContactReplyBody, admin=Depends(require_admin), db=Depends(get_db)):
    form = contact.reply_contact_form(db, form_id, body.reply, body.admin_name or admin["id"])
    warnings: List[str] = []
    best_effort(warnings, "contact reply email", notify_contact_reply, form)
    return ok(data=serialize_doc(form), message="Reply sent", warnings=warnings)


@app.patch("/admin/contact-forms/{form_id}")
def update_contact_status(form_id: str, body: ContactStatusBody, admin=Depends(require_admin), db=Depends(get_db)):
    return ok(data=serialize_doc(contact.set_contact_status(db, form_id, body.status)))


# ----------------------- AI / Geo -----------------------
@app.post("/ai/improve-description")
def ai_improve_description(body: DescriptionBody):
    try:
        text = improve_description(body.name, body.description, body.category)
        return ok(description=text, source="ai")
    except UpstreamError as e:
        logger.warning("AI description unavailable, using template: %s", e.message)
        return ok(description=fallback_description(body.name, body.category, body.description),
                  source="fallback", warnings=[e.message])


@app.post("/ai/product-image")
def ai_product_image(body: ImageBody):
    return ok(**placeholder_image_url(body.name, body.category))


@app.get("/geocode")
def geocode_address(address: str):
    location = geocode(address)
    if location is None:
        raise HTTPException(status_code=404, detail="Address not found")
    return ok(data=location)


# ----------------------- Seed Demo Data -----------------------
DEMO_STORE = {
    "name": "Kala Ghar Crafts",
    "username": "kalaghar",
    "description": "Handmade pottery and textiles from Rajasthan.",
    "email": "kalaghar@bharatverse.in",
    "contact": "9876543210",
    "address": "Jaipur, Rajasthan",
    "password": "kalaghar123",
}

DEMO_PRODUCTS = [
    {"name": "Blue Pottery Vase", "description": "Hand-painted Jaipur blue pottery vase.",
     "category": "pottery", "mrp": 1899, "price": 1499, "stock_quantity": 20},
    {"name": "Bandhani Silk Dupatta", "description": "Tie-dyed pure silk dupatta.",
     "category": "textile", "mrp": 2499, "price": 1999, "stock_quantity": 15},
    {"name": "Brass Diya Set", "description": "Set of 5 traditional brass diyas.",
     "category": "lighting", "mrp": 999, "price": 749, "stock_quantity": 40},
    {"name": "Madhubani Painting", "description": "Original Madhubani art on handmade paper.",
     "category": "painting", "mrp": 4999, "price": 3999, "stock_quantity": 0},
]


@app.post("/seed")
def seed(db=Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    store = stores.submit_store(db, DEMO_STORE)
    stores.review_store(db, store["_id"], "approved", "seed")
    for p in DEMO_PRODUCTS:
        images = [placeholder_image_url(p["name"], p["category"])["url"]]
        product = products.create_product(db, store["_id"], {**p, "images": images})
        products.review_product(db, product["_id"], "approved", "seed")
    if db["coupon"].count_documents({}) == 0:
        coupons.create_coupon(db, {"code": "WELCOME10", "description": "10% off your first order",
                                   "discount_type": "percentage", "discount_value": 10,
                                   "max_discount_amount": 500, "for_new_user": True, "is_public": True,
                                   "expires_at": utcnow() + timedelta(days=365)})
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
