"""
Database Schemas for the BharatVerse marketplace

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the snake_case class name (StoreCoupon is stored in
"store_coupon"), except SavedAddress which lives in "address".
References between collections are stored as the string form of the
referenced ObjectId.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

StoreStatus = Literal["pending", "approved", "rejected", "suspended"]
ReviewStatus = Literal["pending", "approved", "rejected"]
DiscountType = Literal["percentage", "fixed"]
PaymentMethod = Literal["COD", "CARD", "RAZORPAY"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ContactStatus = Literal["new", "in_progress", "replied", "closed"]
SenderType = Literal["admin", "store"]


class ApiModel(BaseModel):
    """Request/response bodies: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_active: bool = True


class Store(BaseModel):
    name: str
    username: str = Field(..., description="Unique public handle")
    description: Optional[str] = None
    email: EmailStr
    contact: str
    address: Optional[str] = None
    password_hash: str
    user_id: Optional[str] = Field(None, description="Submitting customer, None for anonymous stores")
    logo: Optional[str] = None
    location: Optional[dict] = None
    status: StoreStatus = "pending"
    is_active: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    admin_note: Optional[str] = None


class Product(BaseModel):
    store_id: str
    name: str
    description: str
    category: str
    mrp: float = Field(..., ge=0)
    price: float = Field(..., ge=0)
    images: List[str] = Field(..., min_length=1)
    stock_quantity: int = Field(0, ge=0)
    in_stock: bool = False
    status: ReviewStatus = "pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    admin_note: Optional[str] = None


class Coupon(BaseModel):
    code: str
    description: str
    discount_type: DiscountType = "percentage"
    discount_value: float = Field(..., gt=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    min_order_amount: float = Field(0, ge=0)
    for_new_user: bool = False
    for_member: bool = False
    is_public: bool = False
    is_active: bool = True
    usage_limit: Optional[int] = Field(None, ge=1)
    used_count: int = 0
    expires_at: datetime


class StoreCoupon(Coupon):
    store_id: str
    status: ReviewStatus = "pending"
    is_active: bool = False
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    admin_note: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    store_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class Address(ApiModel):
    name: str
    phone: str
    street: str
    city: str
    state: str
    pincode: str
    country: str = "India"


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    address: Address
    payment_method: PaymentMethod = "COD"
    payment_id: Optional[str] = None
    is_paid: bool = False
    subtotal: float
    shipping: float
    discount: float = 0
    total: float
    coupon_code: Optional[str] = None
    is_coupon_used: bool = False
    status: OrderStatus = "pending"


class SavedAddress(Address):
    user_id: str
    is_default: bool = False


class Rating(BaseModel):
    product_id: str
    user_id: str
    rating: float = Field(..., ge=1, le=5)
    review: Optional[str] = None


class ContactForm(BaseModel):
    name: str
    email: EmailStr
    subject: str
    message: str
    type: str = "general"
    status: ContactStatus = "new"
    admin_reply: Optional[str] = None
    replied_by: Optional[str] = None
    replied_at: Optional[datetime] = None


class ChatConversation(BaseModel):
    """One support thread between the admins and a store."""
    store_id: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_by_admin: bool = False
    unread_by_store: bool = False


class ChatMessage(BaseModel):
    conversation_id: str
    sender_id: str
    sender_type: SenderType
    message: str
    message_type: str = "text"
    is_read: bool = False


class StoreConversation(BaseModel):
    """A thread between two stores; store1_id sorts before store2_id."""
    store1_id: str
    store2_id: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_by_store1: bool = False
    unread_by_store2: bool = False
    unread_by_admin: bool = False


class StoreMessage(BaseModel):
    conversation_id: str
    sender_id: str
    message: str
    message_type: str = "text"
    is_read: bool = False
