import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import get_db, serialize_doc, to_object_id
from errors import ValidationError

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", "24"))
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")

ROLE_ADMIN = "admin"
ROLE_STORE_OWNER = "store_owner"
ROLE_CUSTOMER = "customer"

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, hashed: Optional[str]) -> bool:
    return hmac.compare_digest(hash_password(password), hashed or "")


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRES_HOURS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def admin_login(username: str, password: str) -> Optional[str]:
    if hmac.compare_digest(username, ADMIN_USERNAME) and hmac.compare_digest(password, ADMIN_PASSWORD):
        return create_token({"id": username, "role": ROLE_ADMIN})
    return None


async def get_token_payload(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    return decode_token(credentials.credentials)


async def require_admin(payload: dict = Depends(get_token_payload)) -> dict:
    if payload.get("role") != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin only")
    return payload


async def get_current_user(payload: dict = Depends(get_token_payload), db=Depends(get_db)) -> dict:
    if payload.get("role") != ROLE_CUSTOMER or not payload.get("id"):
        raise HTTPException(status_code=403, detail="Customer account required")
    try:
        user = db["user"].find_one({"_id": to_object_id(payload["id"], "user")})
    except ValidationError:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
                            db=Depends(get_db)) -> Optional[dict]:
    if credentials is None:
        return None
    payload = decode_token(credentials.credentials)
    if payload.get("role") != ROLE_CUSTOMER:
        return None
    return await get_current_user(payload, db)


async def get_current_store(payload: dict = Depends(get_token_payload), db=Depends(get_db)) -> dict:
    """The store behind a store-owner token, as stored (snake_case, `_id`)."""
    if payload.get("role") != ROLE_STORE_OWNER or not payload.get("store_id"):
        raise HTTPException(status_code=403, detail="Store owner account required")
    try:
        store = db["store"].find_one({"_id": to_object_id(payload["store_id"], "store")})
    except ValidationError:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store
