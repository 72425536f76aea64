import hashlib
import logging
import os
import re
import smtplib
import time
from email.message import EmailMessage
from typing import Callable, Dict, List, Optional
from urllib.parse import quote_plus

import httpx

from errors import UpstreamError

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@bharatverse.in")

GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/search")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent"

UPSTREAM_RETRIES = int(os.getenv("UPSTREAM_RETRIES", "3"))
UPSTREAM_RETRY_DELAY = float(os.getenv("UPSTREAM_RETRY_DELAY", "1.0"))
UPSTREAM_TIMEOUT = 10.0

CATEGORY_COLORS = {
    "painting": "FF6B6B",
    "sculpture": "4ECDC4",
    "pottery": "D4A574",
    "textile": "FF8E53",
    "accessories": "A8E6CF",
    "lighting": "FFE66D",
    "wellness": "88D8B0",
    "electronics": "95A5A6",
}
DEFAULT_COLOR = "6C5CE7"


def with_retries(label: str, fn: Callable, *args, **kwargs):
    """Call `fn` up to UPSTREAM_RETRIES times with a fixed delay in between."""
    last_error = None
    for attempt in range(1, UPSTREAM_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            last_error = e
            logger.warning("%s attempt %s/%s failed: %s", label, attempt, UPSTREAM_RETRIES, e)
            if attempt < UPSTREAM_RETRIES:
                time.sleep(UPSTREAM_RETRY_DELAY)
    raise UpstreamError(f"{label} unavailable: {last_error}")


def best_effort(warnings: List[str], label: str, fn: Callable, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except UpstreamError as e:
        logger.warning("%s skipped: %s", label, e.message)
        warnings.append(f"{label} failed: {e.message}")
        return None


# ----------------------- Email -----------------------
def send_email(to: Optional[str], subject: str, body: str) -> bool:
    if not to:
        return False
    if not SMTP_HOST:
        logger.info("SMTP not configured, not sending '%s' to %s", subject, to)
        return False
    msg = EmailMessage()
    msg["From"] = MAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body)
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=UPSTREAM_TIMEOUT) as smtp:
            smtp.starttls()
            if SMTP_USER:
                smtp.login(SMTP_USER, SMTP_PASSWORD or "")
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise UpstreamError(f"could not send email to {to}: {e}")
    logger.info("sent '%s' to %s", subject, to)
    return True


def notify_store_reviewed(store: Dict, decision: str, note: Optional[str] = None) -> bool:
    if decision == "approved":
        subject = f"Your store {store['name']} is live on BharatVerse"
        body = f"Congratulations! {store['name']} (@{store['username']}) has been approved. You can now list products."
    else:
        subject = f"Update on your store application: {store['name']}"
        body = f"Unfortunately {store['name']} was not approved."
        if note:
            body += f"\n\nReason: {note}"
    return send_email(store.get("email"), subject, body)


def notify_order_created(order: Dict, customer_email: Optional[str], stores: List[Dict]) -> bool:
    ref = str(order["_id"])[-8:]
    lines = "\n".join(f"- {i['name']} x{i['quantity']} @ {i['price']}" for i in order["items"])
    sent = send_email(customer_email, f"Order Confirmation - #{ref}",
                      f"Thank you for your order!\n\n{lines}\n\nTotal: {order['total']}")
    for store in stores:
        own = [i for i in order["items"] if i["store_id"] == str(store["_id"])]
        summary = "\n".join(f"- {i['name']} x{i['quantity']}" for i in own)
        send_email(store.get("email"), f"New order #{ref}", f"You have a new order:\n\n{summary}")
    return sent


def notify_order_status(order: Dict, customer_email: Optional[str], store: Dict, status: str) -> bool:
    ref = str(order["_id"])[-8:]
    return send_email(customer_email, f"Order #{ref} is now {status}",
                      f"{store['name']} updated your order #{ref} to '{status}'.")


def notify_contact_received(form: Dict) -> bool:
    return send_email(form.get("email"), f"We received your message: {form['subject']}",
                      f"Hi {form['name']},\n\nThanks for contacting BharatVerse. Our team will get back to you soon.")


def notify_contact_reply(form: Dict) -> bool:
    return send_email(form.get("email"), f"Re: {form['subject']}",
                      f"Hi {form['name']},\n\n{form['admin_reply']}\n\n{form.get('replied_by') or 'BharatVerse'}")


# ----------------------- Geocoding -----------------------
def _lookup(address: str) -> Optional[Dict]:
    res = httpx.get(
        GEOCODER_URL,
        params={"q": address, "format": "json", "limit": 1},
        headers={"User-Agent": "bharatverse-marketplace"},
        timeout=UPSTREAM_TIMEOUT,
    )
    res.raise_for_status()
    results = res.json()
    if not results:
        return None
    return {"lat": float(results[0]["lat"]), "lon": float(results[0]["lon"]),
            "display_name": results[0].get("display_name")}


def geocode(address: Optional[str]) -> Optional[Dict]:
    if not address:
        return None
    return with_retries("geocoding", _lookup, address)


# ----------------------- AI copywriting -----------------------
def _generate(prompt: str) -> str:
    res = httpx.post(
        GEMINI_URL,
        params={"key": GEMINI_API_KEY},
        json={"contents": [{"parts": [{"text": prompt}]}]},
        timeout=UPSTREAM_TIMEOUT,
    )
    res.raise_for_status()
    text = res.json()["candidates"][0]["content"]["parts"][0]["text"]
    text = re.sub(r"```[a-z]*", "", text).strip()
    if not text:
        raise ValueError("empty completion")
    return text


def fallback_description(name: str, category: Optional[str], description: Optional[str] = None) -> str:
    base = (description or "").strip()
    intro = f"{name} is a carefully made {category.lower() if category else 'product'} from an independent Indian seller."
    return f"{intro} {base}".strip()


def improve_description(name: str, description: Optional[str], category: Optional[str] = None) -> str:
    if not GEMINI_API_KEY:
        raise UpstreamError("AI service is not configured")
    prompt = (
        "Rewrite this product description for an Indian marketplace listing in 100-150 words. "
        "Highlight key features and benefits. Reply with the description only.\n\n"
        f"Product: {name}\nCategory: {category or 'General'}\nCurrent description: {description or '-'}"
    )
    return with_retries("AI description", _generate, prompt)


# ----------------------- Images -----------------------
def placeholder_image_url(name: str, category: Optional[str] = None) -> Dict[str, str]:
    """Deterministic stand-in image for a product, same inputs give the same URL."""
    key = (category or "").lower()
    clean = re.sub(r"[^A-Za-z0-9\s]", "", name).strip()[:25]
    if len(name) > 20 or key in ("electronics", "gaming"):
        seed = re.sub(r"[^a-z0-9]", "", name.lower())[:10] or hashlib.md5(name.encode()).hexdigest()[:10]
        return {"url": f"https://picsum.photos/seed/{seed}/400/400", "strategy": "picsum-product"}
    color = CATEGORY_COLORS.get(key, DEFAULT_COLOR)
    return {
        "url": f"https://via.placeholder.com/400x400/{color}/FFFFFF?text={quote_plus(clean or 'Product')}",
        "strategy": "placeholder",
    }
