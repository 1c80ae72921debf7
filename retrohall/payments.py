from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, TypedDict
from urllib.parse import quote
from fastapi import HTTPException
import httpx
import time
import uuid
import hmac
import hashlib
import base64
import json

from loguru import logger

from . import config


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class LineItem(TypedDict, total=False):
    name: str
    description: Optional[str]
    image_url: Optional[str]
    unit_amount: int  # cents
    quantity: int


class CreateSessionResult(TypedDict):
    checkout_session_id: str
    redirect_url: str


def return_url(base: str, order_id: str, result: str) -> str:
    # {CHECKOUT_SESSION_ID} is substituted by the provider
    return (
        f"{base}?order_id={quote(order_id)}&result={result}"
        "&session_id={CHECKOUT_SESSION_ID}"
    )


class PaymentAdapter(ABC):
    """Hosted checkout provider.

    Both implementations speak Stripe-shaped webhook events::

        {"id": "evt_..", "type": "checkout.session.completed",
         "data": {"object": {"id": <session id>,
                             "payment_intent": "pi_..",
                             "metadata": {"order_id": .., "user_id": ..}}}}
    """
    name = "abstract"

    @abstractmethod
    async def create_session(
        self, http: httpx.AsyncClient, order_id: str, user_id: str,
        line_items: List[LineItem],
    ) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "completed" | "expired" | anything else is acknowledged and ignored
    def event_kind(self, event: dict) -> str:
        return (event.get("type") or "").split(".")[-1]

    # (checkout_session_id, idempotency key)
    def event_ids(self, event: dict) -> Tuple[str, Optional[str]]:
        obj = _event_object(event)
        return obj.get("id") or "", event.get("id")

    def event_order_id(self, event: dict) -> Optional[str]:
        return (_event_object(event).get("metadata") or {}).get("order_id")

    def event_payment_intent(self, event: dict) -> Optional[str]:
        pi = _event_object(event).get("payment_intent")
        return pi if isinstance(pi, str) else None


def _event_object(event: dict) -> dict:
    return ((event.get("data") or {}).get("object")) or {}


def _parse_json(payload: bytes) -> dict:
    try:
        event = json.loads(payload.decode())
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return event


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    name = "mock"

    def __init__(
        self,
        secret: str = config.MOCK_SECRET,
        webhook_url: str = config.MOCK_WEBHOOK_URL,
    ) -> None:
        self.secret = secret
        self.webhook_url = webhook_url

    async def create_session(
        self, http: httpx.AsyncClient, order_id: str, user_id: str,
        line_items: List[LineItem],
    ) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        return {
            "checkout_session_id": psid,
            "redirect_url": f"/mockpay/{psid}",
        }

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def build_event(
        self, kind: str, psid: str, order_id: str, user_id: str
    ) -> dict:
        return {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": f"checkout.session.{kind}",
            "created": int(time.time()),
            "data": {"object": {
                "id": psid,
                "payment_intent": (
                    f"pi_mock_{uuid.uuid4().hex[:16]}"
                    if kind == "completed" else None
                ),
                "metadata": {"order_id": order_id, "user_id": user_id},
            }},
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        expected = self.sign(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise HTTPException(status_code=400, detail="Invalid signature")
        return _parse_json(payload)


# ----------------------------
# Stripe Checkout implementation
# ----------------------------
class StripeCheckout(PaymentAdapter):
    name = "stripe"

    def __init__(
        self,
        api_key: str = config.STRIPE_API_KEY,
        webhook_secret: str = config.STRIPE_WEBHOOK_SIGNING_SECRET,
        api_url: str = config.STRIPE_API_URL,
        currency: str = config.CHECKOUT_CURRENCY,
        tolerance: int = config.STRIPE_TOLERANCE_SECONDS,
    ) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_url = api_url.rstrip("/")
        self.currency = currency
        self.tolerance = tolerance

    def session_form(
        self, order_id: str, user_id: str, line_items: List[LineItem]
    ) -> dict:
        form = {
            "mode": "payment",
            "metadata[order_id]": order_id,
            "metadata[user_id]": user_id,
            "success_url": return_url(
                config.STRIPE_SUCCESS_URL, order_id, "success"
            ),
            "cancel_url": return_url(
                config.STRIPE_CANCEL_URL, order_id, "cancel"
            ),
        }
        for i, it in enumerate(line_items):
            p = f"line_items[{i}]"
            form[f"{p}[quantity]"] = str(it["quantity"])
            form[f"{p}[price_data][currency]"] = self.currency
            form[f"{p}[price_data][unit_amount]"] = str(it["unit_amount"])
            form[f"{p}[price_data][product_data][name]"] = it["name"]
            if it.get("description"):
                form[f"{p}[price_data][product_data][description]"] = (
                    it["description"]
                )
            if it.get("image_url"):
                form[f"{p}[price_data][product_data][images][0]"] = (
                    it["image_url"]
                )
        return form

    async def create_session(
        self, http: httpx.AsyncClient, order_id: str, user_id: str,
        line_items: List[LineItem],
    ) -> CreateSessionResult:
        if not self.api_key:
            raise HTTPException(502, detail="Payment provider not configured")
        try:
            r = await http.post(
                f"{self.api_url}/v1/checkout/sessions",
                data=self.session_form(order_id, user_id, line_items),
                auth=(self.api_key, ""),
            )
        except httpx.HTTPError as e:
            logger.error("stripe checkout request failed: {}", e)
            raise HTTPException(502, detail="Payment provider unreachable")
        try:
            body = r.json() if r.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if r.status_code >= 400:
            err = body.get("error")
            msg = (err.get("message") if isinstance(err, dict) else None) \
                or "Payment provider error"
            logger.error(
                "stripe checkout rejected: {} {}", r.status_code,
                msg if body else r.text[:200],
            )
            raise HTTPException(502, detail=msg)
        if not body.get("id") or not body.get("url"):
            logger.error(
                "stripe checkout reply missing id/url: {}", r.text[:200]
            )
            raise HTTPException(502, detail="Payment provider error")
        return {
            "checkout_session_id": body["id"],
            "redirect_url": body["url"],
        }

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        header = headers.get("stripe-signature") or ""
        ts = None
        sigs = []
        for part in header.split(","):
            k, _, v = part.strip().partition("=")
            if k == "t":
                ts = v
            elif k == "v1":
                sigs.append(v)
        if not ts or not sigs or not self.webhook_secret:
            raise HTTPException(status_code=400, detail="Invalid signature")

        signed = ts.encode() + b"." + payload
        expected = hmac.new(
            self.webhook_secret.encode(), signed, hashlib.sha256
        ).hexdigest()
        if not any(hmac.compare_digest(expected, s) for s in sigs):
            raise HTTPException(status_code=400, detail="Invalid signature")
        try:
            age = abs(time.time() - int(ts))
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid signature")
        if age > self.tolerance:
            raise HTTPException(status_code=400, detail="Signature expired")
        return _parse_json(payload)


def new_adapter(backend: str = config.PAYMENT_BACKEND) -> PaymentAdapter:
    if backend == "stripe":
        return StripeCheckout()
    return MockPay()
