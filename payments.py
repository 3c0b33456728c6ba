"""
MercadoPago hosted checkout

Client for the two gateway calls the store needs (preference creation and
payment lookup), helpers to build a preference from an order and to verify
webhook signatures, and the ``POST /create-preference`` pass-through endpoint.
"""

import hashlib
import hmac
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import mercadopago
import requests
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from mercadopago.config import RequestOptions

import config
import database

logger = logging.getLogger(__name__)

router = APIRouter()


class PaymentGatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MercadoPagoClient:
    """Wraps the MercadoPago SDK calls the store needs behind one error type."""

    def __init__(
        self,
        access_token: str = config.MERCADOPAGO_ACCESS_TOKEN,
        public_key: str = config.MERCADOPAGO_PUBLIC_KEY,
        timeout: float = config.GATEWAY_TIMEOUT,
        sdk: Optional[mercadopago.SDK] = None,
    ):
        self.access_token = access_token
        self.public_key = public_key
        self.sdk = sdk or mercadopago.SDK(
            access_token or "", request_options=RequestOptions(connection_timeout=timeout)
        )

    def _call(self, action: str, call: Callable[..., Dict[str, Any]], *args) -> Dict[str, Any]:
        if not self.access_token:
            raise PaymentGatewayError("MercadoPago access token is not configured")
        try:
            result = call(*args)
        except requests.RequestException as exc:
            logger.error("MercadoPago %s failed: %s", action, exc)
            raise PaymentGatewayError(f"MercadoPago unreachable: {exc}") from exc
        status = result.get("status")
        body = result.get("response") or {}
        if not isinstance(status, int) or status >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("MercadoPago %s returned %s: %s", action, status, str(body)[:200])
            raise PaymentGatewayError(f"MercadoPago error {status}: {message or 'request failed'}", status)
        return body

    def create_preference(self, preference: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("create preference", self.sdk.preference().create, preference)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._call(f"get payment {payment_id}", self.sdk.payment().get, payment_id)

    def is_test_mode(self) -> bool:
        return self.public_key.startswith("TEST-")

    def redirect_url(self, preference: Dict[str, Any]) -> str:
        if self.is_test_mode():
            return preference.get("sandbox_init_point") or preference.get("init_point", "")
        return preference.get("init_point", "")


def get_gateway() -> MercadoPagoClient:
    return MercadoPagoClient()


def item_title(item: dict) -> str:
    if item.get("selected_flavor"):
        return f"{item['name']} - {item['selected_flavor']}"
    return item["name"]


def build_preference(order: dict) -> Dict[str, Any]:
    order_id = order["id"]
    details = order.get("shipping_details") or {}
    confirmation = f"{config.FRONTEND_URL}/order-confirmation/{order_id}"
    expires_at = database.now() + timedelta(minutes=config.PREFERENCE_EXPIRATION_MINUTES)

    payer: Dict[str, Any] = {
        "name": details.get("full_name") or order.get("user_email", ""),
        "email": details.get("email") or order.get("user_email", ""),
    }
    if details.get("phone"):
        payer["phone"] = {"number": details["phone"]}

    preference: Dict[str, Any] = {
        "items": [
            {
                "id": item["id"],
                "title": item_title(item),
                "quantity": item["quantity"],
                "unit_price": item["price"],
                "currency_id": config.CURRENCY_ID,
                "description": item["name"],
                "picture_url": item.get("image") or None,
            }
            for item in order["items"]
        ],
        "payer": payer,
        "back_urls": {
            "success": confirmation,
            "failure": f"{confirmation}?status=failed",
            "pending": f"{confirmation}?status=pending",
        },
        "auto_return": "approved",
        "external_reference": order_id,
        "expires": True,
        "expiration_date_to": expires_at.isoformat(timespec="milliseconds"),
    }
    if order.get("shipping_cost"):
        preference["shipments"] = {"cost": order["shipping_cost"], "mode": "not_specified"}
    if config.PUBLIC_API_URL:
        preference["notification_url"] = f"{config.PUBLIC_API_URL}/api/payments/webhook"
    return preference


def parse_signature_header(value: str) -> Dict[str, str]:
    parts = {}
    for chunk in value.split(","):
        key, sep, val = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = val.strip()
    return parts


def verify_webhook_signature(signature: Optional[str], request_id: Optional[str], data_id: str, secret: str) -> bool:
    """Check an ``x-signature`` header (``ts=...,v1=...``) against the shared secret."""
    if not signature or not secret:
        return False
    parts = parse_signature_header(signature)
    ts, v1 = parts.get("ts"), parts.get("v1")
    if not ts or not v1:
        return False
    manifest = f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)


def _valid_items(items: Any) -> bool:
    if not isinstance(items, list) or not items:
        return False

    def is_number(v):
        return isinstance(v, (int, float)) and not isinstance(v, bool)

    return all(
        isinstance(item, dict)
        and isinstance(item.get("title"), str)
        and is_number(item.get("unit_price"))
        and is_number(item.get("quantity"))
        for item in items
    )


@router.post("/create-preference")
def create_preference_proxy(
    payload: Dict[str, Any] = Body(...),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    items: List[Dict[str, Any]] = payload.get("items")
    payer = payload.get("payer") or {}
    logger.info("Preference request with %s items", len(items) if isinstance(items, list) else 0)

    if not _valid_items(items):
        return JSONResponse(status_code=400, content={"error": "Invalid items format"})
    if not isinstance(payer, dict) or not isinstance(payer.get("email"), str) or not payer["email"]:
        return JSONResponse(status_code=400, content={"error": "Invalid payer email"})

    try:
        preference = gateway.create_preference({
            "items": items,
            "payer": {"email": payer["email"]},
            "back_urls": {
                "success": f"{config.FRONTEND_URL}/order-confirmation",
                "failure": f"{config.FRONTEND_URL}/checkout",
                "pending": f"{config.FRONTEND_URL}/checkout",
            },
            "auto_return": "approved",
        })
    except PaymentGatewayError as exc:
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal error"})

    return {
        "id": preference.get("id"),
        "init_point": preference.get("init_point"),
        "sandbox_init_point": preference.get("sandbox_init_point"),
    }
