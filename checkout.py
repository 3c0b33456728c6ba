import logging
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request
from pydantic import BaseModel, EmailStr, TypeAdapter, ValidationError

import config
import database
from auth import AuthUser, get_optional_user
from cart import cart_totals, clear_cart, load_cart
from payments import MercadoPagoClient, PaymentGatewayError, build_preference, get_gateway, verify_webhook_signature
from schemas import (
    BANK_TRANSFER,
    MERCADOPAGO,
    PICKUP_SHIPPING_ID,
    CartItem,
    Order,
    ShippingDetails,
    SiteConfig,
)
from site_config import enabled_payment_methods, enabled_shipping_options, get_site_config

logger = logging.getLogger(__name__)

router = APIRouter()

EMAIL_ADAPTER = TypeAdapter(EmailStr)

CONTACT_FIELDS = {"full_name": "Full name", "email": "Email", "phone": "Phone"}
ADDRESS_FIELDS = {
    "address": "Address",
    "city": "City",
    "state": "State",
    "postal_code": "Postal code",
    "country": "Country",
}


class CheckoutRequest(BaseModel):
    items: List[CartItem] = []
    shipping_option_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    shipping_details: ShippingDetails = ShippingDetails()


class PaymentReturn(BaseModel):
    payment_id: Optional[str] = None
    status: Optional[str] = None
    preference_id: Optional[str] = None


def validate_shipping_details(details: ShippingDetails, shipping_option_id: str) -> None:
    required = dict(CONTACT_FIELDS)
    if shipping_option_id != PICKUP_SHIPPING_ID:
        required.update(ADDRESS_FIELDS)
    missing = [label for field, label in required.items() if not getattr(details, field).strip()]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")
    try:
        EMAIL_ADAPTER.validate_python(details.email.strip())
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid email")


def whatsapp_link(number: str, order: dict) -> str:
    details = order["shipping_details"]
    message = (
        f"¡Hola! Soy {details['full_name']}. He realizado la orden #{order['id']}.\n\n"
        f"Detalles del pedido:\n"
        f"- Número de orden: {order['id']}\n"
        f"- Total: ${order['total_amount']:.2f}\n"
        f"- Email: {details['email']}\n"
        f"- Teléfono: {details['phone']}\n\n"
        f"Quisiera enviar el comprobante de transferencia."
    )
    digits = re.sub(r"\D", "", number)
    return f"https://wa.me/{digits}?text={quote(message)}"


def bank_transfer_instructions(site: SiteConfig, order: dict) -> Dict[str, Any]:
    return {
        "bank_details": site.bank_details.model_dump(),
        "store_phone": site.store_phone,
        "store_email": site.store_email,
        "whatsapp_url": whatsapp_link(site.whatsapp_number, order),
    }


def create_order(req: CheckoutRequest, user: Optional[AuthUser], gateway: MercadoPagoClient) -> Dict[str, Any]:
    items = req.items
    if not items and user is not None:
        items = load_cart(user.id)
    if not items:
        raise HTTPException(status_code=400, detail="Your cart is empty")
    if not req.shipping_option_id:
        raise HTTPException(status_code=400, detail="A shipping method must be selected")
    if not req.payment_method_id:
        raise HTTPException(status_code=400, detail="A payment method must be selected")

    site = get_site_config()
    option = next((o for o in enabled_shipping_options(site) if o.id == req.shipping_option_id), None)
    if option is None:
        raise HTTPException(status_code=400, detail="Unknown shipping method")
    if req.payment_method_id not in {m.id for m in enabled_payment_methods(site)}:
        raise HTTPException(status_code=400, detail="Unknown payment method")
    validate_shipping_details(req.shipping_details, option.id)

    details = req.shipping_details.model_copy(update={"email": req.shipping_details.email.strip().lower()})
    subtotal = cart_totals(items)["total_price"]
    order = Order(
        user_id=user.id if user else None,
        user_email=(user.email if user else details.email).lower(),
        items=items,
        subtotal=subtotal,
        shipping_cost=option.price,
        total_amount=round(subtotal + option.price, 2),
        shipping_method=option.id,
        payment_method=req.payment_method_id,
        shipping_details=details,
    )
    order_id = database.create_document("orders", order)
    order_doc = {"id": order_id, **order.model_dump()}
    logger.info("Created order %s (%s, %s)", order_id, order.payment_method, order.total_amount)

    if user is not None:
        clear_cart(user.id)

    result: Dict[str, Any] = {
        "order_id": order_id,
        "total_amount": order.total_amount,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "order_status": order.order_status,
    }
    if order.payment_method == BANK_TRANSFER:
        result["bank_transfer"] = bank_transfer_instructions(site, order_doc)
    elif order.payment_method == MERCADOPAGO:
        try:
            preference = gateway.create_preference(build_preference(order_doc))
        except PaymentGatewayError as exc:
            logger.warning("Order %s left pending, preference creation failed: %s", order_id, exc)
            raise HTTPException(status_code=502, detail="Could not create the payment preference")
        database.update_document("orders", order_id, {"mercadopago_preference_id": preference.get("id")})
        result["preference_id"] = preference.get("id")
        result["redirect_url"] = gateway.redirect_url(preference)
    return result


def fetch_order(order_id: str, retry_delay: Optional[float] = None) -> Optional[dict]:
    """Read an order, re-reading once after a short delay if it is not there yet."""
    order = database.get_document("orders", order_id)
    if order is None:
        delay = config.ORDER_RETRY_DELAY if retry_delay is None else retry_delay
        if delay > 0:
            time.sleep(delay)
        order = database.get_document("orders", order_id)
    return order


def get_visible_order(order_id: str, user: Optional[AuthUser]) -> dict:
    order = fetch_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    owner = order.get("user_id")
    # Guest orders are reachable by id alone; account orders need the owner or an admin.
    if owner is None:
        return order
    if user is None:
        raise HTTPException(status_code=401, detail="Sign in to view this order")
    if user.role != "admin" and owner != user.id:
        raise HTTPException(status_code=403, detail="You do not have access to this order")
    return order


def apply_payment(order: dict, payment: Dict[str, Any]) -> bool:
    """
    Record a gateway payment on its order.

    Writes only when the payment id or status differs from what is stored, so
    replayed confirmations and duplicate notifications are no-ops. An approved
    order is never downgraded by a different payment attempt.
    """
    payment_id = str(payment.get("id"))
    status = payment.get("status") or "pending"
    if order.get("mercadopago_payment_id") == payment_id and order.get("payment_status") == status:
        return False
    if (
        order.get("payment_status") == "approved"
        and order.get("mercadopago_payment_id") not in (None, payment_id)
        and status != "approved"
    ):
        logger.warning("Ignoring %s payment %s for already approved order %s", status, payment_id, order["id"])
        return False

    res = database.get_db()["orders"].update_one(
        {
            "_id": order["id"],
            "$or": [
                {"mercadopago_payment_id": {"$ne": payment_id}},
                {"payment_status": {"$ne": status}},
            ],
        },
        {"$set": {
            "payment_status": status,
            "mercadopago_payment_id": payment_id,
            "updated_at": database.now(),
        }},
    )
    if res.modified_count:
        logger.info("Order %s payment %s is now %s", order["id"], payment_id, status)
    return res.modified_count > 0


def lookup_payment(gateway: MercadoPagoClient, payment_id: str) -> Dict[str, Any]:
    try:
        return gateway.get_payment(payment_id)
    except PaymentGatewayError as exc:
        raise HTTPException(status_code=502, detail=f"Could not verify the payment: {exc}")


@router.post("/api/checkout")
def checkout(
    body: CheckoutRequest,
    user: Optional[AuthUser] = Depends(get_optional_user),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    return create_order(body, user, gateway)


@router.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Optional[AuthUser] = Depends(get_optional_user)):
    return get_visible_order(order_id, user)


@router.post("/api/orders/{order_id}/confirm-payment")
def confirm_payment(
    order_id: str,
    body: PaymentReturn,
    user: Optional[AuthUser] = Depends(get_optional_user),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    """
    Handle the buyer returning from the hosted checkout.

    The return URL's status is only a hint; the order is written solely from
    the gateway's own record of the payment.
    """
    order = get_visible_order(order_id, user)

    if body.payment_id and order.get("payment_method") == MERCADOPAGO:
        payment = lookup_payment(gateway, body.payment_id)
        if str(payment.get("external_reference")) != order_id:
            raise HTTPException(status_code=400, detail="Payment does not belong to this order")
        updated = apply_payment(order, payment)
        return {
            "order_id": order_id,
            "payment_status": payment.get("status"),
            "verified": True,
            "updated": updated,
        }

    return {
        "order_id": order_id,
        "payment_status": body.status or order.get("payment_status"),
        "verified": False,
        "updated": False,
    }


@router.post("/api/payments/webhook")
def payment_webhook(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    x_signature: Optional[str] = Header(None),
    x_request_id: Optional[str] = Header(None),
    gateway: MercadoPagoClient = Depends(get_gateway),
):
    if not config.MERCADOPAGO_WEBHOOK_SECRET:
        logger.warning("Webhook received but MERCADOPAGO_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=503, detail="Webhook secret not configured")

    data = payload.get("data") or {}
    data_id = str(request.query_params.get("data.id") or data.get("id") or "")
    if not data_id or not verify_webhook_signature(x_signature, x_request_id, data_id, config.MERCADOPAGO_WEBHOOK_SECRET):
        logger.warning("Rejected webhook with invalid signature for %r", data_id)
        raise HTTPException(status_code=401, detail="Invalid signature")

    kind = request.query_params.get("type") or payload.get("type")
    if kind != "payment":
        return {"received": True, "ignored": True}

    payment = lookup_payment(gateway, data_id)
    order_id = payment.get("external_reference")
    order = database.get_document("orders", str(order_id)) if order_id else None
    if order is None:
        logger.warning("Webhook payment %s references unknown order %r", data_id, order_id)
        return {"received": True, "ignored": True}

    return {"received": True, "order_id": order["id"], "updated": apply_payment(order, payment)}
