import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import database
from auth import AuthUser, require_admin
from schemas import BankDetails, PaymentMethod, ShippingOption, SiteConfig

logger = logging.getLogger(__name__)

router = APIRouter()

CONFIG_ID = "main"


def default_config() -> SiteConfig:
    return SiteConfig(
        shipping_options=[
            ShippingOption(
                id="pickup",
                name="Retiro en Local",
                description="Retira tu pedido en nuestro local",
                price=0,
                estimated_days="Inmediato",
            ),
            ShippingOption(
                id="delivery",
                name="Envío a Domicilio",
                description="Envío a tu dirección",
                price=0,
                estimated_days="1-3 días hábiles",
            ),
        ],
        payment_methods=[
            PaymentMethod(
                id="bank-transfer",
                name="Transferencia Bancaria",
                description="Paga mediante transferencia bancaria",
                icon="bank",
            ),
            PaymentMethod(
                id="mercadopago",
                name="MercadoPago",
                description="Paga con tarjeta, efectivo o transferencia",
                icon="mercadopago",
            ),
        ],
        bank_details=BankDetails(
            bank_name="Banco de la Nación Argentina",
            account_holder="Suplementos S.R.L.",
            cbu="0110012345678901234567",
            alias="SUPLEMENTOS.STORE",
            cuit="30-12345678-9",
        ),
        store_address="Nazarre 3584, C1417 CABA",
        store_phone="+54 11 1234-5678",
        store_email="info@suplementos.store",
        store_hours="Lunes a Viernes 9:00 - 18:00, Sábados 9:00 - 13:00",
        whatsapp_number="+541139193041",
    )


def get_site_config() -> SiteConfig:
    """Return the store settings, seeding the defaults on first read."""
    collection = database.get_db()["site_config"]
    doc = collection.find_one({"_id": CONFIG_ID})
    if doc is None:
        config = default_config()
        seed = {**config.model_dump(), "updated_at": database.now()}
        # Another request may have seeded it first; keep whichever landed.
        collection.update_one({"_id": CONFIG_ID}, {"$setOnInsert": seed}, upsert=True)
        doc = collection.find_one({"_id": CONFIG_ID})
    return SiteConfig(**{k: v for k, v in doc.items() if k not in ("_id", "updated_at")})


def write_site_config(updates: dict, expected_version: int) -> SiteConfig:
    """Apply updates only if nobody else wrote since expected_version was read."""
    get_site_config()
    res = database.get_db()["site_config"].update_one(
        {"_id": CONFIG_ID, "version": expected_version},
        {"$set": {**updates, "updated_at": database.now()}, "$inc": {"version": 1}},
    )
    if res.matched_count == 0:
        logger.warning("Rejected site config write against stale version %s", expected_version)
        raise HTTPException(status_code=409, detail="Site configuration was modified by someone else, reload and retry")
    return get_site_config()


def enabled_shipping_options(config: SiteConfig) -> List[ShippingOption]:
    return [o for o in config.shipping_options if o.enabled]


def enabled_payment_methods(config: SiteConfig) -> List[PaymentMethod]:
    return [m for m in config.payment_methods if m.enabled]


class ShippingUpdate(BaseModel):
    expected_version: int = Field(..., ge=1)
    shipping_options: List[ShippingOption]
    store_address: Optional[str] = None
    store_phone: Optional[str] = None
    store_email: Optional[str] = None
    store_hours: Optional[str] = None
    whatsapp_number: Optional[str] = None
    bank_details: Optional[BankDetails] = None
    payment_methods: Optional[List[PaymentMethod]] = None


class PaymentMethodsUpdate(BaseModel):
    expected_version: int = Field(..., ge=1)
    payment_methods: List[PaymentMethod]


@router.get("/api/site-config")
def read_site_config():
    return get_site_config()


@router.put("/api/admin/site-config/shipping")
def update_shipping_options(body: ShippingUpdate, admin: AuthUser = Depends(require_admin)):
    # Blank store fields keep their current value.
    updates = {
        k: v
        for k, v in body.model_dump(exclude={"expected_version"}).items()
        if v not in (None, "")
    }
    config = write_site_config(updates, body.expected_version)
    logger.info("Admin %s updated shipping settings (version %s)", admin.id, config.version)
    return config


@router.put("/api/admin/site-config/payment-methods")
def update_payment_methods(body: PaymentMethodsUpdate, admin: AuthUser = Depends(require_admin)):
    updates = {"payment_methods": [m.model_dump() for m in body.payment_methods]}
    config = write_site_config(updates, body.expected_version)
    logger.info("Admin %s updated payment methods (version %s)", admin.id, config.version)
    return config
