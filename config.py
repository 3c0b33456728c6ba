import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24))
ADMIN_EMAILS = {
    e.strip().lower() for e in os.getenv("ADMIN_EMAIL", "").split(",") if e.strip()
}

# MercadoPago
MERCADOPAGO_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN", "")
MERCADOPAGO_PUBLIC_KEY = os.getenv("MERCADOPAGO_PUBLIC_KEY", "")
MERCADOPAGO_WEBHOOK_SECRET = os.getenv("MERCADOPAGO_WEBHOOK_SECRET", "")
CURRENCY_ID = os.getenv("CURRENCY_ID", "ARS")
PREFERENCE_EXPIRATION_MINUTES = int(os.getenv("PREFERENCE_EXPIRATION_MINUTES", 30))
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", 15))

# Public URLs used for gateway redirects and notifications
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")
PUBLIC_API_URL = os.getenv("PUBLIC_API_URL", "").rstrip("/")

# Seconds to wait before re-reading an order that was not found
ORDER_RETRY_DELAY = float(os.getenv("ORDER_RETRY_DELAY", 2))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
