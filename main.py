import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
import database
from auth import router as auth_router
from cart import router as cart_router
from catalog import router as catalog_router
from checkout import router as checkout_router
from favorites import router as favorites_router
from orders import router as orders_router
from payments import router as payments_router
from site_config import router as site_config_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Supplement Store API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(cart_router)
app.include_router(favorites_router)
app.include_router(site_config_router)
app.include_router(orders_router)
app.include_router(checkout_router)
app.include_router(payments_router)


@app.get("/")
def root():
    return {"message": "Supplement Store API is running"}


@app.get("/schema")
def get_schema():
    from schemas import Order, Product, ProductSection, SiteConfig, User
    return {
        "user": User.model_json_schema(),
        "product": Product.model_json_schema(),
        "product_section": ProductSection.model_json_schema(),
        "order": Order.model_json_schema(),
        "site_config": SiteConfig.model_json_schema(),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "payment_gateway": "✅ Configured" if config.MERCADOPAGO_ACCESS_TOKEN else "❌ Not Configured",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            try:
                collections = database.db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
                response["connection_status"] = "Connected"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
