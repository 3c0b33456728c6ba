import logging
import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field

import database
from auth import AuthUser, get_current_user, require_admin
from schemas import AdminOrderStatus, OrderStatus

logger = logging.getLogger(__name__)

router = APIRouter()

ORDERS_PER_PAGE = 10
CUSTOMERS_PER_PAGE = 10
RECENT_ORDERS = 5

# Users without a role field count as customers.
CUSTOMER_QUERY = {"$or": [{"role": "customer"}, {"role": {"$exists": False}}]}


class StatusUpdate(BaseModel):
    status: AdminOrderStatus
    tracking_number: Optional[str] = None


class TrackRequest(BaseModel):
    order_number: str = Field(..., min_length=1)
    email: EmailStr


def page_of(collection: str, query: Dict[str, Any], page: int, per_page: int) -> Dict[str, Any]:
    total = database.count_documents(collection, query)
    items = database.get_documents(
        collection, query, limit=per_page, sort=[("created_at", -1)], skip=(page - 1) * per_page
    )
    return {
        "items": items,
        "total": total,
        "page": page,
        "total_pages": max(1, -(-total // per_page)),
    }


def admin_order_query(status: Optional[str], search: Optional[str]) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if status:
        query["order_status"] = status
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [
            {"_id": pattern},
            {"user_email": pattern},
            {"shipping_details.full_name": pattern},
        ]
    return query


# Customer

@router.get("/api/account/orders")
def my_orders(user: AuthUser = Depends(get_current_user)):
    return database.get_documents("orders", {"user_id": user.id}, limit=50, sort=[("created_at", -1)])


@router.post("/api/orders/track")
def track_order(body: TrackRequest):
    number = body.order_number.strip().lower()
    if not number:
        raise HTTPException(status_code=400, detail="Order number is required")
    email = body.email.lower()
    candidates = database.get_documents(
        "orders", {"$or": [{"user_email": email}, {"shipping_details.email": email}]}
    )
    for order in candidates:
        order_id = order["id"].lower()
        if order_id == number or number in order_id:
            return order
    raise HTTPException(status_code=404, detail="No order found for that order number and email")


# Admin

@router.get("/api/admin/orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    admin: AuthUser = Depends(require_admin),
):
    return page_of("orders", admin_order_query(status, search), page, ORDERS_PER_PAGE)


@router.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin: AuthUser = Depends(require_admin)):
    order = database.get_document("orders", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.patch("/api/admin/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdate, admin: AuthUser = Depends(require_admin)):
    order = database.get_document("orders", order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order does not exist or was deleted")

    updates: Dict[str, Any] = {"order_status": body.status}
    if body.status == "shipped" and not order.get("shipped_at"):
        updates["shipped_at"] = database.now()
    if body.status == "delivered" and not order.get("delivered_at"):
        updates["delivered_at"] = database.now()
    if body.tracking_number:
        updates["tracking_number"] = body.tracking_number

    database.update_document("orders", order_id, updates)
    logger.info("Admin %s moved order %s from %s to %s", admin.id, order_id, order.get("order_status"), body.status)
    return {"id": order_id, "order_status": body.status}


@router.get("/api/admin/customers")
def list_customers(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    admin: AuthUser = Depends(require_admin),
):
    query: Dict[str, Any] = dict(CUSTOMER_QUERY)
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query = {"$and": [query, {"$or": [{"display_name": pattern}, {"email": pattern}]}]}

    result = page_of("users", query, page, CUSTOMERS_PER_PAGE)
    ids = [u["id"] for u in result["items"]]
    stats = {
        row["_id"]: row
        for row in database.get_db()["orders"].aggregate([
            {"$match": {"user_id": {"$in": ids}}},
            {"$group": {"_id": "$user_id", "count": {"$sum": 1}, "spent": {"$sum": "$total_amount"}}},
        ])
    }
    customers = []
    for user in result["items"]:
        user.pop("password_hash", None)
        row = stats.get(user["id"], {})
        user["order_count"] = row.get("count", 0)
        user["total_spent"] = round(row.get("spent", 0), 2)
        customers.append(user)
    result["items"] = customers
    return result


@router.get("/api/admin/dashboard")
def dashboard(admin: AuthUser = Depends(require_admin)):
    db = database.get_db()
    by_status = {
        row["_id"]: row
        for row in db["orders"].aggregate([
            {"$group": {"_id": "$order_status", "count": {"$sum": 1}, "revenue": {"$sum": "$total_amount"}}},
        ])
    }
    recent = database.get_documents("orders", limit=RECENT_ORDERS, sort=[("created_at", -1)])
    return {
        "total_orders": sum(r["count"] for r in by_status.values()),
        "total_products": db["products"].count_documents({}),
        "total_customers": db["users"].count_documents(CUSTOMER_QUERY),
        "total_revenue": round(sum(r["revenue"] for r in by_status.values()), 2),
        "processing_orders": by_status.get("processing", {}).get("count", 0),
        "shipped_orders": by_status.get("shipped", {}).get("count", 0),
        "delivered_orders": by_status.get("delivered", {}).get("count", 0),
        "recent_orders": [
            {k: o.get(k) for k in ("id", "user_email", "total_amount", "order_status", "payment_status", "created_at")}
            for o in recent
        ],
    }
