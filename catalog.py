import re
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

import database
from auth import AuthUser, require_admin
from schemas import Product as ProductSchema, ProductSection as SectionSchema, SectionType

router = APIRouter()

SortKey = Literal["name", "price-low", "price-high", "newest"]

# Sale price when the product is on sale and has one, list price otherwise.
EFFECTIVE_PRICE = {
    "$cond": [
        {"$and": [{"$eq": ["$is_on_sale", True]}, {"$gt": [{"$ifNull": ["$sale_price", 0]}, 0]}]},
        "$sale_price",
        "$price",
    ]
}


def effective_price(product: dict) -> float:
    if product.get("is_on_sale") and product.get("sale_price"):
        return float(product["sale_price"])
    return float(product.get("price", 0))


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def build_product_query(
    search: Optional[str] = None,
    categories: Optional[List[str]] = None,
    brands: Optional[List[str]] = None,
    flavors: Optional[List[str]] = None,
    subcategories: Optional[List[str]] = None,
    on_sale: bool = False,
    combos: bool = False,
    featured: bool = False,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"brand": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if categories:
        query["category"] = {"$in": categories}
    if brands:
        query["brand"] = {"$in": brands}
    if flavors:
        query["flavor"] = {"$in": flavors}
    if subcategories:
        query["subcategory"] = {"$in": subcategories}
    if on_sale:
        query["is_on_sale"] = True
    if combos:
        query["is_combo"] = True
    if featured:
        query["is_featured"] = True
    return query


def search_products(
    query: Dict[str, Any],
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: SortKey = "name",
    page: int = 1,
    page_size: int = 24,
) -> Dict[str, Any]:
    """Filter, sort and page products inside the database."""
    price_match: Dict[str, Any] = {}
    if min_price is not None:
        price_match["$gte"] = min_price
    if max_price is not None:
        price_match["$lte"] = max_price

    if sort == "price-low":
        order = {"_effective_price": 1, "name": 1}
    elif sort == "price-high":
        order = {"_effective_price": -1, "name": 1}
    elif sort == "newest":
        order = {"created_at": -1}
    else:
        order = {"name": 1}

    pipeline: List[Dict[str, Any]] = [
        {"$match": query},
        {"$addFields": {"_effective_price": EFFECTIVE_PRICE}},
    ]
    if price_match:
        pipeline.append({"$match": {"_effective_price": price_match}})

    products = database.get_db()["products"]
    counted = list(products.aggregate(pipeline + [{"$count": "total"}]))
    total = counted[0]["total"] if counted else 0
    page_docs = products.aggregate(pipeline + [
        {"$sort": order},
        {"$skip": (page - 1) * page_size},
        {"$limit": page_size},
        {"$project": {"_effective_price": 0}},
    ])
    items = [database.to_dict(d) for d in page_docs]
    return {
        "items": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": max(1, -(-total // page_size)),
    }


def get_product_or_404(product_id: str) -> dict:
    doc = database.get_document("products", product_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    weight: Optional[str] = None
    flavor: Optional[str] = None
    flavors: Optional[List[str]] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    is_on_sale: Optional[bool] = None
    sale_price: Optional[float] = Field(None, ge=0)
    is_featured: Optional[bool] = None
    is_combo: Optional[bool] = None
    tags: Optional[List[str]] = None


class SectionUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    type: Optional[SectionType] = None
    products: Optional[List[str]] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


# Products

@router.get("/api/products")
def list_products(
    search: Optional[str] = None,
    category: Optional[List[str]] = Query(None),
    brand: Optional[List[str]] = Query(None),
    flavor: Optional[List[str]] = Query(None),
    subcategory: Optional[List[str]] = Query(None),
    offers: bool = False,
    combos: bool = False,
    featured: bool = False,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: SortKey = "name",
    page: int = Query(1, ge=1),
    page_size: int = Query(24, ge=1, le=100),
):
    query = build_product_query(search, category, brand, flavor, subcategory, offers, combos, featured)
    return search_products(query, min_price, max_price, sort, page, page_size)


@router.get("/api/products/filters")
def product_filters():
    products = database.get_db()["products"]
    return {
        "categories": sorted(v for v in products.distinct("category") if v),
        "brands": sorted(v for v in products.distinct("brand") if v),
        "subcategories": sorted(v for v in products.distinct("subcategory") if v),
        "flavors": sorted(v for v in products.distinct("flavor") if v),
    }


@router.get("/api/products/{product_id}")
def get_product(product_id: str):
    return get_product_or_404(product_id)


@router.post("/api/admin/products")
def create_product(body: ProductSchema, admin: AuthUser = Depends(require_admin)):
    product_id = database.create_document("products", body)
    return {"id": product_id}


@router.patch("/api/admin/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, admin: AuthUser = Depends(require_admin)):
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if not database.update_document("products", product_id, updates):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"updated": True}


@router.delete("/api/admin/products/{product_id}")
def delete_product(product_id: str, admin: AuthUser = Depends(require_admin)):
    if not database.delete_document("products", product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deleted": True}


# Sections

@router.get("/api/sections")
def list_active_sections():
    return database.get_documents("product_sections", {"is_active": True}, sort=[("sort_order", 1)])


@router.get("/api/sections/{section_id}/products")
def section_products(section_id: str):
    section = database.get_document("product_sections", section_id)
    if not section or not section.get("is_active"):
        raise HTTPException(status_code=404, detail="Section not found")
    found = {
        p["id"]: p
        for p in database.get_documents("products", {"_id": {"$in": section.get("products", [])}})
    }
    # keep the section's ordering, skip deleted products
    return [found[pid] for pid in section.get("products", []) if pid in found]


@router.get("/api/admin/sections")
def list_sections(admin: AuthUser = Depends(require_admin)):
    return database.get_documents("product_sections", sort=[("sort_order", 1)])


@router.post("/api/admin/sections")
def create_section(body: SectionSchema, admin: AuthUser = Depends(require_admin)):
    if not body.name.strip():
        raise HTTPException(status_code=400, detail="Name is required")
    body.slug = body.slug or slugify(body.name)
    section_id = database.create_document("product_sections", body)
    return {"id": section_id, "slug": body.slug}


@router.patch("/api/admin/sections/{section_id}")
def update_section(section_id: str, body: SectionUpdate, admin: AuthUser = Depends(require_admin)):
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "slug" in updates and not updates["slug"]:
        current = database.get_document("product_sections", section_id) or {}
        updates["slug"] = slugify(updates.get("name") or current.get("name", ""))
    if not database.update_document("product_sections", section_id, updates):
        raise HTTPException(status_code=404, detail="Section not found")
    return {"updated": True}


@router.delete("/api/admin/sections/{section_id}")
def delete_section(section_id: str, admin: AuthUser = Depends(require_admin)):
    if not database.delete_document("product_sections", section_id):
        raise HTTPException(status_code=404, detail="Section not found")
    return {"deleted": True}
