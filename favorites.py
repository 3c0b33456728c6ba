from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

import database
from auth import AuthUser, get_current_user
from catalog import get_product_or_404
from schemas import Favorite

router = APIRouter()


class FavoriteRequest(BaseModel):
    product_id: str


def find_favorite(user_id: str, product_id: str):
    return database.get_db()["favorites"].find_one({"user_id": user_id, "product_id": product_id})


@router.get("/api/favorites")
def list_favorites(user: AuthUser = Depends(get_current_user)):
    favorites = database.get_documents("favorites", {"user_id": user.id}, sort=[("added_at", -1)])
    product_ids = [f["product_id"] for f in favorites]
    products = {p["id"]: p for p in database.get_documents("products", {"_id": {"$in": product_ids}})}
    out = []
    for fav in favorites:
        product = products.get(fav["product_id"])
        if product is None:
            continue
        fav["product"] = product
        out.append(fav)
    return out


@router.post("/api/favorites")
def add_favorite(body: FavoriteRequest, user: AuthUser = Depends(get_current_user)):
    get_product_or_404(body.product_id)
    if find_favorite(user.id, body.product_id):
        raise HTTPException(status_code=400, detail="Product already in favorites")
    fav = Favorite(product_id=body.product_id, user_id=user.id, added_at=database.now())
    fav_id = database.create_document("favorites", fav)
    return {"id": fav_id, **fav.model_dump()}


@router.get("/api/favorites/{product_id}")
def is_favorite(product_id: str, user: AuthUser = Depends(get_current_user)):
    return {"product_id": product_id, "favorite": find_favorite(user.id, product_id) is not None}


@router.delete("/api/favorites/{product_id}")
def remove_favorite(product_id: str, user: AuthUser = Depends(get_current_user)):
    res = database.get_db()["favorites"].delete_many({"user_id": user.id, "product_id": product_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Favorite not found")
    return {"deleted": True}
