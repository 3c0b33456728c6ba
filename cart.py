from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import database
from auth import AuthUser, get_current_user
from catalog import effective_price, get_product_or_404
from schemas import Cart, CartItem

router = APIRouter()


def _same_line(item: CartItem, product_id: str, flavor: Optional[str]) -> bool:
    return item.id == product_id and item.selected_flavor == flavor


def load_cart(user_id: str) -> List[CartItem]:
    doc = database.get_document("carts", user_id)
    if not doc:
        return []
    return [CartItem(**i) for i in doc.get("items", [])]


def save_cart(user_id: str, items: List[CartItem]) -> None:
    database.set_document("carts", user_id, Cart(items=items))


def clear_cart(user_id: str) -> None:
    save_cart(user_id, [])


def add_item(items: List[CartItem], new: CartItem) -> List[CartItem]:
    """Merge a line into the cart; lines are keyed by product id and flavor."""
    merged = [i.model_copy() for i in items]
    for item in merged:
        if _same_line(item, new.id, new.selected_flavor):
            item.quantity += new.quantity
            return merged
    merged.append(new)
    return merged


def remove_item(items: List[CartItem], product_id: str, flavor: Optional[str]) -> List[CartItem]:
    return [i for i in items if not _same_line(i, product_id, flavor)]


def update_quantity(items: List[CartItem], product_id: str, quantity: int, flavor: Optional[str]) -> List[CartItem]:
    if quantity <= 0:
        return remove_item(items, product_id, flavor)
    return [
        i.model_copy(update={"quantity": quantity}) if _same_line(i, product_id, flavor) else i
        for i in items
    ]


def cart_totals(items: List[CartItem]) -> dict:
    return {
        "total_items": sum(i.quantity for i in items),
        "total_price": round(sum(i.price * i.quantity for i in items), 2),
    }


def cart_response(items: List[CartItem]) -> dict:
    return {"items": [i.model_dump() for i in items], **cart_totals(items)}


class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    selected_flavor: Optional[str] = None


class QuantityUpdate(BaseModel):
    product_id: str
    quantity: int
    selected_flavor: Optional[str] = None


@router.get("/api/cart")
def get_cart(user: AuthUser = Depends(get_current_user)):
    return cart_response(load_cart(user.id))


@router.post("/api/cart/items")
def add_to_cart(body: AddToCartRequest, user: AuthUser = Depends(get_current_user)):
    product = get_product_or_404(body.product_id)
    flavors = product.get("flavors") or []
    if body.selected_flavor and flavors and body.selected_flavor not in flavors:
        raise HTTPException(status_code=400, detail="Invalid flavor")
    line = CartItem(
        id=product["id"],
        name=product["name"],
        price=effective_price(product),
        quantity=body.quantity,
        image=product.get("image") or "",
        selected_flavor=body.selected_flavor,
    )
    items = add_item(load_cart(user.id), line)
    save_cart(user.id, items)
    return cart_response(items)


@router.patch("/api/cart/items")
def change_quantity(body: QuantityUpdate, user: AuthUser = Depends(get_current_user)):
    items = update_quantity(load_cart(user.id), body.product_id, body.quantity, body.selected_flavor)
    save_cart(user.id, items)
    return cart_response(items)


@router.delete("/api/cart/items/{product_id}")
def remove_from_cart(product_id: str, selected_flavor: Optional[str] = None, user: AuthUser = Depends(get_current_user)):
    items = remove_item(load_cart(user.id), product_id, selected_flavor)
    save_cart(user.id, items)
    return cart_response(items)


@router.put("/api/cart")
def replace_cart(body: Cart, user: AuthUser = Depends(get_current_user)):
    # Whole-cart overwrite; concurrent tabs are last write wins.
    save_cart(user.id, body.items)
    return cart_response(body.items)


@router.delete("/api/cart")
def empty_cart(user: AuthUser = Depends(get_current_user)):
    clear_cart(user.id)
    return cart_response([])
