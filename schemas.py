"""
Database Schemas

MongoDB collection schemas as Pydantic models. These schemas are used for
data validation in the application and exposed by the /schema endpoint.

Collections:
- User -> "users"
- Product -> "products"
- ProductSection -> "product_sections"
- Cart -> "carts" (one document per user, keyed by user id)
- Favorite -> "favorites"
- Order -> "orders"
- SiteConfig -> "site_config" (single document "main")
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["customer", "admin"]
OrderStatus = Literal["processing", "shipped", "delivered", "cancelled"]
# Targets offered to admins when advancing an order. "cancelled" is filter-only.
AdminOrderStatus = Literal["processing", "shipped", "delivered"]
SectionType = Literal["category", "brand", "sale", "combo", "featured"]

PICKUP_SHIPPING_ID = "pickup"
BANK_TRANSFER = "bank-transfer"
MERCADOPAGO = "mercadopago"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    email: EmailStr = Field(..., description="Email address (lower-cased)")
    display_name: str = Field(..., description="Name shown in the store")
    password_hash: str = Field(..., description="Password hash (server-side)")
    role: Role = Field("customer", description="Role: customer | admin")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="List price")
    stock: int = Field(0, ge=0, description="Units in stock")
    category: str = Field(..., description="Product category")
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    weight: Optional[str] = Field(None, description="Presentation, e.g. 1kg")
    flavor: Optional[str] = Field(None, description="Primary flavor, used by catalog filters")
    flavors: List[str] = Field(default_factory=list, description="Selectable flavors")
    image: str = Field("", description="Main image URL")
    images: List[str] = Field(default_factory=list)
    is_on_sale: bool = False
    sale_price: Optional[float] = Field(None, ge=0)
    is_featured: bool = False
    is_combo: bool = False
    tags: List[str] = Field(default_factory=list)


class ProductSection(BaseModel):
    """
    Product sections shown on the storefront
    Collection name: "product_sections"
    """
    name: str = Field(..., min_length=1)
    slug: str = ""
    description: Optional[str] = None
    type: SectionType = "category"
    products: List[str] = Field(default_factory=list, description="Product ids")
    is_active: bool = True
    sort_order: int = 0


class CartItem(BaseModel):
    id: str = Field(..., description="Product id")
    name: str
    price: float = Field(..., ge=0, description="Unit price when added to the cart")
    quantity: int = Field(..., ge=1)
    image: str = ""
    selected_flavor: Optional[str] = None


class Cart(BaseModel):
    """
    Carts collection schema
    Collection name: "carts" (document id is the user id)
    """
    items: List[CartItem] = Field(default_factory=list)


class Favorite(BaseModel):
    """
    Favorites collection schema
    Collection name: "favorites"
    """
    product_id: str
    user_id: str
    added_at: datetime


class ShippingDetails(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "Argentina"


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    user_id: Optional[str] = Field(None, description="Owner user id, None for guests")
    user_email: str = Field(..., description="Contact email (lower-cased)")
    items: List[CartItem] = Field(..., description="Snapshot of the cart at checkout")
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    shipping_method: str
    payment_method: str
    payment_status: str = Field("pending", description="Gateway payment status")
    order_status: OrderStatus = "processing"
    shipping_details: ShippingDetails
    mercadopago_payment_id: Optional[str] = None
    mercadopago_preference_id: Optional[str] = None
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None


class ShippingOption(BaseModel):
    id: str
    name: str
    description: str = ""
    price: float = Field(0, ge=0)
    enabled: bool = True
    estimated_days: Optional[str] = None


class PaymentMethod(BaseModel):
    id: str
    name: str
    description: str = ""
    enabled: bool = True
    icon: Optional[str] = None


class BankDetails(BaseModel):
    bank_name: str = ""
    account_holder: str = ""
    cbu: str = ""
    alias: str = ""
    cuit: str = ""


class SiteConfig(BaseModel):
    """
    Store-wide settings
    Collection name: "site_config", single document "main"
    """
    shipping_options: List[ShippingOption] = Field(default_factory=list)
    payment_methods: List[PaymentMethod] = Field(default_factory=list)
    bank_details: BankDetails = Field(default_factory=BankDetails)
    store_address: str = ""
    store_phone: str = ""
    store_email: str = ""
    store_hours: str = ""
    whatsapp_number: str = ""
    version: int = Field(1, ge=1, description="Incremented on every write")
