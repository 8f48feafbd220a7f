"""
Database Schemas for Marketplace

Each Pydantic model represents a collection in MongoDB. The collection name is the lowercase of the class name.

Collections:
- user
- seller
- sellerdetails
- product
- cart
- order
- review
- banner
- homepagesection
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

UserRole = Literal["customer", "vendor", "admin", "seller"]
ProductStatus = Literal["draft", "active", "inactive", "archived"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded", "partially_refunded"]
PaymentMethod = Literal["credit_card", "debit_card", "paypal", "stripe", "cash_on_delivery"]
ReviewStatus = Literal["pending", "approved", "rejected"]
ReturnReason = Literal["defective", "wrong_item", "not_as_described", "changed_mind", "other"]
DeliveryOption = Literal["instant", "next_day", "standard"]


# Shared sub-documents

class GeoPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="[longitude, latitude]")

    @field_validator("coordinates")
    @classmethod
    def check_range(cls, v: List[float]) -> List[float]:
        if len(v) != 2 or not (-180 <= v[0] <= 180) or not (-90 <= v[1] <= 90):
            raise ValueError(
                "Invalid coordinates. Longitude must be between -180 and 180, latitude between -90 and 90."
            )
        return v


class Image(BaseModel):
    public_id: str
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Address(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "US"


class SellerAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    country: str = "India"


# Accounts

class User(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, description="Full name")
    email: str = Field(..., description="Email address, stored lowercase")
    password: str = Field(..., description="bcrypt hash")
    role: UserRole = Field("customer", description="Account role")
    avatar: Optional[dict] = Field(None, description="{public_id, url}")
    is_suspended: bool = False
    refresh_tokens: List[str] = Field(default_factory=list, description="Most recent refresh tokens")
    last_login: Optional[datetime] = None
    vendor_profile: dict = Field(default_factory=dict, description="Business details for vendors")
    shipping_addresses: List[dict] = Field(default_factory=list)
    preferences: dict = Field(default_factory=lambda: {
        "email_notifications": True,
        "sms_notifications": False,
        "newsletter": True,
        "currency": "USD",
        "language": "en",
    })
    wishlist: List[str] = Field(default_factory=list, description="Product ids")
    payment_methods: List[dict] = Field(default_factory=list, description="Saved payment method references")


class Seller(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., description="Unique email, stored lowercase")
    phone: str = Field(..., pattern=r"^\+?[1-9]\d{0,15}$")
    password: str = Field(..., description="bcrypt hash")
    store_name: str = Field(..., min_length=1, max_length=100)
    store_description: Optional[str] = Field(None, max_length=500)
    address: SellerAddress
    geo: GeoPoint
    service_radius_km: float = Field(5, ge=1, le=100)
    is_approved: bool = False
    is_suspended: bool = False
    avatar: Optional[dict] = None
    refresh_tokens: List[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    metrics: dict = Field(default_factory=lambda: {
        "total_orders": 0, "total_sales": 0, "average_rating": 0, "total_reviews": 0,
    })
    business_hours: dict = Field(default_factory=dict)
    payment_settings: dict = Field(default_factory=dict)


class Sellerdetails(BaseModel):
    user_id: str = Field(..., description="Owning user id")
    seller_name: str
    phone: Optional[str] = None
    address: dict = Field(default_factory=dict)
    location: Optional[GeoPoint] = None
    pincode: Optional[str] = None
    gst_number: Optional[str] = None


# Catalog

class Inventory(BaseModel):
    track_quantity: bool = True
    quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(10, ge=0)
    allow_backorder: bool = False


class DeliveryOptions(BaseModel):
    instant: bool = False
    next_day: bool = False
    standard: bool = True


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    description: str = Field(..., min_length=1, max_length=2000)
    short_description: Optional[str] = Field(None, max_length=200)
    price: float = Field(..., ge=0, description="Unit price")
    compare_price: Optional[float] = Field(None, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    images: List[Image] = Field(default_factory=list)
    inventory: Inventory = Field(default_factory=Inventory)
    status: ProductStatus = "draft"
    featured: bool = False
    vendor_id: Optional[str] = Field(None, description="Owning vendor user id")
    seller_id: Optional[str] = Field(None, description="Owning seller id")
    location: Optional[GeoPoint] = None
    ratings: dict = Field(default_factory=lambda: {"average": 0.0, "count": 0})
    sales: dict = Field(default_factory=lambda: {"total": 0.0, "count": 0})
    delivery_options: DeliveryOptions = Field(default_factory=DeliveryOptions)
    slug: Optional[str] = None


# Shopping

class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    added_at: Optional[datetime] = None


class Cart(BaseModel):
    user_id: str = Field(..., description="User id owning the cart")
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    name: str = Field(..., description="Snapshot of the product name")
    variant: Optional[dict] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")
    total: float = Field(..., ge=0)
    owner_id: Optional[str] = None


class Payment(BaseModel):
    method: PaymentMethod
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refund_amount: float = Field(0, ge=0)


class Pricing(BaseModel):
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(..., ge=0)


class VendorOrder(BaseModel):
    owner_id: str = Field(..., description="Vendor user id or seller id")
    owner_type: Literal["vendor", "seller"] = "vendor"
    items: List[OrderItem] = Field(default_factory=list)
    total: float = 0.0
    status: OrderStatus = "pending"
    tracking: dict = Field(default_factory=dict)
    notes: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: str = Field(..., description="User who placed the order")
    items: List[OrderItem]
    shipping_address: Address
    billing_address: Address
    payment: Payment
    pricing: Pricing
    status: OrderStatus = "pending"
    status_history: List[dict] = Field(default_factory=list)
    tracking: dict = Field(default_factory=dict)
    notes: dict = Field(default_factory=dict)
    return_info: dict = Field(default_factory=lambda: {
        "is_returnable": True, "return_window": 30, "return_requests": [],
    })
    vendor_orders: List[VendorOrder] = Field(default_factory=list)


class Review(BaseModel):
    product_id: str = Field(...)
    user_id: str = Field(...)
    order_id: str = Field(...)
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: List[dict] = Field(default_factory=list)
    status: ReviewStatus = "pending"
    helpful: dict = Field(default_factory=lambda: {"count": 0, "users": []})
    verified: bool = False
    response: Optional[dict] = None


# Homepage content

class Banner(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=200)
    image_url: str
    button_text: str = Field("Shop Now", max_length=50)
    button_link: str = "/products"
    is_active: bool = True
    order: int = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    target_audience: Literal["all", "new_users", "returning_users", "premium_users"] = "all"
    category: Literal["electronics", "fashion", "home", "beauty", "sports", "books", "general"] = "general"
    priority: int = Field(1, ge=1, le=10)

    @model_validator(mode="after")
    def check_dates(self):
        start, end = (d if d is None or d.tzinfo else d.replace(tzinfo=timezone.utc)
                      for d in (self.start_date, self.end_date))
        if start and end and end <= start:
            raise ValueError("End date must be after start date")
        return self


class Homepagesection(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: Literal["category", "featured", "custom", "banner"] = "category"
    category: Optional[str] = None
    products: List[str] = Field(default_factory=list, description="Product ids")
    max_products: int = Field(6, ge=1, le=20)
    is_visible: bool = True
    order: int = 0
    banner_image: Optional[str] = None
    banner_link: Optional[str] = None
    banner_text: Optional[str] = Field(None, max_length=200)
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
