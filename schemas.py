"""
Database Schemas

MongoDB documents for the minifig storefront, defined as Pydantic models.

- User -> "user" collection (admin accounts)
- Product -> "products" collection (synced from BrickLink)
- Order -> "orders" collection

Field names on Product/Order follow the stored documents, which the BrickLink
sync and the storefront pages share.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field


class User(BaseModel):
    """
    Admin accounts
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Password hash (server-side)")
    role: str = Field("admin", description="Role: admin | staff")
    is_active: bool = Field(True, description="Whether user is active")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    inventoryId: Optional[int] = Field(None, description="BrickLink lot id (unique)")
    itemNo: Optional[str] = Field(None, description="BrickLink item number, e.g. sw0542")
    name: Optional[str] = None
    type: str = Field("MINIFIG", description="BrickLink item type")
    condition: Optional[str] = Field(None, description="N (new) or U (used)")
    price: Optional[float] = Field(None, ge=0)
    qty: int = Field(0, ge=0, description="Units available")
    imageUrl: Optional[str] = None
    remarks: Optional[str] = None
    description: Optional[str] = None
    themeKey: Optional[str] = None
    themeLabel: Optional[str] = None
    seriesKey: Optional[str] = None


class OrderItem(BaseModel):
    id: str = Field(..., description="inventoryId as string, or product ObjectId")
    itemNo: Optional[str] = None
    name: str
    price: float = Field(..., ge=0)
    qty: int = Field(..., ge=1)
    imageUrl: Optional[str] = None


class Totals(BaseModel):
    itemsTotal: float = Field(..., ge=0)
    postage: float = Field(0, ge=0)
    grandTotal: float = Field(..., ge=0)
    currency: str = "AUD"


class Payer(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    notes: Optional[str] = None


class Refund(BaseModel):
    captureId: Optional[str] = None
    orderId: Optional[str] = None
    provider: Optional[str] = None
    at: datetime
    amount: Optional[float] = None


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    provider: str = Field(..., description="paypal | stripe | bank")
    status: str = Field("pending", description="pending | paid | refunded | cancelled")
    orderId: Optional[str] = Field(None, description="PayPal order id or bank reference")
    captureIds: List[str] = Field(default_factory=list)
    stripeSessionId: Optional[str] = None
    items: List[OrderItem]
    totals: Totals
    payer: Payer = Field(default_factory=Payer)
    postageId: Optional[str] = None
    refunds: List[Refund] = Field(default_factory=list)
    stockApplied: bool = Field(False, description="Whether stock was decremented for this order")


class CartItem(BaseModel):
    """A cart line as sent by the browser; never stored on its own."""
    id: str = Field(..., description="inventoryId, product ObjectId or itemNo")
    name: Optional[str] = None
    price: Optional[float] = None
    qty: int = Field(1, ge=1)
    imageUrl: Optional[str] = None
