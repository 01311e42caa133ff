"""
Database Schemas for the Marketplace

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.
References between collections are stored as id strings.

Request bodies accepted by the API live at the bottom of the module.
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class Role(str, Enum):
    admin = "admin"
    buyer = "buyer"


class OrderStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    completed = "completed"


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Trimmed, lowercased email address")
    password_hash: str = Field(..., description="BCrypt hash of the user's password")
    role: Role = Field(Role.buyer)
    is_email_verified: bool = Field(False)

class Category(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

class Product(BaseModel):
    product_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)
    is_featured: bool = False
    category_id: str = Field(..., description="Referenced category _id as string")

class Order(BaseModel):
    buyer_id: str
    status: OrderStatus = OrderStatus.pending
    total_amount: float = Field(..., ge=0, description="Sum of line items at creation time")

class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, description="Snapshot of the unit price at order time")

class Review(BaseModel):
    product_id: str
    order_id: str = Field(..., description="Completed order that made the review possible")
    buyer_id: str
    rating: int = Field(..., ge=0, le=5)
    comment: Optional[str] = None


# Request bodies

class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str

class LoginRequest(BaseModel):
    email: str
    password: str

class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    currentPassword: Optional[str] = None

class CategoryCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None

class ProductCreateRequest(BaseModel):
    model_config = ConfigDict(strict=True)

    product_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(..., ge=0)
    category_id: str

class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(strict=True)

    product_name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock_quantity: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None

class OrderLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1, strict=True)
    unit_price: float = Field(..., ge=0, strict=True)


class PlaceOrderRequest(BaseModel):
    products: List[OrderLine] = Field(..., min_length=1)

class StatusUpdateRequest(BaseModel):
    newStatus: str

class ReviewCreateRequest(BaseModel):
    productId: str
    rating: int = Field(..., ge=0, le=5, strict=True)
    comment: Optional[str] = None
