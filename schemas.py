"""
Storefront Schemas

Pydantic models for the storefront's MongoDB collections. Documents are
validated through these before they are written.

The collection name is the lowercase model name:
- User -> "user" collection
- Category -> "category" collection
- Product -> "product" collection
- Order -> "order" collection

Request payloads accepted by the API live at the bottom of this module. They
take the camelCase field names used by the storefront client.
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator
from typing import Optional, List, Literal

Gender = Literal["men", "woman"]
Role = Literal["admin", "customer"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user" (lowercase of class name)
    """
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    username: str = Field(..., min_length=3, max_length=20, description="Display name")
    first_name: str = Field(..., min_length=2, description="First name")
    last_name: str = Field(..., min_length=2, description="Last name")
    password_hash: Optional[str] = Field(None, description="Salted PBKDF2 password hash")
    role: Role = Field("customer", description="Access role")
    token: Optional[str] = Field(None, description="Session token for bearer auth")


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category" (lowercase of class name)
    """
    name: str = Field(..., min_length=2, max_length=50, description="Unique category name")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product" (lowercase of class name)
    """
    title: str = Field(..., min_length=2, max_length=200, description="Product title")
    price: float = Field(..., ge=0, description="Price in dollars")
    category: str = Field(..., description="Referenced category _id as string")
    image_url: str = Field(..., description="Image URL")
    stock: int = Field(0, ge=0, description="Units available")
    gender: Optional[Gender] = Field(None, description="Target gender")
    length: Optional[float] = Field(None, ge=0, description="Length in cm (skis)")
    size: Optional[str] = Field(None, max_length=20, description="Size (boots)")
    brand: Optional[str] = Field(None, max_length=100, description="Brand")
    color: Optional[str] = Field(None, max_length=50, description="Color")


class OrderItem(BaseModel):
    product_id: str = Field(..., description="Referenced product _id as string")
    title: str = Field(..., description="Product title at order time")
    price: float = Field(..., ge=0, description="Unit price at order time")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order" (lowercase of class name)
    """
    user_id: str = Field(..., description="User placing the order")
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0, description="Server computed total")


# Request payloads


class Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class RegisterPayload(Payload):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=20)
    first_name: str = Field(..., alias="firstName", min_length=2)
    last_name: str = Field(..., alias="lastName", min_length=2)
    password: str


class LoginPayload(Payload):
    email: EmailStr
    password: str


class ProfilePayload(Payload):
    first_name: str = Field(..., alias="firstName", min_length=2)
    last_name: str = Field(..., alias="lastName", min_length=2)


class CategoryPayload(Payload):
    name: str


class ProductFields(Payload):
    gender: Optional[Gender] = None
    length: Optional[float] = Field(None, ge=0)
    size: Optional[str] = Field(None, max_length=20)
    brand: Optional[str] = Field(None, max_length=100)
    color: Optional[str] = Field(None, max_length=50)

    @field_validator("gender", "length", "size", "brand", "color", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ProductPayload(ProductFields):
    title: str = Field(..., min_length=2, max_length=200)
    price: float = Field(..., ge=0)
    category: str
    image_url: str = Field(..., alias="imageUrl", min_length=1)
    stock: int = Field(0, ge=0)


class ProductUpdatePayload(ProductFields):
    title: Optional[str] = Field(None, min_length=2, max_length=200)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    stock: Optional[int] = Field(None, ge=0)


class OrderItemRequest(Payload):
    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(Payload):
    items: List[OrderItemRequest] = Field(..., min_length=1)
    total_amount: float = Field(..., alias="totalAmount", ge=0, strict=True)


class RecommendationPayload(Payload):
    product_ids: List[str] = Field(default_factory=list, alias="productIds")


class ChatMessage(Payload):
    role: str
    content: str = ""


class GuideChatPayload(Payload):
    messages: List[ChatMessage] = Field(default_factory=list)
