"""
Request schemas for the shop API.

Bodies arrive camelCase from the storefront (categoryId, paymentMethod,
shippingAddressStreet, ...); snake_case field names are accepted as well.
"""
from __future__ import annotations
from typing import Annotated, List, Literal, Optional, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    user = "user"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"


# Accounts

class Address(CamelModel):
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    address_country: Optional[str] = None


class RegisterPayload(Address):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginPayload(CamelModel):
    email: str
    password: str


# Catalog

class ImageUrls(BaseModel):
    kind: Literal["urls"] = "urls"
    urls: List[str] = []


class UploadedImage(BaseModel):
    filename: str
    content_type: Optional[str] = None
    data: bytes


class ImageUploads(BaseModel):
    kind: Literal["uploads"] = "uploads"
    uploads: List[UploadedImage] = []


ImageSource = Annotated[Union[ImageUrls, ImageUploads], Field(discriminator="kind")]


class CategoryDraft(BaseModel):
    """A catalog create request after the form boundary has normalised it."""

    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    sizes: List[str] = []
    material: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    image_urls: List[str] = []


class CategoryChanges(BaseModel):
    """Partial update; None keeps the stored value, image_urls=None keeps the images."""

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    size: Optional[str] = None
    material: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    image_urls: Optional[List[str]] = None


class CategoryFilters(BaseModel):
    name: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    size: Optional[str] = None
    material: Optional[str] = None
    color: Optional[str] = None
    limit: int = Field(10, ge=1, le=100)
    offset: int = Field(0, ge=0)


class CategoryNameQuery(CamelModel):
    name: str = Field(..., min_length=1)


# Cart

MAX_LINE_QUANTITY = 10_000


class CartAdd(CamelModel):
    category_id: Union[int, str]
    quantity: int = Field(1, ge=1, le=MAX_LINE_QUANTITY)


class QuantityUpdate(CamelModel):
    quantity: int = Field(..., ge=0, le=MAX_LINE_QUANTITY)


# Orders

class ShippingAddress(CamelModel):
    shipping_address_street: Optional[str] = None
    shipping_address_city: Optional[str] = None
    shipping_address_state: Optional[str] = None
    shipping_address_zip: Optional[str] = None
    shipping_address_country: Optional[str] = None


class CheckoutPayload(ShippingAddress):
    payment_method: str = Field(..., min_length=1)


class PaymentPayload(CamelModel):
    order_id: int
    payment_details: Optional[dict] = None


# Favorites / ratings

class FavoritePayload(CamelModel):
    category_id: int


class RatingPayload(CamelModel):
    category_id: int
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None


class RatingUpdate(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = None
