from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, HttpUrl, StrictInt, TypeAdapter, field_validator
from pydantic.config import ConfigDict

from .cart import MAX_LINE_QUANTITY
from .utils import normalize_username, sanitize_input

_http_url = TypeAdapter(HttpUrl)


def _clean_username(v: str) -> str:
    v = normalize_username(v)
    if not v:
        raise ValueError("username is required")
    return v


class SignupRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("username")
    def strip_username(cls, v: str):
        return _clean_username(v)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("username")
    def strip_username(cls, v: str):
        return _clean_username(v)


class UserRead(BaseModel):
    id: int
    username: str
    email: str
    is_admin: bool = False

    model_config = ConfigDict(from_attributes=True)


class UserEnvelope(BaseModel):
    user: UserRead

    model_config = ConfigDict(from_attributes=True)


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=Decimal("0"), max_digits=10, decimal_places=2)
    image: str = Field(..., max_length=2048)

    @field_validator("name", "description")
    def clean_text(cls, v: str):
        # Product text is shown on the storefront; strip markup before it is stored
        v = sanitize_input(v)
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("image")
    def check_image_url(cls, v: str):
        # Validate as a URL but keep the admin's exact string
        v = v.strip()
        try:
            _http_url.validate_python(v)
        except ValueError:
            raise ValueError("image must be an http(s) URL")
        return v


class ProductRead(BaseModel):
    id: int
    name: str
    description: str
    price: Decimal
    image: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CheckoutItem(BaseModel):
    # Any client-sent price or total is dropped here; only id and quantity reach checkout
    id: StrictInt = Field(..., ge=1)
    quantity: StrictInt = Field(..., ge=1, le=MAX_LINE_QUANTITY)


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem]


class CheckoutResponse(BaseModel):
    url: str


class OrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    total: Decimal
    status: str
    created_at: datetime
    items: List[OrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)
