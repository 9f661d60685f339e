from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator


class UserRecord(BaseModel):
    id: str
    email: Optional[str] = None
    password_hash: Optional[str] = None
    premium: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    premium_updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class _CamelRequest(BaseModel):
    class Config:
        populate_by_name = True


# Checkout

class CreateOrderRequest(_CamelRequest):
    user_id: str = Field(alias="userId", min_length=1)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, pattern="^[A-Za-z]{3}$")
    request_id: Optional[str] = Field(default=None, alias="requestId", max_length=108)

    @model_validator(mode="after")
    def _require_amount(self):
        if self.amount is None and self.price is None:
            raise ValueError("amount or price is required")
        return self

    @property
    def total(self) -> Decimal:
        return self.amount if self.amount is not None else self.price


class CreatePaymentRequest(_CamelRequest):
    user_id: str = Field(alias="userId", min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3, pattern="^[A-Za-z]{3}$")
    description: Optional[str] = Field(default=None, max_length=127)
    request_id: Optional[str] = Field(default=None, alias="requestId", max_length=108)


class CaptureRequest(_CamelRequest):
    order_id: str = Field(alias="orderId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


# Subscriptions and plans

class CreateSubscriptionRequest(BaseModel):
    plan_id: str = Field(min_length=1)
    user_email: EmailStr
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    custom_id: Optional[str] = None


class CancelSubscriptionRequest(_CamelRequest):
    reason: Optional[str] = Field(default=None, max_length=127)
    user_id: Optional[str] = Field(default=None, alias="userId")


class CreatePlanRequest(BaseModel):
    name: str = Field(min_length=1, max_length=127)
    description: Optional[str] = Field(default=None, max_length=127)
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3, pattern="^[A-Za-z]{3}$")
    interval: Literal["DAY", "WEEK", "MONTH", "YEAR"]
    interval_count: int = Field(default=1, ge=1)


# Users

class CreateUserRequest(_CamelRequest):
    user_id: str = Field(alias="userId", min_length=1)
    email: EmailStr
    premium: bool = False


class UpdateSubscriptionRequest(_CamelRequest):
    user_id: str = Field(alias="userId", min_length=1)
    premium: bool


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=200)


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
