"""Coupon, cart and coupon usage schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from storefront.models.coupon import DiscountType
from storefront.models.shared import as_utc


class CouponErrorCode(str, Enum):
    """Why a coupon was rejected. Every value is a shopper-recoverable outcome."""

    NOT_FOUND = "NOT_FOUND"
    EXPIRED_OR_NOT_STARTED = "EXPIRED_OR_NOT_STARTED"
    USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"
    USER_LIMIT_EXCEEDED = "USER_LIMIT_EXCEEDED"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    NOT_APPLICABLE = "NOT_APPLICABLE"


def _canonical_code(value: str) -> str:
    code = value.strip().upper()
    if not code:
        raise ValueError("Coupon code must not be blank")
    return code


def _normalize_allow_list(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned = list(dict.fromkeys(item.strip() for item in value if item and item.strip()))
    return cleaned or None


class CouponCreate(BaseModel):
    code: str = Field(max_length=255)
    name: str = Field(max_length=255)
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal = Field(default=Decimal("0"), ge=0)
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    maximum_discount_amount: Decimal | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    user_usage_limit: int | None = Field(default=None, ge=1)
    applicable_categories: list[str] | None = None
    applicable_products: list[str] | None = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def canonical_code(cls, value: str) -> str:
        return _canonical_code(value)

    @field_validator("applicable_categories", "applicable_products")
    @classmethod
    def normalize_allow_list(cls, value: list[str] | None) -> list[str] | None:
        return _normalize_allow_list(value)

    @model_validator(mode="after")
    def check_discount_and_window(self) -> "CouponCreate":
        if self.discount_type == DiscountType.FREE_SHIPPING:
            self.discount_value = Decimal("0")
        elif self.discount_value <= 0:
            raise ValueError("discount_value must be greater than 0")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount_value cannot exceed 100")
        if as_utc(self.valid_from) > as_utc(self.valid_until):
            raise ValueError("valid_from must not be after valid_until")
        return self


NON_NULLABLE_UPDATE_FIELDS = (
    "code",
    "name",
    "discount_type",
    "discount_value",
    "valid_from",
    "valid_until",
    "is_active",
)


class CouponUpdate(BaseModel):
    """Partial update. Cross-field rules are checked against the merged coupon."""

    code: str | None = Field(default=None, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, ge=0)
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    maximum_discount_amount: Decimal | None = Field(default=None, ge=0)
    usage_limit: int | None = Field(default=None, ge=1)
    user_usage_limit: int | None = Field(default=None, ge=1)
    applicable_categories: list[str] | None = None
    applicable_products: list[str] | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    is_active: bool | None = None

    @field_validator("code")
    @classmethod
    def canonical_code(cls, value: str | None) -> str | None:
        return None if value is None else _canonical_code(value)

    @field_validator("applicable_categories", "applicable_products")
    @classmethod
    def normalize_allow_list(cls, value: list[str] | None) -> list[str] | None:
        return _normalize_allow_list(value)

    @model_validator(mode="after")
    def check_required_not_null(self) -> "CouponUpdate":
        for field in NON_NULLABLE_UPDATE_FIELDS:
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    description: str | None = None
    discount_type: str
    discount_value: Decimal
    minimum_order_amount: Decimal | None = None
    maximum_discount_amount: Decimal | None = None
    usage_limit: int | None = None
    usage_count: int
    user_usage_limit: int | None = None
    applicable_categories: Any = None
    applicable_products: Any = None
    valid_from: datetime
    valid_until: datetime
    is_active: bool
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class CouponWithUsageResponse(CouponResponse):
    """Admin listing row: the coupon plus the number of recorded receipts."""

    total_usages: int = 0


class CartLine(BaseModel):
    product_id: str
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0)
    category: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class ValidateCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=255)
    cart_lines: list[CartLine]
    subtotal: Decimal | None = Field(default=None, ge=0)
    shipping_amount: Decimal | None = Field(default=None, ge=0)


class DiscountBreakdown(BaseModel):
    type: DiscountType
    value: Decimal
    amount: Decimal


class CouponValidationResult(BaseModel):
    is_valid: bool
    reason: CouponErrorCode | None = None
    message: str | None = None
    discount: DiscountBreakdown | None = None


class ApplyCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=255)
    user_id: str | None = Field(default=None, max_length=255)
    order_id: str = Field(min_length=1, max_length=255)
    discount_amount: Decimal = Field(ge=0)


class CouponUsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    coupon_id: UUID
    user_id: str | None = None
    order_id: str
    discount_amount: Decimal
    used_at: datetime
