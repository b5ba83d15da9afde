"""Coupon model for storefront promotional discounts."""

from enum import Enum

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, DateTime, Integer, String, Text, func

from storefront.core.database import Base
from storefront.models.shared import MoneyType, UUIDType, generate_uuid


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"
    FREE_SHIPPING = "free_shipping"


class Coupon(Base):
    """Coupon definition managed from the admin back-office.

    ``code`` is stored uppercase. ``usage_count`` is only ever changed through
    ``CouponRepository.try_increment_usage`` (and the reconciliation repair).
    """

    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    code = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    discount_type = Column(String(20), nullable=False)
    discount_value = Column(MoneyType(), nullable=False, default=0)
    minimum_order_amount = Column(MoneyType(), nullable=True)
    maximum_discount_amount = Column(MoneyType(), nullable=True)

    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    user_usage_limit = Column(Integer, nullable=True)

    applicable_categories = Column(JSON, nullable=True)
    applicable_products = Column(JSON, nullable=True)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
