"""CouponUsage model: one immutable receipt per order that redeemed a coupon."""

from sqlalchemy import Column, DateTime, ForeignKey, String, func

from storefront.core.database import Base
from storefront.models.shared import MoneyType, UUIDType, generate_uuid


class CouponUsage(Base):
    """Receipt of a coupon redemption.

    ``order_id`` is unique: an order redeems at most one coupon, and the
    usage recorder uses it as its idempotency key.
    """

    __tablename__ = "coupon_usages"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    coupon_id = Column(
        UUIDType, ForeignKey("coupons.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    user_id = Column(String(255), nullable=True, index=True)
    order_id = Column(String(255), nullable=False, unique=True, index=True)
    discount_amount = Column(MoneyType(), nullable=False)
    used_at = Column(DateTime(timezone=True), server_default=func.now())
