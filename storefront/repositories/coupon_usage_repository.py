"""CouponUsage repository for data access."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.models.coupon_usage import CouponUsage


class CouponUsageRepository:
    """Repository for CouponUsage receipts. Receipts are never updated or deleted."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_order_id(self, order_id: str) -> CouponUsage | None:
        """Get the receipt recorded for an order, if any."""
        return self.db.query(CouponUsage).filter(CouponUsage.order_id == order_id).first()

    def get_all_by_coupon_id(
        self, coupon_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[CouponUsage]:
        """Get receipts for a coupon, newest first."""
        return (
            self.db.query(CouponUsage)
            .filter(CouponUsage.coupon_id == coupon_id)
            .order_by(CouponUsage.used_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_by_coupon(self, coupon_id: UUID) -> int:
        return (
            self.db.query(func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id == coupon_id)
            .scalar()
            or 0
        )

    def count_by_coupon_and_user(self, coupon_id: UUID, user_id: str) -> int:
        """Count how many times a shopper has redeemed a coupon."""
        return (
            self.db.query(func.count(CouponUsage.id))
            .filter(
                CouponUsage.coupon_id == coupon_id,
                CouponUsage.user_id == user_id,
            )
            .scalar()
            or 0
        )

    def usage_counts_by_coupon(self) -> dict[UUID, int]:
        """Map coupon_id to its receipt count, for coupons with at least one receipt."""
        rows = (
            self.db.query(CouponUsage.coupon_id, func.count(CouponUsage.id))
            .group_by(CouponUsage.coupon_id)
            .all()
        )
        return {coupon_id: int(total) for coupon_id, total in rows}

    def record_usage(
        self,
        coupon_id: UUID,
        user_id: str | None,
        order_id: str,
        discount_amount: Decimal,
    ) -> CouponUsage:
        """Stage a receipt in the current transaction. The caller commits."""
        usage = CouponUsage(
            coupon_id=coupon_id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
        )
        self.db.add(usage)
        self.db.flush()
        return usage
