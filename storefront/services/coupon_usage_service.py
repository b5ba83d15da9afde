"""Coupon usage recording: receipts, the global counter, and reconciliation."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.models.coupon_usage import CouponUsage
from storefront.models.shared import round_money
from storefront.repositories.coupon_repository import CouponRepository
from storefront.repositories.coupon_usage_repository import CouponUsageRepository

logger = logging.getLogger(__name__)


class CouponUsageError(Exception):
    """Base class for failures while recording a coupon redemption."""


class CouponNotFoundError(CouponUsageError):
    pass


class CouponUsageLimitReachedError(CouponUsageError):
    """Another redemption took the last slot between validation and apply."""


class OrderCouponConflictError(CouponUsageError):
    """The order already redeemed a different coupon."""


class CouponUsageRecordError(CouponUsageError):
    """The store failed mid-apply; the order's coupon needs reconciliation."""


@dataclass
class UsageMismatch:
    """A coupon whose usage_count disagrees with its receipts."""

    coupon_id: UUID
    code: str
    usage_count: int
    receipt_count: int


class CouponUsageService:
    """Records coupon redemptions after an order has been durably created."""

    def __init__(self, db: Session):
        self.db = db
        self.coupon_repo = CouponRepository(db)
        self.usage_repo = CouponUsageRepository(db)

    def get_usage_for_order(self, order_id: str) -> CouponUsage | None:
        """Return the receipt already recorded for an order, if any."""
        return self.usage_repo.get_by_order_id(order_id)

    def apply(
        self,
        code: str,
        user_id: str | None,
        order_id: str,
        discount_amount: Decimal,
    ) -> CouponUsage:
        """Record a redemption: insert the receipt and bump usage_count together.

        Idempotent on ``order_id``: re-applying the same coupon to an order that
        already has a receipt returns that receipt without counting again.

        Args:
            code: Coupon code (any case).
            user_id: Shopper id, or None for a guest order.
            order_id: The order that redeemed the coupon.
            discount_amount: Discount actually applied to the order.

        Returns:
            The recorded (or previously recorded) CouponUsage.

        Raises:
            CouponNotFoundError: If no coupon has this code.
            OrderCouponConflictError: If the order already redeemed another coupon.
            CouponUsageLimitReachedError: If the usage limit was reached first.
            CouponUsageRecordError: If the store failed; nothing was written.
        """
        # Replays succeed even if the coupon was deleted after the order
        existing = self.usage_repo.get_by_order_id(order_id)
        if existing is not None:
            return self._replayed(existing, code, order_id)

        coupon = self.coupon_repo.get_by_code(code, include_inactive=True)
        if not coupon:
            raise CouponNotFoundError(f"Coupon '{code}' not found")

        coupon_id: UUID = coupon.id  # type: ignore[assignment]
        try:
            if not self.coupon_repo.try_increment_usage(coupon_id):
                self.db.rollback()
                logger.warning(
                    "Coupon %s reached its usage limit before order %s could redeem it",
                    coupon.code,
                    order_id,
                )
                raise CouponUsageLimitReachedError(f"Coupon '{coupon.code}' usage limit exceeded")

            usage = self.usage_repo.record_usage(
                coupon_id=coupon_id,
                user_id=user_id,
                order_id=order_id,
                discount_amount=round_money(discount_amount),
            )
            self.db.commit()
        except IntegrityError as exc:
            # A concurrent retry for the same order won the insert
            self.db.rollback()
            existing = self.usage_repo.get_by_order_id(order_id)
            if existing is not None:
                return self._replayed(existing, code, order_id)
            logger.error(
                "Failed to record coupon %s for order %s; requires reconciliation",
                code,
                order_id,
            )
            raise CouponUsageRecordError(
                f"Could not record coupon usage for order {order_id}"
            ) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Failed to record coupon %s for order %s; requires reconciliation",
                code,
                order_id,
                exc_info=True,
            )
            raise CouponUsageRecordError(
                f"Could not record coupon usage for order {order_id}"
            ) from exc

        self.db.refresh(usage)
        logger.info(
            "Recorded coupon %s for order %s (discount %s)",
            coupon.code,
            order_id,
            usage.discount_amount,
        )
        return usage

    def _replayed(self, existing: CouponUsage, code: str, order_id: str) -> CouponUsage:
        coupon_id: UUID = existing.coupon_id  # type: ignore[assignment]
        if self.coupon_repo.get_code_by_id(coupon_id) != code.strip().upper():
            raise OrderCouponConflictError(f"Order {order_id} already redeemed another coupon")
        logger.info("Coupon usage for order %s already recorded; skipping", order_id)
        return existing

    def reconcile_usage_counts(self, fix: bool = False) -> list[UsageMismatch]:
        """Compare every coupon's usage_count with its receipts.

        Args:
            fix: Overwrite usage_count with the receipt count for mismatches.

        Returns:
            The mismatches found (before any repair).
        """
        receipts = self.usage_repo.usage_counts_by_coupon()
        mismatches: list[UsageMismatch] = []
        for coupon_id, code, usage_count in self.coupon_repo.get_all_ids_and_counts():
            receipt_count = receipts.get(coupon_id, 0)
            if receipt_count == usage_count:
                continue
            mismatch = UsageMismatch(
                coupon_id=coupon_id,
                code=code,
                usage_count=usage_count,
                receipt_count=receipt_count,
            )
            mismatches.append(mismatch)
            logger.warning(
                "Coupon %s usage_count=%d but %d receipt(s) recorded",
                code,
                usage_count,
                receipt_count,
            )
            if fix and not self.coupon_repo.repair_usage_count(coupon_id, usage_count):
                logger.info("Coupon %s usage_count changed during reconciliation; skipped", code)
        return mismatches
