"""Coupon validation: decide whether a code applies to a cart and for how much."""

import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.models.coupon import Coupon
from storefront.models.shared import as_utc, round_money, utc_now
from storefront.repositories.coupon_repository import CouponRepository
from storefront.repositories.coupon_usage_repository import CouponUsageRepository
from storefront.schemas.coupon import CartLine, CouponErrorCode, CouponValidationResult
from storefront.services.coupon_applicability import resolve_applicable_lines
from storefront.services.discount_calculator import calculate_discount

logger = logging.getLogger(__name__)

REJECTION_MESSAGES: dict[CouponErrorCode, str] = {
    CouponErrorCode.NOT_FOUND: "Invalid coupon code",
    CouponErrorCode.EXPIRED_OR_NOT_STARTED: "Coupon has expired or is not yet valid",
    CouponErrorCode.USAGE_LIMIT_EXCEEDED: "Coupon usage limit exceeded",
    CouponErrorCode.USER_LIMIT_EXCEEDED: (
        "You have already used this coupon the maximum number of times"
    ),
    CouponErrorCode.BELOW_MINIMUM: "Minimum order amount of ${minimum} required",
    CouponErrorCode.NOT_APPLICABLE: "Coupon is not applicable to items in your cart",
}


def _reject(reason: CouponErrorCode, **context: object) -> CouponValidationResult:
    message = REJECTION_MESSAGES[reason].format(**context)
    return CouponValidationResult(is_valid=False, reason=reason, message=message)


def cart_subtotal(cart_lines: Sequence[CartLine]) -> Decimal:
    """Sum unit_price * quantity across the cart."""
    return sum((line.line_total for line in cart_lines), Decimal("0"))


class CouponValidationService:
    """Runs the coupon checks in order and stops at the first failure.

    Validation only reads: it never changes the coupon or records usage, so
    repeated calls with unchanged state return identical results. Store
    failures (SQLAlchemyError) propagate to the caller and are never
    reported as a rejection.
    """

    def __init__(self, db: Session):
        self.db = db
        self.coupon_repo = CouponRepository(db)
        self.usage_repo = CouponUsageRepository(db)

    def validate(
        self,
        code: str,
        user_id: str | None,
        cart_lines: Sequence[CartLine],
        subtotal: Decimal | None = None,
        now: datetime | None = None,
        shipping_amount: Decimal | None = None,
    ) -> CouponValidationResult:
        """Validate a coupon code against a cart.

        Args:
            code: Coupon code as typed by the shopper (any case).
            user_id: Identified shopper, or None for guest checkout. Per-user
                limits cannot be enforced for guests.
            cart_lines: The cart snapshot.
            subtotal: Subtotal the caller computed. The engine recomputes it
                from cart_lines and only uses this value to detect drift.
            now: Evaluation time, defaults to the current UTC time.
            shipping_amount: Shipping cost a free_shipping coupon waives.
                Defaults to settings.FREE_SHIPPING_AMOUNT.

        Returns:
            CouponValidationResult with either a discount or a rejection reason.
        """
        now = as_utc(now) if now is not None else utc_now()

        coupon = self.coupon_repo.get_by_code(code)
        if coupon is None:
            return _reject(CouponErrorCode.NOT_FOUND)

        if not self._within_window(coupon, now):
            return _reject(CouponErrorCode.EXPIRED_OR_NOT_STARTED)

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            return _reject(CouponErrorCode.USAGE_LIMIT_EXCEEDED)

        if user_id and coupon.user_usage_limit is not None:
            used = self.usage_repo.count_by_coupon_and_user(
                coupon.id,  # type: ignore[arg-type]
                user_id,
            )
            if used >= coupon.user_usage_limit:
                return _reject(CouponErrorCode.USER_LIMIT_EXCEEDED)

        full_subtotal = self._trusted_subtotal(coupon, cart_lines, subtotal)
        if (
            coupon.minimum_order_amount is not None
            and full_subtotal < Decimal(str(coupon.minimum_order_amount))
        ):
            return _reject(
                CouponErrorCode.BELOW_MINIMUM,
                minimum=round_money(Decimal(str(coupon.minimum_order_amount))),
            )

        applicable = resolve_applicable_lines(coupon, cart_lines)
        if applicable.is_empty:
            return _reject(CouponErrorCode.NOT_APPLICABLE)

        discount = calculate_discount(
            discount_type=str(coupon.discount_type),
            discount_value=coupon.discount_value,  # type: ignore[arg-type]
            maximum_discount_amount=coupon.maximum_discount_amount,  # type: ignore[arg-type]
            applicable_subtotal=applicable.subtotal,
            shipping_amount=(
                shipping_amount if shipping_amount is not None else settings.FREE_SHIPPING_AMOUNT
            ),
        )
        return CouponValidationResult(is_valid=True, discount=discount)

    @staticmethod
    def _within_window(coupon: Coupon, now: datetime) -> bool:
        valid_from = as_utc(coupon.valid_from)  # type: ignore[arg-type]
        valid_until = as_utc(coupon.valid_until)  # type: ignore[arg-type]
        return valid_from <= now <= valid_until

    @staticmethod
    def _trusted_subtotal(
        coupon: Coupon, cart_lines: Sequence[CartLine], claimed: Decimal | None
    ) -> Decimal:
        computed = cart_subtotal(cart_lines)
        if claimed is not None and round_money(claimed) != round_money(computed):
            logger.warning(
                "Subtotal %s supplied for coupon %s does not match cart lines (%s); "
                "using the cart lines",
                claimed,
                coupon.code,
                computed,
            )
        return computed
