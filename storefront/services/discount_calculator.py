"""Discount math for the three coupon types."""

from decimal import Decimal

from storefront.models.coupon import DiscountType
from storefront.models.shared import round_money
from storefront.schemas.coupon import DiscountBreakdown


def calculate_discount(
    discount_type: DiscountType | str,
    discount_value: Decimal,
    maximum_discount_amount: Decimal | None,
    applicable_subtotal: Decimal,
    shipping_amount: Decimal,
) -> DiscountBreakdown:
    """Compute the discount a coupon grants over the applicable subtotal.

    Args:
        discount_type: percentage, fixed_amount or free_shipping.
        discount_value: Percentage points or a currency amount (unused for
            free_shipping).
        maximum_discount_amount: Optional cap applied after the type rule.
        applicable_subtotal: Total of the cart lines the coupon covers.
        shipping_amount: Shipping cost waived by a free_shipping coupon, as
            quoted by the caller's shipping policy.

    Returns:
        DiscountBreakdown whose amount is capped and rounded half-up to cents.
    """
    kind = DiscountType(discount_type)
    value = Decimal(str(discount_value or 0))
    subtotal = Decimal(str(applicable_subtotal))

    if kind == DiscountType.PERCENTAGE:
        amount = subtotal * value / Decimal("100")
    elif kind == DiscountType.FIXED_AMOUNT:
        # Never discount more than the lines it applies to
        amount = min(value, subtotal)
    else:
        amount = Decimal(str(shipping_amount))

    if maximum_discount_amount is not None:
        amount = min(amount, Decimal(str(maximum_discount_amount)))

    amount = max(amount, Decimal("0"))
    return DiscountBreakdown(type=kind, value=value, amount=round_money(amount))
