"""Resolve which cart lines a coupon's allow-lists cover."""

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from storefront.models.coupon import Coupon
from storefront.schemas.coupon import CartLine

logger = logging.getLogger(__name__)


class CorruptAllowListError(ValueError):
    """A stored allow-list is not a JSON list of strings."""


@dataclass
class ApplicableLines:
    """Cart lines a coupon applies to, and their combined total."""

    lines: list[CartLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0")

    @property
    def is_empty(self) -> bool:
        return not self.lines


def parse_allow_list(raw: Any) -> frozenset[str] | None:
    """Turn a stored allow-list into a set, or None when it is absent or empty.

    Rows written before the JSON column migration hold the list as a JSON
    string, so strings are decoded first.

    Raises:
        CorruptAllowListError: If the value cannot be read as a list of strings.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CorruptAllowListError(f"Allow-list is not valid JSON: {raw!r}") from exc
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise CorruptAllowListError(f"Allow-list must be a list of strings, got {raw!r}")
    return frozenset(raw) or None


def resolve_applicable_lines(coupon: Coupon, lines: Sequence[CartLine]) -> ApplicableLines:
    """Select the cart lines covered by the coupon's product/category allow-lists.

    With no allow-lists every line applies. Otherwise a line applies when its
    product is listed or its category is listed; either list is sufficient.
    Corrupt stored lists fail closed: nothing applies.
    """
    try:
        products = parse_allow_list(coupon.applicable_products)
        categories = parse_allow_list(coupon.applicable_categories)
    except CorruptAllowListError:
        logger.error(
            "Coupon %s has corrupt allow-list data; treating it as not applicable",
            coupon.code,
            exc_info=True,
        )
        return ApplicableLines()

    if products is None and categories is None:
        selected = list(lines)
    else:
        selected = [
            line
            for line in lines
            if (products is not None and line.product_id in products)
            or (categories is not None and line.category in categories)
        ]

    subtotal = sum((line.line_total for line in selected), Decimal("0"))
    return ApplicableLines(lines=selected, subtotal=subtotal)
