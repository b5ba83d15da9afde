"""Coupon repository for data access."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Query, Session

from storefront.core.sorting import apply_order_by
from storefront.models.coupon import Coupon, DiscountType
from storefront.models.coupon_usage import CouponUsage
from storefront.models.shared import utc_now
from storefront.schemas.coupon import CouponCreate, CouponUpdate

SORTABLE_FIELDS = ("code", "name", "created_at", "valid_from", "valid_until", "usage_count")


class CouponInUseError(Exception):
    """Raised when hard-deleting a coupon that usage receipts still reference."""


class CouponRepository:
    """Repository for Coupon model.

    Soft-deleted coupons are invisible to every read below.
    """

    def __init__(self, db: Session):
        self.db = db

    def _live(self) -> Query:  # type: ignore[type-arg]
        return self.db.query(Coupon).filter(Coupon.deleted_at.is_(None))

    def get_all_with_usage_counts(
        self,
        skip: int = 0,
        limit: int = 100,
        is_active: bool | None = None,
        order_by: str | None = None,
    ) -> list[tuple[Coupon, int]]:
        """Get coupons joined with the number of recorded usage receipts."""
        usage_count = func.count(CouponUsage.id).label("total_usages")
        query = (
            self.db.query(Coupon, usage_count)
            .outerjoin(CouponUsage, CouponUsage.coupon_id == Coupon.id)
            .filter(Coupon.deleted_at.is_(None))
            .group_by(Coupon.id)
        )
        if is_active is not None:
            query = query.filter(Coupon.is_active == is_active)

        query = apply_order_by(query, Coupon, order_by, allowed_fields=SORTABLE_FIELDS)
        return [(coupon, int(total or 0)) for coupon, total in query.offset(skip).limit(limit)]

    def count(self, is_active: bool | None = None) -> int:
        query = self._live()
        if is_active is not None:
            query = query.filter(Coupon.is_active == is_active)
        return int(query.count())

    def get_by_id(self, coupon_id: UUID) -> Coupon | None:
        """Get a coupon by ID."""
        return self._live().filter(Coupon.id == coupon_id).first()

    def get_by_code(self, code: str, include_inactive: bool = False) -> Coupon | None:
        """Get a coupon by code, case-insensitively."""
        query = self._live().filter(Coupon.code == code.strip().upper())
        if not include_inactive:
            query = query.filter(Coupon.is_active == True)  # noqa: E712
        return query.first()

    def get_code_by_id(self, coupon_id: UUID) -> str | None:
        """Return a coupon's code, soft-deleted coupons included."""
        row = self.db.query(Coupon.code).filter(Coupon.id == coupon_id).first()
        return row[0] if row else None

    def code_exists(self, code: str) -> bool:
        """Check a code against every coupon, soft-deleted ones included."""
        canonical = code.strip().upper()
        return self.db.query(Coupon.id).filter(Coupon.code == canonical).first() is not None

    def create(self, data: CouponCreate) -> Coupon:
        """Create a new coupon."""
        coupon = Coupon(
            code=data.code.upper(),
            name=data.name,
            description=data.description,
            discount_type=data.discount_type.value,
            discount_value=data.discount_value,
            minimum_order_amount=data.minimum_order_amount,
            maximum_discount_amount=data.maximum_discount_amount,
            usage_limit=data.usage_limit,
            usage_count=0,
            user_usage_limit=data.user_usage_limit,
            applicable_categories=data.applicable_categories,
            applicable_products=data.applicable_products,
            valid_from=data.valid_from,
            valid_until=data.valid_until,
            is_active=data.is_active,
        )
        self.db.add(coupon)
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def update(self, coupon_id: UUID, data: CouponUpdate) -> Coupon | None:
        """Update a coupon by ID."""
        coupon = self.get_by_id(coupon_id)
        if not coupon:
            return None

        update_data = data.model_dump(exclude_unset=True)

        if update_data.get("code"):
            update_data["code"] = update_data["code"].upper()
        if update_data.get("discount_type"):
            update_data["discount_type"] = update_data["discount_type"].value

        for key, value in update_data.items():
            setattr(coupon, key, value)
        if coupon.discount_type == DiscountType.FREE_SHIPPING.value:
            coupon.discount_value = Decimal("0")  # type: ignore[assignment]

        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def delete(self, coupon_id: UUID) -> Coupon | None:
        """Soft-delete a coupon: deactivate it and stamp deleted_at."""
        coupon = self.get_by_id(coupon_id)
        if not coupon:
            return None

        coupon.is_active = False  # type: ignore[assignment]
        coupon.deleted_at = utc_now()  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def hard_delete(self, coupon_id: UUID) -> bool:
        """Permanently remove a coupon that was never redeemed."""
        coupon = self.db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            return False

        receipts = (
            self.db.query(func.count(CouponUsage.id))
            .filter(CouponUsage.coupon_id == coupon_id)
            .scalar()
        )
        if receipts:
            raise CouponInUseError(f"Coupon {coupon.code} has {receipts} usage receipt(s)")

        self.db.delete(coupon)
        self.db.commit()
        return True

    def try_increment_usage(self, coupon_id: UUID) -> bool:
        """Atomically bump usage_count unless the coupon is at its usage limit.

        Issued as one conditional UPDATE so concurrent redemptions cannot both
        take the last slot. Does not commit; the caller owns the transaction.

        Returns:
            True if the counter was incremented, False if the limit was reached.
        """
        updated = (
            self.db.query(Coupon)
            .filter(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .update(
                {
                    Coupon.usage_count: Coupon.usage_count + 1,
                    Coupon.updated_at: func.now(),
                },
                synchronize_session=False,
            )
        )
        return updated == 1

    def repair_usage_count(self, coupon_id: UUID, observed_count: int) -> bool:
        """Reset usage_count to the receipt count if it still reads ``observed_count``.

        The receipts are counted inside the same UPDATE, so a redemption
        committed after the mismatch was observed is never undone.

        Returns:
            True if the counter was rewritten, False if it changed meanwhile.
        """
        receipt_count = (
            select(func.count(CouponUsage.id))
            .where(CouponUsage.coupon_id == Coupon.id)
            .correlate(Coupon)
            .scalar_subquery()
        )
        updated = (
            self.db.query(Coupon)
            .filter(Coupon.id == coupon_id, Coupon.usage_count == observed_count)
            .update(
                {Coupon.usage_count: receipt_count, Coupon.updated_at: func.now()},
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def get_all_ids_and_counts(self) -> list[tuple[UUID, str, int]]:
        """Return (id, code, usage_count) for every coupon, soft-deleted included."""
        rows = self.db.query(Coupon.id, Coupon.code, Coupon.usage_count).all()
        return [(row[0], row[1], int(row[2] or 0)) for row in rows]
