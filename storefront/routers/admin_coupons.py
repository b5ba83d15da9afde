"""Back-office coupon management endpoints."""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from storefront.core.auth import AuthenticatedUser, require_admin
from storefront.core.database import get_db
from storefront.models.audit_log import AuditLog
from storefront.models.coupon import Coupon, DiscountType
from storefront.models.coupon_usage import CouponUsage
from storefront.models.shared import as_utc
from storefront.repositories.audit_log_repository import AuditLogRepository
from storefront.repositories.coupon_repository import CouponInUseError, CouponRepository
from storefront.repositories.coupon_usage_repository import CouponUsageRepository
from storefront.schemas.audit_log import AuditLogResponse
from storefront.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponUpdate,
    CouponUsageResponse,
    CouponWithUsageResponse,
)
from storefront.services.audit_service import AuditService

router = APIRouter()

RESOURCE_TYPE = "coupon"


def _audit_snapshot(coupon: Coupon) -> dict[str, Any]:
    """JSON-safe copy of the admin-editable coupon fields."""
    data = CouponResponse.model_validate(coupon).model_dump(mode="json")
    for key in ("id", "usage_count", "deleted_at", "created_at", "updated_at"):
        data.pop(key, None)
    return data


def _check_update_rules(coupon: Coupon, data: CouponUpdate) -> None:
    """Re-check the cross-field rules against the coupon as it will be saved."""
    changes = data.model_dump(exclude_unset=True)

    discount_type = changes.get("discount_type") or DiscountType(coupon.discount_type)
    discount_value = changes.get("discount_value", coupon.discount_value)
    if discount_type != DiscountType.FREE_SHIPPING:
        if discount_value is None or discount_value <= 0:
            raise HTTPException(status_code=422, detail="discount_value must be greater than 0")
        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            raise HTTPException(
                status_code=422, detail="Percentage discount_value cannot exceed 100"
            )

    valid_from = changes.get("valid_from") or coupon.valid_from
    valid_until = changes.get("valid_until") or coupon.valid_until
    if as_utc(valid_from) > as_utc(valid_until):
        raise HTTPException(status_code=422, detail="valid_from must not be after valid_until")

    usage_limit = changes.get("usage_limit")
    if usage_limit is not None and usage_limit < coupon.usage_count:
        raise HTTPException(
            status_code=422,
            detail=(
                "usage_limit cannot be lower than the current usage count "
                f"({coupon.usage_count})"
            ),
        )


@router.post(
    "/",
    response_model=CouponResponse,
    status_code=201,
    summary="Create coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        409: {"description": "Coupon with this code already exists"},
        422: {"description": "Validation error"},
    },
)
async def create_coupon(
    data: CouponCreate,
    db: Session = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> Coupon:
    """Create a new coupon. The code is stored uppercase."""
    repo = CouponRepository(db)
    if repo.code_exists(data.code):
        raise HTTPException(status_code=409, detail="Coupon with this code already exists")
    coupon = repo.create(data)
    AuditService(db).log_create(
        resource_type=RESOURCE_TYPE,
        resource_id=coupon.id,  # type: ignore[arg-type]
        actor_type="admin",
        actor_id=admin.id,
        data=_audit_snapshot(coupon),
    )
    return coupon


@router.get(
    "/",
    response_model=list[CouponWithUsageResponse],
    summary="List coupons with usage totals",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def list_coupons(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    order_by: str | None = Query(default=None),
    is_active: bool | None = None,
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> list[CouponWithUsageResponse]:
    """List coupons, each with the number of recorded redemptions."""
    repo = CouponRepository(db)
    response.headers["X-Total-Count"] = str(repo.count(is_active=is_active))
    rows = repo.get_all_with_usage_counts(
        skip=skip, limit=limit, is_active=is_active, order_by=order_by
    )
    return [
        CouponWithUsageResponse.model_validate(coupon).model_copy(update={"total_usages": total})
        for coupon, total in rows
    ]


@router.get(
    "/{coupon_id}",
    response_model=CouponResponse,
    summary="Get coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
    },
)
async def get_coupon(
    coupon_id: UUID,
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> Coupon:
    """Get a coupon by ID."""
    coupon = CouponRepository(db).get_by_id(coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return coupon


@router.put(
    "/{coupon_id}",
    response_model=CouponResponse,
    summary="Update coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
        409: {"description": "Coupon with this code already exists"},
        422: {"description": "Validation error"},
    },
)
async def update_coupon(
    coupon_id: UUID,
    data: CouponUpdate,
    db: Session = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> Coupon:
    """Update a coupon by ID."""
    repo = CouponRepository(db)
    coupon = repo.get_by_id(coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")

    if data.code and data.code != coupon.code and repo.code_exists(data.code):
        raise HTTPException(status_code=409, detail="Coupon with this code already exists")
    _check_update_rules(coupon, data)

    before = _audit_snapshot(coupon)
    updated = repo.update(coupon_id, data)
    if not updated:
        raise HTTPException(status_code=404, detail="Coupon not found")
    AuditService(db).log_update(
        resource_type=RESOURCE_TYPE,
        resource_id=coupon_id,
        actor_type="admin",
        actor_id=admin.id,
        old_data=before,
        new_data=_audit_snapshot(updated),
    )
    return updated


@router.delete(
    "/{coupon_id}",
    status_code=204,
    summary="Delete coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
        409: {"description": "Coupon has usage receipts and cannot be permanently deleted"},
    },
)
async def delete_coupon(
    coupon_id: UUID,
    permanent: bool = Query(default=False),
    db: Session = Depends(get_db),
    admin: AuthenticatedUser = Depends(require_admin),
) -> None:
    """Deactivate a coupon, or remove it outright when it was never redeemed."""
    repo = CouponRepository(db)
    coupon = repo.get_by_id(coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    snapshot = _audit_snapshot(coupon)

    if permanent:
        try:
            repo.hard_delete(coupon_id)
        except CouponInUseError:
            raise HTTPException(
                status_code=409,
                detail="Coupon has usage receipts and cannot be permanently deleted",
            ) from None
    else:
        repo.delete(coupon_id)

    AuditService(db).log_delete(
        resource_type=RESOURCE_TYPE,
        resource_id=coupon_id,
        actor_type="admin",
        actor_id=admin.id,
        data=snapshot,
        permanent=permanent,
    )


@router.get(
    "/{coupon_id}/usages",
    response_model=list[CouponUsageResponse],
    summary="List coupon usage receipts",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
    },
)
async def list_coupon_usages(
    coupon_id: UUID,
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> list[CouponUsage]:
    """List the redemptions recorded for a coupon, newest first."""
    if not CouponRepository(db).get_by_id(coupon_id):
        raise HTTPException(status_code=404, detail="Coupon not found")
    usage_repo = CouponUsageRepository(db)
    response.headers["X-Total-Count"] = str(usage_repo.count_by_coupon(coupon_id))
    return usage_repo.get_all_by_coupon_id(coupon_id, skip=skip, limit=limit)


@router.get(
    "/{coupon_id}/audit_logs",
    response_model=list[AuditLogResponse],
    summary="Get coupon change history",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def list_coupon_audit_logs(
    coupon_id: UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> list[AuditLog]:
    """Admin changes recorded for a coupon, including deleted ones."""
    return AuditLogRepository(db).get_by_resource(
        RESOURCE_TYPE, coupon_id, skip=skip, limit=limit
    )
