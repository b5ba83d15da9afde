"""Checkout-facing coupon endpoints: validate, apply, and receipt lookup."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.auth import AuthenticatedUser, get_optional_user, require_admin
from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.core.rate_limiter import RateLimiter
from storefront.models.coupon_usage import CouponUsage
from storefront.schemas.coupon import (
    ApplyCouponRequest,
    CouponUsageResponse,
    CouponValidationResult,
    ValidateCouponRequest,
)
from storefront.services.coupon_usage_service import (
    CouponNotFoundError,
    CouponUsageLimitReachedError,
    CouponUsageRecordError,
    CouponUsageService,
    OrderCouponConflictError,
)
from storefront.services.coupon_validation_service import CouponValidationService

logger = logging.getLogger(__name__)

router = APIRouter()

# Module-level limiter so code guessing is bounded per caller
validation_rate_limiter = RateLimiter(
    max_requests=settings.RATE_LIMIT_COUPON_VALIDATIONS_PER_MINUTE,
    window_seconds=60,
)

TRY_AGAIN = "Coupon service is temporarily unavailable, please try again"


def _check_rate_limit(
    request: Request,
    user: AuthenticatedUser | None = Depends(get_optional_user),
) -> AuthenticatedUser | None:
    """Dependency that limits validation attempts per user or client address."""
    if user is not None:
        key = f"user:{user.id}"
    else:
        key = f"ip:{request.client.host if request.client else 'unknown'}"
    if not validation_rate_limiter.is_allowed(key):
        raise HTTPException(
            status_code=429,
            detail="Too many coupon attempts. Maximum "
            f"{settings.RATE_LIMIT_COUPON_VALIDATIONS_PER_MINUTE} per minute.",
            headers={"Retry-After": str(validation_rate_limiter.retry_after(key))},
        )
    return user


@router.post(
    "/validate",
    response_model=CouponValidationResult,
    summary="Validate coupon against a cart",
    responses={
        401: {"description": "Invalid access token"},
        429: {"description": "Too many coupon attempts"},
        503: {"description": "Coupon store unavailable"},
    },
)
async def validate_coupon(
    data: ValidateCouponRequest,
    db: Session = Depends(get_db),
    user: AuthenticatedUser | None = Depends(_check_rate_limit),
) -> CouponValidationResult:
    """Check a coupon code against the shopper's cart and preview the discount.

    Rejections are returned with ``is_valid: false`` and a reason code.
    """
    service = CouponValidationService(db)
    try:
        return service.validate(
            code=data.code,
            user_id=user.id if user else None,
            cart_lines=data.cart_lines,
            subtotal=data.subtotal,
            shipping_amount=data.shipping_amount,
        )
    except SQLAlchemyError:
        logger.exception("Coupon validation failed for code %s", data.code)
        raise HTTPException(status_code=503, detail=TRY_AGAIN) from None


@router.post(
    "/apply",
    response_model=CouponUsageResponse,
    status_code=201,
    summary="Record coupon usage for an order",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
        409: {"description": "Usage limit reached or order already used another coupon"},
        503: {"description": "Usage could not be recorded"},
    },
)
async def apply_coupon(
    data: ApplyCouponRequest,
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> CouponUsage:
    """Record a redemption after the order has been created.

    Safe to retry: an order that already has a receipt for this coupon
    returns the existing receipt.
    """
    service = CouponUsageService(db)
    try:
        return service.apply(
            code=data.code,
            user_id=data.user_id,
            order_id=data.order_id,
            discount_amount=data.discount_amount,
        )
    except CouponNotFoundError:
        raise HTTPException(status_code=404, detail="Coupon not found") from None
    except CouponUsageLimitReachedError:
        raise HTTPException(status_code=409, detail="Coupon usage limit exceeded") from None
    except OrderCouponConflictError:
        raise HTTPException(
            status_code=409, detail="Order already redeemed a different coupon"
        ) from None
    except CouponUsageRecordError:
        raise HTTPException(status_code=503, detail=TRY_AGAIN) from None


@router.get(
    "/usages/{order_id}",
    response_model=CouponUsageResponse,
    summary="Get coupon usage for an order",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "No coupon usage recorded for this order"},
    },
)
async def get_order_usage(
    order_id: str,
    db: Session = Depends(get_db),
    _admin: AuthenticatedUser = Depends(require_admin),
) -> CouponUsage:
    """Look up the receipt recorded for an order before retrying apply."""
    usage = CouponUsageService(db).get_usage_for_order(order_id)
    if not usage:
        raise HTTPException(status_code=404, detail="No coupon usage recorded for this order")
    return usage
