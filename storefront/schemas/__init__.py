from storefront.schemas.audit_log import AuditLogResponse
from storefront.schemas.coupon import (
    ApplyCouponRequest,
    CartLine,
    CouponCreate,
    CouponErrorCode,
    CouponResponse,
    CouponUpdate,
    CouponUsageResponse,
    CouponValidationResult,
    CouponWithUsageResponse,
    DiscountBreakdown,
    ValidateCouponRequest,
)

__all__ = [
    "ApplyCouponRequest",
    "AuditLogResponse",
    "CartLine",
    "CouponCreate",
    "CouponErrorCode",
    "CouponResponse",
    "CouponUpdate",
    "CouponUsageResponse",
    "CouponValidationResult",
    "CouponWithUsageResponse",
    "DiscountBreakdown",
    "ValidateCouponRequest",
]
