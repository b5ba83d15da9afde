from storefront.models.audit_log import AuditLog
from storefront.models.coupon import Coupon, DiscountType
from storefront.models.coupon_usage import CouponUsage

__all__ = [
    "AuditLog",
    "Coupon",
    "CouponUsage",
    "DiscountType",
]
