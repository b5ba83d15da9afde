from storefront.repositories.audit_log_repository import AuditLogRepository
from storefront.repositories.coupon_repository import CouponRepository
from storefront.repositories.coupon_usage_repository import CouponUsageRepository

__all__ = [
    "AuditLogRepository",
    "CouponRepository",
    "CouponUsageRepository",
]
