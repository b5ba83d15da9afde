import logging
from typing import Any

from arq import cron

from storefront.core.config import settings
from storefront.core.database import SessionLocal
from storefront.services.coupon_usage_service import CouponUsageService
from storefront.tasks import redis_settings

logger = logging.getLogger(__name__)


async def reconcile_coupon_usage_task(ctx: dict[str, Any], fix: bool | None = None) -> int:
    """Background task: compare coupon usage counters with their receipts.

    Runs hourly. A mismatch means a redemption was counted but its receipt
    was lost (or the reverse). Counters are only rewritten when ``fix`` is
    set, or COUPON_RECONCILE_AUTOFIX is enabled for scheduled runs.
    """
    if fix is None:
        fix = settings.COUPON_RECONCILE_AUTOFIX
    db = SessionLocal()
    try:
        service = CouponUsageService(db)
        mismatches = service.reconcile_usage_counts(fix=fix)
        if mismatches:
            logger.info(
                "Found %d coupon usage mismatches (fixed=%s)", len(mismatches), fix
            )
        return len(mismatches)
    finally:
        db.close()


class WorkerSettings:
    functions = [reconcile_coupon_usage_task]
    cron_jobs = [
        cron(reconcile_coupon_usage_task, minute={0}),  # hourly
    ]
    redis_settings = redis_settings
