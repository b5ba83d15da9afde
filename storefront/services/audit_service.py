"""Audit service for recording admin changes to coupons."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from storefront.repositories.audit_log_repository import AuditLogRepository


class AuditService:
    """Service for recording audit trail entries."""

    def __init__(self, db: Session):
        self.repo = AuditLogRepository(db)

    def log_create(
        self,
        resource_type: str,
        resource_id: UUID,
        actor_type: str = "system",
        actor_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Log a resource creation event."""
        self.repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            action="created",
            changes=data or {},
            actor_type=actor_type,
            actor_id=actor_id,
        )

    def log_update(
        self,
        resource_type: str,
        resource_id: UUID,
        actor_type: str = "system",
        actor_id: str | None = None,
        old_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
    ) -> None:
        """Log a resource update event, auto-diffing changed fields."""
        old = old_data or {}
        new = new_data or {}
        changes = {
            key: {"old": old.get(key), "new": new.get(key)}
            for key in sorted(set(old) | set(new))
            if old.get(key) != new.get(key)
        }
        if not changes:
            return
        self.repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            action="updated",
            changes=changes,
            actor_type=actor_type,
            actor_id=actor_id,
        )

    def log_delete(
        self,
        resource_type: str,
        resource_id: UUID,
        actor_type: str = "system",
        actor_id: str | None = None,
        data: dict[str, Any] | None = None,
        permanent: bool = False,
    ) -> None:
        """Log a soft or permanent deletion, keeping a snapshot of the record."""
        self.repo.create(
            resource_type=resource_type,
            resource_id=resource_id,
            action="deleted",
            changes=data or {},
            actor_type=actor_type,
            actor_id=actor_id,
            metadata={"permanent": permanent},
        )
