"""Tests for AuditLog model, AuditLogRepository, and AuditService."""

from uuid import uuid4

import pytest

from storefront.repositories.audit_log_repository import AuditLogRepository
from storefront.schemas.audit_log import AuditLogResponse
from storefront.services.audit_service import AuditService


@pytest.fixture
def repo(db_session):
    """Create an AuditLogRepository instance."""
    return AuditLogRepository(db_session)


@pytest.fixture
def service(db_session):
    """Create an AuditService instance."""
    return AuditService(db_session)


class TestAuditLogRepository:
    def test_create(self, repo):
        resource_id = uuid4()
        log = repo.create(
            resource_type="coupon",
            resource_id=resource_id,
            action="created",
            changes={"code": "SAVE10"},
            actor_type="admin",
            actor_id="admin-1",
            metadata={"source": "test"},
        )
        assert log.id is not None
        assert log.resource_id == resource_id
        assert log.metadata_ == {"source": "test"}
        assert log.created_at is not None

    def test_get_by_resource_filters(self, repo):
        coupon_id = uuid4()
        for action in ("created", "updated", "updated"):
            repo.create(
                resource_type="coupon",
                resource_id=coupon_id,
                action=action,
                changes={},
                actor_type="admin",
            )
        repo.create(
            resource_type="coupon",
            resource_id=uuid4(),
            action="created",
            changes={},
            actor_type="admin",
        )

        assert len(repo.get_by_resource("coupon", coupon_id)) == 3
        assert len(repo.get_by_resource("coupon", coupon_id, action="updated")) == 2
        assert len(repo.get_by_resource("coupon", coupon_id, limit=1)) == 1
        assert repo.get_by_resource("order", coupon_id) == []

    def test_response_schema(self, repo):
        log = repo.create(
            resource_type="coupon",
            resource_id=uuid4(),
            action="deleted",
            changes={},
            actor_type="admin",
            metadata={"permanent": True},
        )
        response = AuditLogResponse.model_validate(log)
        assert response.metadata == {"permanent": True}
        assert response.action == "deleted"


class TestAuditService:
    def test_log_create(self, service, repo):
        resource_id = uuid4()
        service.log_create("coupon", resource_id, actor_type="admin", data={"code": "X"})

        [log] = repo.get_by_resource("coupon", resource_id)
        assert log.action == "created"
        assert log.changes == {"code": "X"}
        assert log.actor_type == "admin"

    def test_log_create_defaults_to_system(self, service, repo):
        resource_id = uuid4()
        service.log_create("coupon", resource_id)

        [log] = repo.get_by_resource("coupon", resource_id)
        assert log.actor_type == "system"
        assert log.changes == {}

    def test_log_update_diffs_fields(self, service, repo):
        resource_id = uuid4()
        service.log_update(
            "coupon",
            resource_id,
            old_data={"name": "Old", "usage_limit": 5, "is_active": True},
            new_data={"name": "New", "usage_limit": 5, "is_active": False},
        )

        [log] = repo.get_by_resource("coupon", resource_id)
        assert log.action == "updated"
        assert log.changes == {
            "is_active": {"old": True, "new": False},
            "name": {"old": "Old", "new": "New"},
        }

    def test_log_update_skips_noop(self, service, repo):
        resource_id = uuid4()
        service.log_update("coupon", resource_id, old_data={"a": 1}, new_data={"a": 1})
        assert repo.get_by_resource("coupon", resource_id) == []

    def test_log_update_added_field(self, service, repo):
        resource_id = uuid4()
        service.log_update("coupon", resource_id, old_data={}, new_data={"usage_limit": 3})

        [log] = repo.get_by_resource("coupon", resource_id)
        assert log.changes == {"usage_limit": {"old": None, "new": 3}}

    @pytest.mark.parametrize("permanent", [False, True])
    def test_log_delete(self, service, repo, permanent):
        resource_id = uuid4()
        service.log_delete(
            "coupon", resource_id, actor_type="admin", data={"code": "X"}, permanent=permanent
        )

        [log] = repo.get_by_resource("coupon", resource_id)
        assert log.action == "deleted"
        assert log.changes == {"code": "X"}
        assert log.metadata_ == {"permanent": permanent}
