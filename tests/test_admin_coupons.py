"""Tests for the back-office coupon management API."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from storefront.main import app
from storefront.services.coupon_usage_service import CouponUsageService

BASE = "/v1/admin/coupons"


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


def _payload(**overrides):
    now = datetime.now(UTC)
    data = {
        "code": "welcome15",
        "name": "Welcome 15%",
        "description": "First order discount",
        "discount_type": "percentage",
        "discount_value": "15",
        "maximum_discount_amount": "25",
        "usage_limit": 100,
        "user_usage_limit": 1,
        "applicable_categories": ["Spices"],
        "valid_from": (now - timedelta(days=1)).isoformat(),
        "valid_until": (now + timedelta(days=30)).isoformat(),
    }
    data.update(overrides)
    return data


def _create(client, headers, **overrides):
    response = client.post(f"{BASE}/", json=_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestAdminAuth:
    def test_requires_token(self, client):
        assert client.get(f"{BASE}/").status_code == 401

    def test_requires_admin_role(self, client, customer_headers):
        response = client.post(f"{BASE}/", json=_payload(), headers=customer_headers)
        assert response.status_code == 403


class TestCreateCoupon:
    def test_create(self, client, admin_headers):
        data = _create(client, admin_headers)

        assert data["code"] == "WELCOME15"
        assert data["discount_type"] == "percentage"
        assert Decimal(data["discount_value"]) == Decimal("15")
        assert Decimal(data["maximum_discount_amount"]) == Decimal("25")
        assert data["usage_count"] == 0
        assert data["user_usage_limit"] == 1
        assert data["applicable_categories"] == ["Spices"]
        assert data["is_active"] is True
        assert data["deleted_at"] is None

    def test_duplicate_code_in_any_case(self, client, admin_headers):
        _create(client, admin_headers)
        response = client.post(f"{BASE}/", json=_payload(code="WELCOME15"), headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["detail"] == "Coupon with this code already exists"

    def test_code_of_deleted_coupon_stays_reserved(self, client, admin_headers):
        created = _create(client, admin_headers)
        client.delete(f"{BASE}/{created['id']}", headers=admin_headers)
        response = client.post(f"{BASE}/", json=_payload(), headers=admin_headers)
        assert response.status_code == 409

    def test_percentage_over_100(self, client, admin_headers):
        response = client.post(
            f"{BASE}/", json=_payload(discount_value="120"), headers=admin_headers
        )
        assert response.status_code == 422

    def test_inverted_window(self, client, admin_headers):
        now = datetime.now(UTC)
        response = client.post(
            f"{BASE}/",
            json=_payload(
                valid_from=now.isoformat(), valid_until=(now - timedelta(days=1)).isoformat()
            ),
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_free_shipping(self, client, admin_headers):
        data = _create(
            client,
            admin_headers,
            code="SHIPFREE",
            discount_type="free_shipping",
            discount_value="5",
        )
        assert Decimal(data["discount_value"]) == Decimal("0")

    def test_unknown_discount_type(self, client, admin_headers):
        response = client.post(
            f"{BASE}/", json=_payload(discount_type="bogo"), headers=admin_headers
        )
        assert response.status_code == 422


class TestListCoupons:
    def test_list_with_usage_totals(self, client, admin_headers, db_session):
        _create(client, admin_headers, code="AAA")
        _create(client, admin_headers, code="BBB", user_usage_limit=None)
        usage = CouponUsageService(db_session)
        usage.apply("BBB", "u1", "ord-1", Decimal("1"))
        usage.apply("BBB", "u2", "ord-2", Decimal("1"))

        response = client.get(f"{BASE}/?order_by=code:asc", headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        rows = response.json()
        assert [(row["code"], row["total_usages"]) for row in rows] == [("AAA", 0), ("BBB", 2)]
        assert rows[1]["usage_count"] == 2

    def test_filter_by_active(self, client, admin_headers):
        _create(client, admin_headers, code="ON")
        _create(client, admin_headers, code="OFF", is_active=False)

        response = client.get(f"{BASE}/?is_active=false", headers=admin_headers)
        assert response.headers["X-Total-Count"] == "1"
        assert [row["code"] for row in response.json()] == ["OFF"]

    def test_pagination(self, client, admin_headers):
        for code in ("C1", "C2", "C3"):
            _create(client, admin_headers, code=code)

        response = client.get(f"{BASE}/?order_by=code:asc&skip=1&limit=1", headers=admin_headers)
        assert response.headers["X-Total-Count"] == "3"
        assert [row["code"] for row in response.json()] == ["C2"]

    def test_deleted_coupons_hidden(self, client, admin_headers):
        created = _create(client, admin_headers)
        client.delete(f"{BASE}/{created['id']}", headers=admin_headers)

        response = client.get(f"{BASE}/", headers=admin_headers)
        assert response.json() == []
        assert response.headers["X-Total-Count"] == "0"


class TestGetAndUpdateCoupon:
    def test_get(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.get(f"{BASE}/{created['id']}", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["code"] == "WELCOME15"

    def test_get_not_found(self, client, admin_headers):
        response = client.get(f"{BASE}/{uuid4()}", headers=admin_headers)
        assert response.status_code == 404

    def test_update(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}",
            json={"name": "Welcome back", "code": "back15", "applicable_categories": []},
            headers=admin_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Welcome back"
        assert data["code"] == "BACK15"
        assert data["applicable_categories"] is None

    def test_update_duplicate_code(self, client, admin_headers):
        _create(client, admin_headers, code="TAKEN")
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}", json={"code": "taken"}, headers=admin_headers
        )
        assert response.status_code == 409

    def test_update_keeps_own_code(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}", json={"code": "welcome15"}, headers=admin_headers
        )
        assert response.status_code == 200

    def test_update_percentage_over_100(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}", json={"discount_value": "150"}, headers=admin_headers
        )
        assert response.status_code == 422

    def test_update_window_checked_against_stored_values(self, client, admin_headers):
        created = _create(client, admin_headers)
        past = (datetime.now(UTC) - timedelta(days=10)).isoformat()
        response = client.put(
            f"{BASE}/{created['id']}", json={"valid_until": past}, headers=admin_headers
        )
        assert response.status_code == 422

    def test_usage_limit_below_usage_count(self, client, admin_headers, db_session):
        created = _create(client, admin_headers, user_usage_limit=None)
        usage = CouponUsageService(db_session)
        usage.apply("WELCOME15", "u1", "ord-1", Decimal("1"))
        usage.apply("WELCOME15", "u2", "ord-2", Decimal("1"))

        response = client.put(
            f"{BASE}/{created['id']}", json={"usage_limit": 1}, headers=admin_headers
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("field", ["name", "valid_until", "discount_type", "is_active"])
    def test_update_null_required_field(self, client, admin_headers, field):
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}", json={field: None}, headers=admin_headers
        )
        assert response.status_code == 422
        stored = client.get(f"{BASE}/{created['id']}", headers=admin_headers).json()
        assert stored[field] is not None

    def test_update_clears_optional_limit(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.put(
            f"{BASE}/{created['id']}", json={"usage_limit": None}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["usage_limit"] is None

    def test_update_not_found(self, client, admin_headers):
        response = client.put(f"{BASE}/{uuid4()}", json={"name": "x"}, headers=admin_headers)
        assert response.status_code == 404


class TestDeleteCoupon:
    def test_soft_delete(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.delete(f"{BASE}/{created['id']}", headers=admin_headers)

        assert response.status_code == 204
        assert client.get(f"{BASE}/{created['id']}", headers=admin_headers).status_code == 404

    def test_soft_deleted_coupon_no_longer_validates(self, client, admin_headers):
        created = _create(client, admin_headers, applicable_categories=None)
        client.delete(f"{BASE}/{created['id']}", headers=admin_headers)

        body = {
            "code": "WELCOME15",
            "cart_lines": [{"product_id": "p1", "quantity": 1, "unit_price": "20"}],
        }
        result = client.post("/v1/coupons/validate", json=body).json()
        assert result["reason"] == "NOT_FOUND"

    def test_permanent_delete_unused(self, client, admin_headers):
        created = _create(client, admin_headers)
        response = client.delete(
            f"{BASE}/{created['id']}?permanent=true", headers=admin_headers
        )
        assert response.status_code == 204
        # Code is free again once the row is gone
        _create(client, admin_headers)

    def test_permanent_delete_refused_with_receipts(self, client, admin_headers, db_session):
        created = _create(client, admin_headers)
        CouponUsageService(db_session).apply("WELCOME15", "u1", "ord-1", Decimal("1"))

        response = client.delete(
            f"{BASE}/{created['id']}?permanent=true", headers=admin_headers
        )
        assert response.status_code == 409
        assert client.get(f"{BASE}/{created['id']}", headers=admin_headers).status_code == 200

    def test_delete_not_found(self, client, admin_headers):
        assert client.delete(f"{BASE}/{uuid4()}", headers=admin_headers).status_code == 404


class TestCouponUsagesAndAudit:
    def test_list_usages(self, client, admin_headers, db_session):
        created = _create(client, admin_headers, user_usage_limit=None)
        usage = CouponUsageService(db_session)
        usage.apply("WELCOME15", "u1", "ord-1", Decimal("2.50"))
        usage.apply("WELCOME15", None, "ord-2", Decimal("3"))

        response = client.get(f"{BASE}/{created['id']}/usages", headers=admin_headers)
        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        assert {row["order_id"] for row in response.json()} == {"ord-1", "ord-2"}

    def test_list_usages_unknown_coupon(self, client, admin_headers):
        response = client.get(f"{BASE}/{uuid4()}/usages", headers=admin_headers)
        assert response.status_code == 404

    def test_audit_trail(self, client, admin_headers):
        created = _create(client, admin_headers)
        client.put(f"{BASE}/{created['id']}", json={"name": "Renamed"}, headers=admin_headers)
        client.delete(f"{BASE}/{created['id']}", headers=admin_headers)

        response = client.get(f"{BASE}/{created['id']}/audit_logs", headers=admin_headers)
        assert response.status_code == 200
        entries = {entry["action"]: entry for entry in response.json()}

        assert set(entries) == {"created", "updated", "deleted"}
        assert entries["created"]["actor_type"] == "admin"
        assert entries["created"]["actor_id"] == "admin-1"
        assert entries["created"]["changes"]["code"] == "WELCOME15"
        assert entries["updated"]["changes"] == {
            "name": {"old": "Welcome 15%", "new": "Renamed"}
        }
        assert entries["deleted"]["metadata"] == {"permanent": False}

    def test_noop_update_not_audited(self, client, admin_headers):
        created = _create(client, admin_headers)
        client.put(f"{BASE}/{created['id']}", json={"name": "Welcome 15%"}, headers=admin_headers)

        response = client.get(f"{BASE}/{created['id']}/audit_logs", headers=admin_headers)
        assert [entry["action"] for entry in response.json()] == ["created"]
