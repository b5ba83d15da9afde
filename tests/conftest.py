"""Shared test fixtures for all test modules."""

import contextlib
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import storefront.models  # noqa: F401
from storefront.core import database as db_module
from storefront.core.auth import ADMIN_ROLE, create_access_token
from storefront.core.database import Base, get_db
from storefront.models.coupon import Coupon, DiscountType
from storefront.repositories.coupon_repository import CouponRepository
from storefront.routers.coupons import validation_rate_limiter
from storefront.schemas.coupon import CouponCreate

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

ADMIN_USER_ID = "admin-1"
CUSTOMER_USER_ID = "customer-1"


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Give every test a fresh coupon validation budget."""
    validation_rate_limiter.reset()
    yield
    validation_rate_limiter.reset()


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def test_session_factory():
    """Session factory bound to the in-memory test database."""
    return _TestSessionLocal


@pytest.fixture
def admin_headers():
    token = create_access_token(ADMIN_USER_ID, role=ADMIN_ROLE, email="ops@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    token = create_access_token(CUSTOMER_USER_ID, email="shopper@example.com")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_coupon(db_session):
    """Factory that persists a coupon valid from yesterday until tomorrow."""

    def _make(**overrides):
        now = datetime.now(UTC)
        fields = {
            "code": "SAVE10",
            "name": "Save 10%",
            "discount_type": DiscountType.PERCENTAGE,
            "discount_value": Decimal("10"),
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=1),
        }
        fields.update(overrides)
        return CouponRepository(db_session).create(CouponCreate(**fields))

    return _make


@pytest.fixture
def force_usage_count(db_session):
    """Overwrite a coupon's usage_count to simulate counter drift."""

    def _force(coupon_id, usage_count):
        db_session.query(Coupon).filter(Coupon.id == coupon_id).update(
            {Coupon.usage_count: usage_count}, synchronize_session=False
        )
        db_session.commit()

    return _force
