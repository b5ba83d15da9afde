"""Shared sorting utilities for repository queries."""

from __future__ import annotations

from collections.abc import Collection

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query

from storefront.core.database import Base


def apply_order_by(
    query: Query,  # type: ignore[type-arg]
    model: type[Base],
    order_by: str | None,
    allowed_fields: Collection[str] | None = None,
    default_field: str = "created_at",
    default_direction: str = "desc",
) -> Query:  # type: ignore[type-arg]
    """Apply ordering to a SQLAlchemy query.

    Args:
        query: The SQLAlchemy query to sort.
        model: The SQLAlchemy model class.
        order_by: Sort string in "field:direction" format (e.g. "code:asc").
            Unknown fields fall back to the default ordering.
        allowed_fields: Columns callers may sort on. Any mapped column when None.
        default_field: Default column to sort by.
        default_direction: Default sort direction ("asc" or "desc").
    """
    field, direction = default_field, default_direction

    if order_by:
        name, _, requested_direction = order_by.partition(":")
        permitted = allowed_fields is None or name in allowed_fields
        if permitted and name in model.__table__.columns:
            field = name
            direction = requested_direction if requested_direction in ("asc", "desc") else "asc"

    order_func = asc if direction == "asc" else desc
    return query.order_by(order_func(getattr(model, field)))
