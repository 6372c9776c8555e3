"""Typed order listing: filters and sort come from OrderListCriteria, values are always bound."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from ..domain_errors import validation_error
from ..models import Order, Priority, Status
from ..schemas import OrderListCriteria, OrderSortField, SortDirection


@dataclass(frozen=True)
class OrderQueryConfig:
    """Sorts a particular listing allows, and what it falls back to."""

    allowed_sorts: frozenset[OrderSortField]
    default_sort: OrderSortField = OrderSortField.CREATED_AT
    default_dir: SortDirection = SortDirection.DESC
    max_limit: int = 100


ORDER_LIST_CONFIG = OrderQueryConfig(allowed_sorts=frozenset(OrderSortField))


def _sort_column(sort_by: OrderSortField):
    if sort_by == OrderSortField.ID:
        return Order.id
    if sort_by == OrderSortField.CREATED_AT:
        return Order.created_at
    if sort_by == OrderSortField.UPDATED_AT:
        return Order.updated_at
    if sort_by == OrderSortField.DURATION:
        return Order.duration
    if sort_by == OrderSortField.PRIORITY:
        return Priority.rank
    if sort_by == OrderSortField.STATUS:
        return Status.name
    raise ValueError(f"Unhandled sort field: {sort_by!r}")


def _apply_filters(query: Query, criteria: OrderListCriteria, now: datetime) -> Query:
    if criteria.status_ids:
        query = query.filter(Order.status_id.in_(criteria.status_ids))
    if criteria.priority_ids:
        query = query.filter(Order.priority_id.in_(criteria.priority_ids))

    for column_name in (
        "order_type_id",
        "department_id",
        "otdel_id",
        "branch_id",
        "office_id",
        "executor_id",
        "creator_id",
    ):
        value = getattr(criteria, column_name)
        if value is not None:
            query = query.filter(getattr(Order, column_name) == value)

    if criteria.search:
        # autoescape: % and _ in the text match literally
        term = criteria.search.strip()
        query = query.filter(or_(
            Order.name.icontains(term, autoescape=True),
            Order.address.icontains(term, autoescape=True),
        ))

    if criteria.created_from is not None:
        query = query.filter(Order.created_at >= criteria.created_from)
    if criteria.created_to is not None:
        query = query.filter(Order.created_at < criteria.created_to)

    if criteria.overdue is True:
        query = query.filter(
            Order.duration.isnot(None),
            Order.duration < now,
            Status.is_final.is_(False),
        )
    elif criteria.overdue is False:
        query = query.filter(or_(
            Order.duration.is_(None),
            Order.duration >= now,
            Status.is_final.is_(True),
        ))
    return query


def build_order_list_query(
    db: Session,
    criteria: OrderListCriteria,
    config: OrderQueryConfig = ORDER_LIST_CONFIG,
    *,
    now: datetime | None = None,
) -> Query:
    """Unpaginated, unscoped base query for active orders matching the criteria.

    Callers add the visibility scope, then use `paginate_order_query`.
    """
    sort_by = criteria.sort_by or config.default_sort
    if sort_by not in config.allowed_sorts:
        raise validation_error(
            "ORDER_SORT_NOT_ALLOWED",
            "Sort field is not allowed for this listing",
            details={"sort_by": sort_by.value},
        )
    if criteria.limit > config.max_limit:
        raise validation_error(
            "ORDER_LIMIT_TOO_LARGE",
            "Page size exceeds the maximum for this listing",
            details={"limit": criteria.limit, "max_limit": config.max_limit},
        )

    query = (
        db.query(Order)
        .join(Status, Status.id == Order.status_id)
        .join(Priority, Priority.id == Order.priority_id)
        .filter(Order.deleted_at.is_(None))
    )
    query = _apply_filters(query, criteria, now or datetime.now(timezone.utc))
    return query


def paginate_order_query(
    query: Query,
    criteria: OrderListCriteria,
    config: OrderQueryConfig = ORDER_LIST_CONFIG,
) -> tuple[list[Order], int]:
    total = query.count()

    sort_by = criteria.sort_by or config.default_sort
    direction = criteria.sort_dir if criteria.sort_by else config.default_dir
    column = _sort_column(sort_by)
    primary = column.asc() if direction == SortDirection.ASC else column.desc()
    # id keeps pages stable when the sort column has ties
    tiebreak = Order.id.asc() if direction == SortDirection.ASC else Order.id.desc()

    items = query.order_by(primary, tiebreak).offset(criteria.offset).limit(criteria.limit).all()
    return items, total
