"""Security helpers: order visibility scoping and object-level access checks."""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import exists, false, or_, true
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from .enums import PermissionScope
from .models import Order, OrderHistory, User

_UNRESTRICTED_SCOPES = frozenset({PermissionScope.ALL, PermissionScope.ALL_VIEW})

# Broad scopes compare one order column with the actor's matching primary anchor.
_BROAD_SCOPE_COLUMNS: dict[PermissionScope, str] = {
    PermissionScope.DEPARTMENT: "department_id",
    PermissionScope.BRANCH: "branch_id",
    PermissionScope.OTDEL: "otdel_id",
    PermissionScope.OFFICE: "office_id",
}

_BROAD_SCOPE_ORDER = (
    PermissionScope.DEPARTMENT,
    PermissionScope.BRANCH,
    PermissionScope.OTDEL,
    PermissionScope.OFFICE,
)


def _own_condition(actor: User) -> ColumnElement[bool]:
    """Creator, current executor, or anyone who ever acted on the order."""
    participated = exists().where(
        OrderHistory.order_id == Order.id,
        OrderHistory.user_id == actor.id,
    )
    return or_(
        Order.creator_id == actor.id,
        Order.executor_id == actor.id,
        participated,
    )


def _check_known_scopes(scopes: Iterable[PermissionScope]) -> None:
    known = _UNRESTRICTED_SCOPES | set(_BROAD_SCOPE_COLUMNS) | {PermissionScope.OWN}
    for scope in scopes:
        if scope not in known:
            raise ValueError(f"Unhandled permission scope: {scope!r}")


def compile_order_scope_predicate(actor: User, scopes: Iterable[PermissionScope]) -> ColumnElement[bool]:
    """Compile granted scopes into a row predicate over Order.

    All/AllView lift the restriction; broad scopes are OR'ed; Own applies only
    when no broad scope produced a condition; nothing at all fails closed.
    """
    granted = frozenset(scopes)
    _check_known_scopes(granted)

    if granted & _UNRESTRICTED_SCOPES:
        return true()

    conditions: list[ColumnElement[bool]] = []
    for scope in _BROAD_SCOPE_ORDER:
        if scope not in granted:
            continue
        column_name = _BROAD_SCOPE_COLUMNS[scope]
        anchor = getattr(actor, column_name)
        # An actor without that anchor gets no condition (never "column IS NULL").
        if anchor is not None:
            conditions.append(getattr(Order, column_name) == anchor)

    if not conditions and PermissionScope.OWN in granted:
        conditions.append(_own_condition(actor))

    if not conditions:
        return false()
    if len(conditions) == 1:
        return conditions[0]
    return or_(*conditions)


def apply_order_visibility_scope(query: Any, actor: User, scopes: Iterable[PermissionScope]):
    """Apply order visibility policy to a SQLAlchemy query (AND-composed with its filters)."""
    return query.filter(compile_order_scope_predicate(actor, scopes))


def can_access_order(db: Session, order_id: int, actor: User, scopes: Iterable[PermissionScope]) -> bool:
    """Object-level order access check (used for IDOR prevention)."""
    query = db.query(Order.id).filter(Order.id == order_id, Order.deleted_at.is_(None))
    return apply_order_visibility_scope(query, actor, scopes).first() is not None
