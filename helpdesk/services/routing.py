"""Order routing: pick the responsible employee for an order.

Two steps, both pure reads of the current table state:

1. the most specific active RoutingRule for the order type whose org fields
   all match the order's context (more populated fields wins, then lowest id);
2. the earliest-created active user holding a position of the rule's type
   anchored to the order's context, with MANAGER as the only substitute.

There is no walk up the org tree: if nobody qualifies at the
order's own level the order stays unassigned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import and_, case, exists, or_
from sqlalchemy.orm import Session

from ..enums import FALLBACK_POSITION_TYPE, PositionType, UserStatus
from ..models import Position, RoutingRule, User, UserOtdel, UserPosition
from ..schemas import OrgContext

logger = logging.getLogger(__name__)

_RULE_SCOPE_COLUMNS = ("department_id", "otdel_id", "branch_id", "office_id")


@dataclass(frozen=True)
class RoutingResult:
    user_id: int
    rule_id: int
    position_type: PositionType
    used_fallback: bool


def rule_specificity():
    """SQL expression counting the populated org fields of a rule."""
    return sum(
        case((getattr(RoutingRule, column).isnot(None), 1), else_=0)
        for column in _RULE_SCOPE_COLUMNS
    )


def select_routing_rule(db: Session, order_type_id: int, ctx: OrgContext) -> RoutingRule | None:
    """Most specific active rule whose populated org fields all equal the context's."""
    query = db.query(RoutingRule).filter(
        RoutingRule.order_type_id == order_type_id,
        RoutingRule.is_active.is_(True),
    )
    for column_name in _RULE_SCOPE_COLUMNS:
        column = getattr(RoutingRule, column_name)
        value = getattr(ctx, column_name)
        if value is None:
            # A rule that names a unit the order does not have cannot match.
            query = query.filter(column.is_(None))
        else:
            query = query.filter(or_(column.is_(None), column == value))

    return query.order_by(rule_specificity().desc(), RoutingRule.id.asc()).first()


def _anchor_conditions(ctx: OrgContext) -> list:
    """Anchor filters for a (User, Position) pair.

    A populated position field must equal the context value; an empty one
    defers to the user's own anchors (for otdel also the held memberships).
    """
    conditions = []

    if ctx.department_id is not None:
        conditions.append(or_(
            Position.department_id == ctx.department_id,
            and_(Position.department_id.is_(None), User.department_id == ctx.department_id),
        ))
        if ctx.otdel_id is not None:
            holds_otdel = exists().where(
                UserOtdel.user_id == User.id,
                UserOtdel.otdel_id == ctx.otdel_id,
            )
            conditions.append(or_(
                Position.otdel_id == ctx.otdel_id,
                and_(
                    Position.otdel_id.is_(None),
                    or_(User.otdel_id == ctx.otdel_id, holds_otdel),
                ),
            ))

    if ctx.branch_id is not None:
        conditions.append(or_(
            Position.branch_id == ctx.branch_id,
            and_(Position.branch_id.is_(None), User.branch_id == ctx.branch_id),
        ))
        if ctx.office_id is not None:
            conditions.append(or_(
                Position.office_id == ctx.office_id,
                and_(Position.office_id.is_(None), User.office_id == ctx.office_id),
            ))

    return conditions


def find_candidate(db: Session, position_type: PositionType, ctx: OrgContext) -> User | None:
    """Earliest-created active user holding an active position of exactly this type in the context."""
    return (
        db.query(User)
        .join(UserPosition, UserPosition.user_id == User.id)
        .join(Position, Position.id == UserPosition.position_id)
        .filter(
            User.status == UserStatus.ACTIVE.value,
            Position.is_active.is_(True),
            Position.type == position_type.value,
            *_anchor_conditions(ctx),
        )
        .order_by(User.created_at.asc(), User.id.asc())
        .first()
    )


def resolve_assignee(db: Session, order_type_id: int, ctx: OrgContext) -> RoutingResult | None:
    """Resolve the executor for an order, or None when nobody qualifies."""
    rule = select_routing_rule(db, order_type_id, ctx)
    if rule is None:
        logger.info("routing.no_rule order_type=%s context=%s", order_type_id, ctx.populated_fields())
        return None

    required = PositionType(rule.position_type)
    search_chain = [required]
    if required != FALLBACK_POSITION_TYPE:
        search_chain.append(FALLBACK_POSITION_TYPE)

    logger.debug("routing.rule_selected rule=%s position_type=%s", rule.id, required.value)

    for position_type in search_chain:
        user = find_candidate(db, position_type, ctx)
        if user is not None:
            used_fallback = position_type != required
            logger.info(
                "routing.assignee_found rule=%s user=%s position_type=%s fallback=%s",
                rule.id,
                user.id,
                position_type.value,
                used_fallback,
            )
            return RoutingResult(
                user_id=user.id,
                rule_id=rule.id,
                position_type=position_type,
                used_fallback=used_fallback,
            )
        logger.debug("routing.position_vacant rule=%s position_type=%s", rule.id, position_type.value)

    logger.warning(
        "routing.no_assignee rule=%s position_type=%s context=%s",
        rule.id,
        required.value,
        ctx.populated_fields(),
    )
    return None
