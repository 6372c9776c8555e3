"""Routing rule maintenance use-cases."""
from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import apply_operation_timeouts
from ..domain_errors import DomainError, conflict, domain_error_from_storage, not_found
from ..models import OrderType, RoutingRule
from ..schemas import (
    OrgContext,
    RoutingPreviewRequest,
    RoutingPreviewResponse,
    RoutingRuleCreate,
    RoutingRuleUpdate,
)
from ..services.org_registry import validate_org_context
from ..services.routing import resolve_assignee

logger = logging.getLogger(__name__)


def _get_rule_or_404(*, db: Session, rule_id: int) -> RoutingRule:
    rule = db.get(RoutingRule, rule_id)
    if rule is None:
        raise not_found("ROUTING_RULE_NOT_FOUND", "Routing rule not found", details={"id": rule_id})
    return rule


def _ensure_order_type(db: Session, order_type_id: int) -> None:
    if db.get(OrderType, order_type_id) is None:
        raise not_found("ORDER_TYPE_NOT_FOUND", "Order type not found", details={"id": order_type_id})


def _rule_scope(rule: RoutingRule) -> OrgContext:
    return OrgContext(
        department_id=rule.department_id,
        otdel_id=rule.otdel_id,
        branch_id=rule.branch_id,
        office_id=rule.office_id,
    )


def _ensure_unique_scope(
    *,
    db: Session,
    order_type_id: int,
    scope: OrgContext,
    exclude_id: int | None = None,
) -> None:
    """One rule per (order type, org scope); NULL fields compare as equal."""
    query = db.query(RoutingRule.id).filter(RoutingRule.order_type_id == order_type_id)
    for name, value in scope.model_dump().items():
        column = getattr(RoutingRule, name)
        query = query.filter(column.is_(None) if value is None else column == value)
    if exclude_id is not None:
        query = query.filter(RoutingRule.id != exclude_id)
    existing = query.first()
    if existing is not None:
        raise conflict(
            "ROUTING_RULE_DUPLICATE",
            "A routing rule for this order type and org scope already exists",
            details={"existing_id": existing[0]},
        )


def _commit(db: Session, *, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise domain_error_from_storage(exc, operation=operation) from exc


def list_routing_rules_use_case(
    *,
    db: Session,
    order_type_id: int | None = None,
    include_inactive: bool = False,
) -> list[RoutingRule]:
    query = db.query(RoutingRule)
    if order_type_id is not None:
        query = query.filter(RoutingRule.order_type_id == order_type_id)
    if not include_inactive:
        query = query.filter(RoutingRule.is_active.is_(True))
    return query.order_by(RoutingRule.order_type_id, RoutingRule.id).all()


def get_routing_rule_use_case(*, db: Session, rule_id: int) -> RoutingRule:
    return _get_rule_or_404(db=db, rule_id=rule_id)


def create_routing_rule_use_case(*, db: Session, data: RoutingRuleCreate) -> RoutingRule:
    try:
        apply_operation_timeouts(db)
        _ensure_order_type(db, data.order_type_id)
        validate_org_context(db, data.scope)
        _ensure_unique_scope(db=db, order_type_id=data.order_type_id, scope=data.scope)

        rule = RoutingRule(
            rule_name=data.rule_name,
            order_type_id=data.order_type_id,
            position_type=data.position_type.value,
            is_active=data.is_active,
            **data.scope.model_dump(),
        )
        db.add(rule)
    except DomainError:
        db.rollback()
        raise
    _commit(db, operation="routing_rule.create")
    db.refresh(rule)
    logger.info("routing_rule.created id=%s order_type=%s", rule.id, rule.order_type_id)
    return rule


def update_routing_rule_use_case(*, db: Session, rule_id: int, data: RoutingRuleUpdate) -> RoutingRule:
    try:
        apply_operation_timeouts(db)
        rule = _get_rule_or_404(db=db, rule_id=rule_id)

        order_type_id = data.order_type_id if data.order_type_id is not None else rule.order_type_id
        scope = data.scope if data.scope is not None else _rule_scope(rule)
        if data.order_type_id is not None:
            _ensure_order_type(db, data.order_type_id)
        if data.scope is not None:
            validate_org_context(db, data.scope)
        if data.order_type_id is not None or data.scope is not None:
            _ensure_unique_scope(db=db, order_type_id=order_type_id, scope=scope, exclude_id=rule.id)

        if data.rule_name is not None:
            rule.rule_name = data.rule_name
        if data.position_type is not None:
            rule.position_type = data.position_type.value
        if data.is_active is not None:
            rule.is_active = data.is_active
        rule.order_type_id = order_type_id
        for name, value in scope.model_dump().items():
            setattr(rule, name, value)
    except DomainError:
        db.rollback()
        raise
    _commit(db, operation="routing_rule.update")
    db.refresh(rule)
    return rule


def deactivate_routing_rule_use_case(*, db: Session, rule_id: int) -> RoutingRule:
    """Rules are switched off rather than deleted, so past routing stays explainable."""
    try:
        rule = _get_rule_or_404(db=db, rule_id=rule_id)
    except DomainError:
        db.rollback()
        raise
    if not rule.is_active:
        return rule
    rule.is_active = False
    _commit(db, operation="routing_rule.deactivate")
    db.refresh(rule)
    logger.info("routing_rule.deactivated id=%s", rule.id)
    return rule


def preview_routing_use_case(*, db: Session, data: RoutingPreviewRequest) -> RoutingPreviewResponse:
    """Dry run of the resolver for an order type and org context."""
    _ensure_order_type(db, data.order_type_id)
    validate_org_context(db, data.context)
    result = resolve_assignee(db, data.order_type_id, data.context)
    if result is None:
        return RoutingPreviewResponse(found=False)
    return RoutingPreviewResponse(
        found=True,
        user_id=result.user_id,
        rule_id=result.rule_id,
        position_type=result.position_type,
        used_fallback=result.used_fallback,
    )
