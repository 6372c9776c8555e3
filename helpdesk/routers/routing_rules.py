"""Routing rule endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..enums import OrderPermission
from ..schemas import (
    RoutingPreviewRequest,
    RoutingPreviewResponse,
    RoutingRuleCreate,
    RoutingRuleResponse,
    RoutingRuleUpdate,
)
from ..services.permissions import ActorContext
from ..use_cases.routing_rules import (
    create_routing_rule_use_case,
    deactivate_routing_rule_use_case,
    get_routing_rule_use_case,
    list_routing_rules_use_case,
    preview_routing_use_case,
    update_routing_rule_use_case,
)

router = APIRouter(prefix="/routing-rules", tags=["routing-rules"])

can_view_rules = PermissionChecker(OrderPermission.ROUTING_RULES_VIEW.value)
can_manage_rules = PermissionChecker(OrderPermission.ROUTING_RULES_MANAGE.value)


@router.get("", response_model=list[RoutingRuleResponse])
def list_routing_rules(
    order_type_id: Optional[int] = None,
    include_inactive: bool = False,
    _: ActorContext = Depends(can_view_rules),
    db: Session = Depends(get_db),
):
    return list_routing_rules_use_case(db=db, order_type_id=order_type_id, include_inactive=include_inactive)


@router.post("", response_model=RoutingRuleResponse, status_code=201)
def create_routing_rule(
    data: RoutingRuleCreate,
    _: ActorContext = Depends(can_manage_rules),
    db: Session = Depends(get_db),
):
    return create_routing_rule_use_case(db=db, data=data)


@router.post("/preview", response_model=RoutingPreviewResponse)
def preview_routing(
    data: RoutingPreviewRequest,
    _: ActorContext = Depends(can_view_rules),
    db: Session = Depends(get_db),
):
    """Show who would receive an order of this type in this org context."""
    return preview_routing_use_case(db=db, data=data)


@router.get("/{rule_id}", response_model=RoutingRuleResponse)
def get_routing_rule(
    rule_id: int,
    _: ActorContext = Depends(can_view_rules),
    db: Session = Depends(get_db),
):
    return get_routing_rule_use_case(db=db, rule_id=rule_id)


@router.patch("/{rule_id}", response_model=RoutingRuleResponse)
def update_routing_rule(
    rule_id: int,
    data: RoutingRuleUpdate,
    _: ActorContext = Depends(can_manage_rules),
    db: Session = Depends(get_db),
):
    return update_routing_rule_use_case(db=db, rule_id=rule_id, data=data)


@router.delete("/{rule_id}", response_model=RoutingRuleResponse)
def deactivate_routing_rule(
    rule_id: int,
    _: ActorContext = Depends(can_manage_rules),
    db: Session = Depends(get_db),
):
    """Deactivate (rules are never hard-deleted)."""
    return deactivate_routing_rule_use_case(db=db, rule_id=rule_id)
