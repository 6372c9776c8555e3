"""Order endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..config import settings
from ..database import get_db
from ..enums import OrderPermission
from ..schemas import (
    OrderChange,
    OrderCreate,
    OrderHistoryResponse,
    OrderListCriteria,
    OrderListResponse,
    OrderResponse,
    OrderSortField,
    SortDirection,
    TimelineEvent,
)
from ..services.order_query import ORDER_LIST_CONFIG, OrderQueryConfig
from ..services.permissions import ActorContext
from ..use_cases.order_lifecycle import (
    apply_order_change_use_case,
    create_order_use_case,
    delete_order_use_case,
    get_order_history_use_case,
    get_order_timeline_use_case,
    get_order_use_case,
    list_orders_use_case,
)

router = APIRouter(prefix="/orders", tags=["orders"])

LIST_CONFIG = OrderQueryConfig(
    allowed_sorts=ORDER_LIST_CONFIG.allowed_sorts,
    max_limit=settings.ORDER_LIST_MAX_LIMIT,
)


@router.get("", response_model=OrderListResponse)
def list_orders(
    status_ids: Optional[list[int]] = Query(None),
    priority_ids: Optional[list[int]] = Query(None),
    order_type_id: Optional[int] = None,
    department_id: Optional[int] = None,
    otdel_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    office_id: Optional[int] = None,
    executor_id: Optional[int] = None,
    creator_id: Optional[int] = None,
    search: Optional[str] = Query(None, max_length=255),
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    overdue: Optional[bool] = None,
    sort_by: Optional[OrderSortField] = None,
    sort_dir: SortDirection = SortDirection.DESC,
    limit: int = Query(50, ge=1, le=settings.ORDER_LIST_MAX_LIMIT),
    offset: int = Query(0, ge=0),
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.VIEW.value)),
    db: Session = Depends(get_db),
):
    """List orders visible to the caller."""
    criteria = OrderListCriteria(
        status_ids=status_ids or [],
        priority_ids=priority_ids or [],
        order_type_id=order_type_id,
        department_id=department_id,
        otdel_id=otdel_id,
        branch_id=branch_id,
        office_id=office_id,
        executor_id=executor_id,
        creator_id=creator_id,
        search=search,
        created_from=created_from,
        created_to=created_to,
        overdue=overdue,
        sort_by=sort_by,
        sort_dir=sort_dir,
        limit=limit,
        offset=offset,
    )
    items, total = list_orders_use_case(db=db, actor=actor, criteria=criteria, config=LIST_CONFIG)
    return OrderListResponse(items=[OrderResponse.model_validate(order) for order in items], total=total)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    data: OrderCreate,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.CREATE.value)),
    db: Session = Depends(get_db),
):
    """Create order; the executor is picked by the routing rules."""
    return create_order_use_case(db=db, data=data, actor=actor)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.VIEW.value)),
    db: Session = Depends(get_db),
):
    return get_order_use_case(db=db, order_id=order_id, actor=actor)


@router.patch("/{order_id}", response_model=OrderResponse)
def update_order(
    order_id: int,
    change: OrderChange,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.UPDATE.value)),
    db: Session = Depends(get_db),
):
    """Apply a partial change; each changed field is recorded in the order history."""
    return apply_order_change_use_case(db=db, order_id=order_id, change=change, actor=actor)


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(
    order_id: int,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.DELETE.value)),
    db: Session = Depends(get_db),
):
    delete_order_use_case(db=db, order_id=order_id, actor=actor)


@router.get("/{order_id}/history", response_model=list[OrderHistoryResponse])
def get_order_history(
    order_id: int,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.VIEW.value)),
    db: Session = Depends(get_db),
):
    return get_order_history_use_case(db=db, order_id=order_id, actor=actor)


@router.get("/{order_id}/timeline", response_model=list[TimelineEvent])
def get_order_timeline(
    order_id: int,
    actor: ActorContext = Depends(PermissionChecker(OrderPermission.VIEW.value)),
    db: Session = Depends(get_db),
):
    """History grouped by actor and second, ready for display."""
    return get_order_timeline_use_case(db=db, order_id=order_id, actor=actor)
