"""Order lifecycle use-cases: create, change, soft delete and scoped reads.

Every mutation runs in one transaction: the order row is locked with
SELECT ... FOR UPDATE through the actor's visibility scope, one history
event is appended per changed field, and the session commits once. Any
failure rolls the whole transaction back, history included.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..celery_app import create_notification_for_order
from ..config import settings
from ..database import apply_operation_timeouts
from ..domain_errors import DomainError, domain_error_from_storage, not_found
from ..enums import HistoryEventType, NotificationType, UserStatus
from ..models import Attachment, Order, OrderHistory, OrderType, Priority, Status, User
from ..schemas import OrderChange, OrderCreate, OrderListCriteria, OrgContext, TimelineEvent
from ..security import apply_order_visibility_scope
from ..services.history_ledger import append_history_event, build_timeline, list_order_history, load_timeline_labels
from ..services.org_registry import validate_org_context
from ..services.order_query import ORDER_LIST_CONFIG, OrderQueryConfig, build_order_list_query, paginate_order_query
from ..services.permissions import ActorContext
from ..services.routing import resolve_assignee

logger = logging.getLogger(__name__)

_ORG_FIELDS = ("department_id", "otdel_id", "branch_id", "office_id")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _order_not_found(order_id: int) -> DomainError:
    return not_found("ORDER_NOT_FOUND", "Order not found", details={"id": order_id})


def _scoped_order_query(*, db: Session, order_id: int, actor: ActorContext):
    query = db.query(Order).filter(Order.id == order_id, Order.deleted_at.is_(None))
    return apply_order_visibility_scope(query, actor.user, actor.scopes)


def order_for_update_query(*, db: Session, order_id: int, actor: ActorContext):
    """Row-locking load of one order the actor can see."""
    return (
        _scoped_order_query(db=db, order_id=order_id, actor=actor)
        .with_for_update(of=Order)
        .populate_existing()
    )


def _lock_order(*, db: Session, order_id: int, actor: ActorContext) -> Order:
    order = order_for_update_query(db=db, order_id=order_id, actor=actor).first()
    if order is None:
        # Out of scope looks exactly like missing.
        raise _order_not_found(order_id)
    return order


def _get_status(db: Session, status_id: int) -> Status:
    status = db.get(Status, status_id)
    if status is None:
        raise not_found("STATUS_NOT_FOUND", "Status not found", details={"id": status_id})
    return status


def _get_priority(db: Session, priority_id: int) -> Priority:
    priority = db.get(Priority, priority_id)
    if priority is None:
        raise not_found("PRIORITY_NOT_FOUND", "Priority not found", details={"id": priority_id})
    return priority


def _get_active_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or user.status != UserStatus.ACTIVE.value:
        raise not_found("USER_NOT_FOUND", "User not found", details={"id": user_id})
    return user


def _get_order_type(db: Session, order_type_id: int) -> OrderType:
    order_type = db.get(OrderType, order_type_id)
    if order_type is None or not order_type.is_active:
        raise not_found("ORDER_TYPE_NOT_FOUND", "Order type not found", details={"id": order_type_id})
    return order_type


def _lookup_by_code(db: Session, model, code: str):
    row = db.query(model).filter(model.code == code).first()
    if row is None:
        raise DomainError(
            code="LOOKUP_NOT_CONFIGURED",
            http_status=500,
            message=f"Default {model.__tablename__} entry is missing",
            details={"code": code},
        )
    return row


def _order_context(order: Order) -> OrgContext:
    return OrgContext(**{name: getattr(order, name) for name in _ORG_FIELDS})


def _format_context(ctx: OrgContext) -> str:
    return ";".join(f"{name}={value}" for name, value in ctx.populated_fields().items())


def _deadline_value(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _id_value(value: int | None) -> str | None:
    return str(value) if value is not None else None


def _write_events(*, db: Session, order_id: int, actor_id: int, events: list[dict[str, Any]]) -> str | None:
    tx_id = str(uuid4()) if len(events) > 1 else None
    for event in events:
        append_history_event(db, order_id=order_id, actor_id=actor_id, tx_id=tx_id, **event)
    return tx_id


def _rollback_and_translate(db: Session, exc: SQLAlchemyError, *, operation: str) -> DomainError:
    db.rollback()
    return domain_error_from_storage(exc, operation=operation)


def notify_order_event(
    *,
    order_id: int,
    notification_type: NotificationType,
    recipient_ids: list[int],
    message: str,
    event_key: str | None = None,
) -> None:
    """Hand a committed event to the outbox worker. Failures are logged and never propagate."""
    recipients = [user_id for user_id in dict.fromkeys(recipient_ids) if user_id is not None]
    if not settings.NOTIFICATIONS_ENABLED or not recipients:
        return
    try:
        create_notification_for_order.delay(order_id, notification_type.value, recipients, message, event_key)
    except Exception:
        logger.exception("order.notify_failed order=%s type=%s", order_id, notification_type.value)


def create_order_use_case(*, db: Session, data: OrderCreate, actor: ActorContext) -> Order:
    """Create an order, route it to an executor and write the creation history."""
    try:
        apply_operation_timeouts(db)
        order_type = _get_order_type(db, data.order_type_id)
        validate_org_context(db, data.context)
        priority = (
            _get_priority(db, data.priority_id)
            if data.priority_id is not None
            else _lookup_by_code(db, Priority, settings.DEFAULT_ORDER_PRIORITY_CODE)
        )
        status = _lookup_by_code(db, Status, settings.DEFAULT_ORDER_STATUS_CODE)

        routing = resolve_assignee(db, order_type.id, data.context)

        order = Order(
            name=data.name,
            address=data.address,
            order_type_id=order_type.id,
            creator_id=actor.user.id,
            executor_id=routing.user_id if routing else None,
            status_id=status.id,
            priority_id=priority.id,
            duration=data.duration,
            completed_at=_utcnow() if status.is_final else None,
            **data.context.model_dump(),
        )
        db.add(order)
        db.flush()

        events: list[dict[str, Any]] = [{"event_type": HistoryEventType.CREATE}]
        if routing is not None:
            events.append({
                "event_type": HistoryEventType.DELEGATION,
                "new_value": str(routing.user_id),
            })
        if data.comment and data.comment.strip():
            events.append({"event_type": HistoryEventType.COMMENT, "comment": data.comment.strip()})
        tx_id = _write_events(db=db, order_id=order.id, actor_id=actor.user.id, events=events)

        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        raise _rollback_and_translate(db, exc, operation="order.create") from exc

    logger.info(
        "order.created id=%s type=%s executor=%s rule=%s",
        order.id,
        order.order_type_id,
        order.executor_id,
        routing.rule_id if routing else None,
    )
    if routing is not None:
        notify_order_event(
            order_id=order.id,
            notification_type=NotificationType.ORDER_ASSIGNED,
            recipient_ids=[routing.user_id],
            message=f"Вам назначена заявка №{order.id}: {order.name}",
            event_key=tx_id or "create",
        )
    return order


def apply_order_change_use_case(
    *,
    db: Session,
    order_id: int,
    change: OrderChange,
    actor: ActorContext,
) -> Order:
    """Apply a partial change under a row lock; one history event per changed field."""
    fields_set = change.model_fields_set
    events: list[dict[str, Any]] = []
    new_executor_id: int | None = None
    executor_changed = False
    status_changed = False

    try:
        apply_operation_timeouts(db)
        order = _lock_order(db=db, order_id=order_id, actor=actor)

        if change.name is not None and change.name != order.name:
            events.append({
                "event_type": HistoryEventType.NAME_CHANGE,
                "old_value": order.name,
                "new_value": change.name,
            })
            order.name = change.name

        if "address" in fields_set and change.address != order.address:
            events.append({
                "event_type": HistoryEventType.ADDRESS_CHANGE,
                "old_value": order.address,
                "new_value": change.address,
            })
            order.address = change.address

        rerouted_executor: int | None = None
        if change.context is not None:
            current_ctx = _order_context(order)
            if change.context != current_ctx:
                validate_org_context(db, change.context)
                events.append({
                    "event_type": HistoryEventType.ORG_CHANGE,
                    "old_value": _format_context(current_ctx),
                    "new_value": _format_context(change.context),
                })
                for name in _ORG_FIELDS:
                    setattr(order, name, getattr(change.context, name))
                if order.order_type_id is not None and "executor_id" not in fields_set:
                    routing = resolve_assignee(db, order.order_type_id, change.context)
                    if routing is not None:
                        rerouted_executor = routing.user_id

        if "executor_id" in fields_set:
            if change.executor_id is not None:
                _get_active_user(db, change.executor_id)
            if change.executor_id != order.executor_id:
                new_executor_id = change.executor_id
                executor_changed = True
        elif rerouted_executor is not None and rerouted_executor != order.executor_id:
            new_executor_id = rerouted_executor
            executor_changed = True

        if executor_changed:
            events.append({
                "event_type": HistoryEventType.DELEGATION,
                "old_value": _id_value(order.executor_id),
                "new_value": _id_value(new_executor_id),
            })
            order.executor_id = new_executor_id

        if change.status_id is not None and change.status_id != order.status_id:
            new_status = _get_status(db, change.status_id)
            old_status = db.get(Status, order.status_id)
            events.append({
                "event_type": HistoryEventType.STATUS_CHANGE,
                "old_value": str(order.status_id),
                "new_value": str(new_status.id),
            })
            order.status_id = new_status.id
            was_final = bool(old_status is not None and old_status.is_final)
            if new_status.is_final and not was_final:
                order.completed_at = _utcnow()
            elif not new_status.is_final:
                order.completed_at = None
            status_changed = True

        if change.priority_id is not None and change.priority_id != order.priority_id:
            new_priority = _get_priority(db, change.priority_id)
            events.append({
                "event_type": HistoryEventType.PRIORITY_CHANGE,
                "old_value": str(order.priority_id),
                "new_value": str(new_priority.id),
            })
            order.priority_id = new_priority.id

        if "duration" in fields_set and change.duration != order.duration:
            events.append({
                "event_type": HistoryEventType.DURATION_CHANGE,
                "old_value": _deadline_value(order.duration),
                "new_value": _deadline_value(change.duration),
            })
            order.duration = change.duration

        if change.attachment_id is not None:
            attachment = db.get(Attachment, change.attachment_id)
            if attachment is None or attachment.order_id != order.id:
                raise not_found(
                    "ATTACHMENT_NOT_FOUND",
                    "Attachment not found",
                    details={"id": change.attachment_id},
                )
            events.append({
                "event_type": HistoryEventType.ATTACHMENT_ADD,
                "new_value": str(attachment.id),
                "attachment_id": attachment.id,
            })

        if change.comment and change.comment.strip():
            events.append({"event_type": HistoryEventType.COMMENT, "comment": change.comment.strip()})

        if not events:
            # Nothing changed: release the row lock without writing.
            db.rollback()
            return order

        tx_id = _write_events(db=db, order_id=order.id, actor_id=actor.user.id, events=events)
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        raise _rollback_and_translate(db, exc, operation="order.update") from exc

    logger.info("order.changed id=%s events=%d tx=%s", order.id, len(events), tx_id)
    event_key = tx_id or str(uuid4())
    if executor_changed and new_executor_id is not None:
        notify_order_event(
            order_id=order.id,
            notification_type=NotificationType.ORDER_ASSIGNED,
            recipient_ids=[new_executor_id],
            message=f"Вам назначена заявка №{order.id}: {order.name}",
            event_key=event_key,
        )
    if status_changed:
        notify_order_event(
            order_id=order.id,
            notification_type=NotificationType.ORDER_STATUS_CHANGED,
            recipient_ids=[
                user_id for user_id in (order.creator_id, order.executor_id) if user_id != actor.user.id
            ],
            message=f"Изменен статус заявки №{order.id}: {order.name}",
            event_key=event_key,
        )
    return order


def delete_order_use_case(*, db: Session, order_id: int, actor: ActorContext) -> None:
    """Soft delete. History rows stay untouched and no event is written."""
    try:
        apply_operation_timeouts(db)
        order = _lock_order(db=db, order_id=order_id, actor=actor)
        order.deleted_at = _utcnow()
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        raise _rollback_and_translate(db, exc, operation="order.delete") from exc
    logger.info("order.deleted id=%s by=%s", order_id, actor.user.id)


def get_order_use_case(*, db: Session, order_id: int, actor: ActorContext) -> Order:
    order = _scoped_order_query(db=db, order_id=order_id, actor=actor).first()
    if order is None:
        raise _order_not_found(order_id)
    return order


def list_orders_use_case(
    *,
    db: Session,
    actor: ActorContext,
    criteria: OrderListCriteria,
    config: OrderQueryConfig = ORDER_LIST_CONFIG,
) -> tuple[list[Order], int]:
    query = build_order_list_query(db, criteria, config)
    query = apply_order_visibility_scope(query, actor.user, actor.scopes)
    return paginate_order_query(query, criteria, config)


def get_order_history_use_case(*, db: Session, order_id: int, actor: ActorContext) -> list[OrderHistory]:
    order = get_order_use_case(db=db, order_id=order_id, actor=actor)
    return list_order_history(db, order.id)


def get_order_timeline_use_case(*, db: Session, order_id: int, actor: ActorContext) -> list[TimelineEvent]:
    order = get_order_use_case(db=db, order_id=order_id, actor=actor)
    events = list_order_history(db, order.id)
    return build_timeline(events, load_timeline_labels(db, order, events))
