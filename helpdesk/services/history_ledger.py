"""Order history ledger and the grouped timeline built from it.

The ledger is append-only: rows are added to the caller's session and
committed together with the order mutation that caused them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from ..enums import HistoryEventType
from ..models import Attachment, Order, OrderHistory, Priority, Status, User
from ..schemas import TimelineEvent, UserBrief


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def append_history_event(
    db: Session,
    *,
    order_id: int,
    actor_id: int,
    event_type: HistoryEventType,
    old_value: str | None = None,
    new_value: str | None = None,
    comment: str | None = None,
    attachment_id: int | None = None,
    tx_id: str | None = None,
) -> OrderHistory:
    # Taken after the caller holds the order lock; server-side now() is the
    # transaction start on PostgreSQL, not the insert time.
    event = OrderHistory(
        order_id=order_id,
        user_id=actor_id,
        event_type=event_type.value,
        old_value=old_value,
        new_value=new_value,
        comment=comment,
        attachment_id=attachment_id,
        tx_id=tx_id,
        created_at=_utcnow(),
    )
    db.add(event)
    return event


def list_order_history(db: Session, order_id: int) -> list[OrderHistory]:
    """Events of one order in the order they happened."""
    return (
        db.query(OrderHistory)
        .filter(OrderHistory.order_id == order_id)
        .order_by(OrderHistory.created_at.asc(), OrderHistory.id.asc())
        .all()
    )


@dataclass
class TimelineLabels:
    """Display names for the ids stored in history values."""

    order_name: str
    statuses: dict[int, str] = field(default_factory=dict)
    priorities: dict[int, str] = field(default_factory=dict)
    users: dict[int, str] = field(default_factory=dict)
    attachments: dict[int, str] = field(default_factory=dict)


def _label(names: dict[int, str], raw: str | None) -> str | None:
    if raw is None:
        return None
    try:
        return names.get(int(raw), raw)
    except ValueError:
        return raw


def _format_deadline(raw: str) -> str:
    try:
        return datetime.fromisoformat(raw).strftime("%d.%m.%Y %H:%M")
    except ValueError:
        return raw


def describe_event(event: OrderHistory, labels: TimelineLabels) -> str | None:
    """One human-readable line for a non-comment event, or None when there is nothing to show."""
    event_type = event.event_type
    new_value = event.new_value

    if event_type == HistoryEventType.CREATE.value:
        return f"Создана заявка: «{labels.order_name}»"
    if event_type == HistoryEventType.STATUS_CHANGE.value and new_value is not None:
        return f"Статус изменен на: «{_label(labels.statuses, new_value)}»"
    if event_type == HistoryEventType.DELEGATION.value:
        if new_value is None:
            return "Исполнитель снят"
        return f"Назначен исполнитель: {_label(labels.users, new_value)}"
    if event_type == HistoryEventType.ATTACHMENT_ADD.value and new_value is not None:
        return f"Прикреплен файл: {_label(labels.attachments, new_value)}"
    if event_type == HistoryEventType.DURATION_CHANGE.value and new_value is not None:
        return f"Срок выполнения: {_format_deadline(new_value)}"
    if event_type == HistoryEventType.PRIORITY_CHANGE.value and new_value is not None:
        return f"Приоритет изменен на: {_label(labels.priorities, new_value)}"
    if event_type == HistoryEventType.NAME_CHANGE.value and new_value is not None:
        return f"Название заявки изменено на: «{new_value}»"
    if event_type == HistoryEventType.ADDRESS_CHANGE.value and new_value is not None:
        return f"Адрес заявки изменен на: «{new_value}»"
    if event_type == HistoryEventType.ORG_CHANGE.value:
        return event.comment or "Изменена оргструктура заявки"
    return None


def _same_second(left: datetime, right: datetime) -> bool:
    return left.replace(microsecond=0) == right.replace(microsecond=0)


def build_timeline(events: Sequence[OrderHistory], labels: TimelineLabels) -> list[TimelineEvent]:
    """Group consecutive events by the same actor within one second.

    Comments go to the group's comment, attachments are collected by id,
    everything else becomes a display line.
    """
    timeline: list[TimelineEvent] = []
    i = 0
    while i < len(events):
        head = events[i]
        group = TimelineEvent(
            actor=UserBrief(id=head.user_id, fio=labels.users.get(head.user_id, "")),
            created_at=head.created_at,
        )

        j = i
        while (
            j < len(events)
            and events[j].user_id == head.user_id
            and _same_second(events[j].created_at, head.created_at)
        ):
            event = events[j]
            if event.event_type == HistoryEventType.COMMENT.value:
                if event.comment:
                    group.comment = event.comment
            else:
                line = describe_event(event, labels)
                if line:
                    group.lines.append(line)
                if event.attachment_id is not None:
                    group.attachment_ids.append(event.attachment_id)
            j += 1

        timeline.append(group)
        i = j
    return timeline


def _ids_from_values(events: Iterable[OrderHistory], event_type: HistoryEventType) -> set[int]:
    ids: set[int] = set()
    for event in events:
        if event.event_type != event_type.value:
            continue
        for raw in (event.old_value, event.new_value):
            if raw is not None and raw.isdigit():
                ids.add(int(raw))
    return ids


def load_timeline_labels(db: Session, order: Order, events: Sequence[OrderHistory]) -> TimelineLabels:
    labels = TimelineLabels(order_name=order.name)

    status_ids = _ids_from_values(events, HistoryEventType.STATUS_CHANGE)
    if status_ids:
        labels.statuses = dict(db.query(Status.id, Status.name).filter(Status.id.in_(status_ids)).all())

    priority_ids = _ids_from_values(events, HistoryEventType.PRIORITY_CHANGE)
    if priority_ids:
        labels.priorities = dict(
            db.query(Priority.id, Priority.name).filter(Priority.id.in_(priority_ids)).all()
        )

    user_ids = _ids_from_values(events, HistoryEventType.DELEGATION) | {event.user_id for event in events}
    if user_ids:
        labels.users = dict(db.query(User.id, User.fio).filter(User.id.in_(user_ids)).all())

    attachment_ids = _ids_from_values(events, HistoryEventType.ATTACHMENT_ADD)
    if attachment_ids:
        labels.attachments = dict(
            db.query(Attachment.id, Attachment.file_name).filter(Attachment.id.in_(attachment_ids)).all()
        )
    return labels
