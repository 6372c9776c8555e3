from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from helpdesk import celery_app as outbox
from helpdesk.config import settings
from helpdesk.enums import NotificationType
from helpdesk.models import NotificationOutbox, User


@pytest.fixture()
def outbox_db(engine, monkeypatch):
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(outbox, "SessionLocal", session_factory)
    return session_factory


@pytest.fixture()
def ticket(make):
    lookups = make.lookups()
    executor = make.user(telegram_chat_id="555")
    silent = make.user()
    order = make.order(
        creator=silent,
        status=lookups["statuses"]["OPEN"],
        priority=lookups["priorities"]["MEDIUM"],
        name="Заменить картридж",
    )
    make.db.commit()
    return order, executor, silent


def _rows(session_factory) -> list[NotificationOutbox]:
    session = session_factory()
    try:
        return session.query(NotificationOutbox).order_by(NotificationOutbox.id).all()
    finally:
        session.close()


def test_outbox_rows_are_idempotent_per_event(outbox_db, ticket) -> None:
    order, executor, silent = ticket
    assigned = NotificationType.ORDER_ASSIGNED.value

    assert outbox.create_notification_for_order(order.id, assigned, [executor.id, executor.id, silent.id], "m", "tx-1") == 2
    assert outbox.create_notification_for_order(order.id, assigned, [executor.id], "m", "tx-1") == 0
    assert outbox.create_notification_for_order(order.id, assigned, [executor.id], "m", "tx-2") == 1

    rows = _rows(outbox_db)
    assert [row.idempotency_key for row in rows] == [
        f"order_assigned:{order.id}:{executor.id}:tx-1",
        f"order_assigned:{order.id}:{silent.id}:tx-1",
        f"order_assigned:{order.id}:{executor.id}:tx-2",
    ]
    assert rows[0].recipient_chat_id == "555"
    assert rows[0].order_name == "Заменить картридж"


def test_unknown_notification_type_is_rejected(outbox_db, ticket) -> None:
    order, executor, _ = ticket

    with pytest.raises(ValueError):
        outbox.create_notification_for_order(order.id, "order_exploded", [executor.id], "m")


def test_processing_sends_skips_and_backs_off(outbox_db, ticket, monkeypatch) -> None:
    order, executor, silent = ticket
    outbox.create_notification_for_order(
        order.id, NotificationType.ORDER_STATUS_CHANGED.value, [executor.id, silent.id], "m", "1",
    )
    monkeypatch.setattr(outbox, "send_telegram_message", lambda chat_id, message: (False, "HTTP_502: bad gateway"))

    result = outbox.process_notification_outbox()

    assert result == {"processed": 0, "total_locked": 2}
    by_user = {row.recipient_user_id: row for row in _rows(outbox_db)}
    assert by_user[silent.id].status == "skipped"
    retried = by_user[executor.id]
    assert retried.status == "pending"
    assert retried.attempts == 1
    assert retried.next_retry_at is not None

    # Not due yet, so the next run leaves it alone.
    assert outbox.process_notification_outbox() == {"processed": 0, "total_locked": 0}


def test_bot_blocked_fails_row_and_unlinks_chat(db, ticket) -> None:
    _, executor, _ = ticket
    row = NotificationOutbox(
        type=NotificationType.ORDER_ASSIGNED.value,
        recipient_user_id=executor.id,
        recipient_chat_id="555",
        message="m",
        idempotency_key="k",
        status="pending",
        attempts=0,
    )
    db.add(row)
    db.flush()

    outbox._record_failure(db, row, "BOT_BLOCKED")

    assert row.status == "failed"
    assert row.failed_at is not None
    assert db.get(User, executor.id).telegram_chat_id is None


def test_last_attempt_marks_row_failed(db, ticket) -> None:
    _, executor, _ = ticket
    row = NotificationOutbox(
        type=NotificationType.ORDER_ASSIGNED.value,
        recipient_user_id=executor.id,
        message="m",
        idempotency_key="k",
        status="pending",
        attempts=outbox.MAX_ATTEMPTS - 1,
    )
    db.add(row)
    db.flush()

    outbox._record_failure(db, row, "HTTP_500: oops")

    assert row.status == "failed"
    assert row.attempts == outbox.MAX_ATTEMPTS


def test_rate_limit_schedules_retry_after(db, ticket) -> None:
    _, executor, _ = ticket
    row = NotificationOutbox(
        type=NotificationType.ORDER_ASSIGNED.value,
        recipient_user_id=executor.id,
        message="m",
        idempotency_key="k",
        status="pending",
        attempts=0,
    )
    db.add(row)
    db.flush()
    before = datetime.now(timezone.utc)

    outbox._record_failure(db, row, "RATE_LIMIT:30")

    assert row.status == "pending"
    assert (row.next_retry_at - before).total_seconds() >= 30


def test_send_without_token_reports_configuration(monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", None)

    assert outbox.send_telegram_message("1", "hi") == (False, "TELEGRAM_BOT_TOKEN not configured")
