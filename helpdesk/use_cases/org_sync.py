"""Transaction boundaries for the org sync collaborator."""
from __future__ import annotations

from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import apply_operation_timeouts
from ..domain_errors import DomainError, domain_error_from_storage
from ..models import Position, User
from ..schemas import OrgUnitSync, PositionSync, UserSync
from ..services.org_registry import sync_position, sync_user, upsert_org_unit

T = TypeVar("T")


def _run_in_transaction(db: Session, operation: str, action):
    try:
        apply_operation_timeouts(db)
        result = action()
        db.commit()
    except DomainError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise domain_error_from_storage(exc, operation=operation) from exc
    db.refresh(result)
    return result


def sync_org_unit_use_case(*, db: Session, model: type[T], payload: OrgUnitSync) -> T:
    return _run_in_transaction(db, "org_sync.unit", lambda: upsert_org_unit(db, model, payload))


def sync_position_use_case(*, db: Session, payload: PositionSync) -> Position:
    return _run_in_transaction(db, "org_sync.position", lambda: sync_position(db, payload))


def sync_user_use_case(*, db: Session, payload: UserSync) -> User:
    """User row and both link sets are written together or not at all."""
    return _run_in_transaction(db, "org_sync.user", lambda: sync_user(db, payload))
