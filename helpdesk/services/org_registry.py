"""Org structure and position reference data.

Read-mostly lookups used by routing and rule validation, plus the write side
consumed by the org sync collaborator. Sync is keyed by
(external_id, source_system) so a re-import updates instead of duplicating,
and a user's position/otdel links are replaced wholesale on every sync.
"""
from __future__ import annotations

import logging
from typing import TypeVar

from sqlalchemy import delete, insert
from sqlalchemy.orm import Session

from ..domain_errors import not_found, validation_error
from ..models import Branch, Department, Office, Otdel, Position, User, UserOtdel, UserPosition
from ..schemas import OrgContext, OrgUnitSync, PositionSync, UserSync

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Parent column for nested units; root units have none.
_PARENT_COLUMN: dict[type, str | None] = {
    Department: None,
    Otdel: "department_id",
    Branch: None,
    Office: "branch_id",
}


def _get_or_404(db: Session, model: type[T], entity_id: int, code: str, label: str) -> T:
    entity = db.get(model, entity_id)
    if entity is None:
        raise not_found(code, f"{label} not found", details={"id": entity_id})
    return entity


def get_department(db: Session, department_id: int) -> Department:
    return _get_or_404(db, Department, department_id, "DEPARTMENT_NOT_FOUND", "Department")


def get_otdel(db: Session, otdel_id: int) -> Otdel:
    return _get_or_404(db, Otdel, otdel_id, "OTDEL_NOT_FOUND", "Otdel")


def get_branch(db: Session, branch_id: int) -> Branch:
    return _get_or_404(db, Branch, branch_id, "BRANCH_NOT_FOUND", "Branch")


def get_office(db: Session, office_id: int) -> Office:
    return _get_or_404(db, Office, office_id, "OFFICE_NOT_FOUND", "Office")


def validate_org_context(db: Session, ctx: OrgContext) -> None:
    """Check that every referenced unit exists and that nested units sit under the given parent."""
    if ctx.department_id is not None:
        get_department(db, ctx.department_id)
    if ctx.otdel_id is not None:
        otdel = get_otdel(db, ctx.otdel_id)
        if otdel.department_id is not None and otdel.department_id != ctx.department_id:
            raise validation_error(
                "ORG_SCOPE_INCONSISTENT",
                "Otdel does not belong to the given department",
                details={"otdel_id": ctx.otdel_id, "department_id": ctx.department_id},
            )
    if ctx.branch_id is not None:
        get_branch(db, ctx.branch_id)
    if ctx.office_id is not None:
        office = get_office(db, ctx.office_id)
        if office.branch_id is not None and office.branch_id != ctx.branch_id:
            raise validation_error(
                "ORG_SCOPE_INCONSISTENT",
                "Office does not belong to the given branch",
                details={"office_id": ctx.office_id, "branch_id": ctx.branch_id},
            )


def _find_synced(db: Session, model: type[T], external_id: str, source_system: str) -> T | None:
    return db.query(model).filter(
        model.external_id == external_id,  # type: ignore[attr-defined]
        model.source_system == source_system,  # type: ignore[attr-defined]
    ).first()


def upsert_org_unit(db: Session, model: type[T], payload: OrgUnitSync) -> T:
    """Create or update a department/otdel/branch/office by its external identity.

    Adds to the session only; the caller owns the transaction.
    """
    if model not in _PARENT_COLUMN:
        raise ValueError(f"Not an org unit model: {model!r}")

    unit = _find_synced(db, model, payload.external_id, payload.source_system)
    if unit is None:
        unit = model(external_id=payload.external_id, source_system=payload.source_system)  # type: ignore[call-arg]
        db.add(unit)

    unit.name = payload.name  # type: ignore[attr-defined]
    unit.is_active = payload.is_active  # type: ignore[attr-defined]
    parent_column = _PARENT_COLUMN[model]
    if parent_column is not None:
        setattr(unit, parent_column, payload.parent_id)
    db.flush()
    return unit


def sync_position(db: Session, payload: PositionSync) -> Position:
    """Create or update a position by its external identity."""
    validate_org_context(db, payload.anchors)

    position = _find_synced(db, Position, payload.external_id, payload.source_system)
    if position is None:
        position = Position(external_id=payload.external_id, source_system=payload.source_system)
        db.add(position)

    position.name = payload.name
    position.type = payload.type.value
    position.department_id = payload.anchors.department_id
    position.otdel_id = payload.anchors.otdel_id
    position.branch_id = payload.anchors.branch_id
    position.office_id = payload.anchors.office_id
    position.is_active = payload.is_active
    db.flush()
    return position


def replace_user_positions(db: Session, user_id: int, position_ids: list[int]) -> None:
    """Replace the whole position set of a user: delete every link, insert the new set."""
    db.execute(delete(UserPosition).where(UserPosition.user_id == user_id))
    unique_ids = list(dict.fromkeys(position_ids))
    if unique_ids:
        db.execute(
            insert(UserPosition),
            [{"user_id": user_id, "position_id": position_id} for position_id in unique_ids],
        )


def replace_user_otdels(db: Session, user_id: int, otdel_ids: list[int]) -> None:
    """Replace the whole otdel membership set of a user."""
    db.execute(delete(UserOtdel).where(UserOtdel.user_id == user_id))
    unique_ids = list(dict.fromkeys(otdel_ids))
    if unique_ids:
        db.execute(
            insert(UserOtdel),
            [{"user_id": user_id, "otdel_id": otdel_id} for otdel_id in unique_ids],
        )


def sync_user(db: Session, payload: UserSync) -> User:
    """Upsert a user snapshot and replace its position/otdel links in the same transaction.

    The caller commits; if any statement fails the caller rolls back and the
    user row and both link sets stay as they were.
    """
    validate_org_context(db, payload.anchors)
    for position_id in payload.position_ids:
        _get_or_404(db, Position, position_id, "POSITION_NOT_FOUND", "Position")
    for otdel_id in payload.otdel_ids:
        get_otdel(db, otdel_id)

    user = _find_synced(db, User, payload.external_id, payload.source_system)
    if user is None:
        user = User(external_id=payload.external_id, source_system=payload.source_system)
        db.add(user)

    user.fio = payload.fio
    user.email = payload.email
    user.status = payload.status.value
    user.department_id = payload.anchors.department_id
    user.otdel_id = payload.anchors.otdel_id
    user.branch_id = payload.anchors.branch_id
    user.office_id = payload.anchors.office_id
    db.flush()

    replace_user_positions(db, user.id, payload.position_ids)
    replace_user_otdels(db, user.id, payload.otdel_ids)
    db.expire(user, ["positions", "otdels"])

    logger.info(
        "org_sync.user external_id=%s positions=%d otdels=%d",
        payload.external_id,
        len(payload.position_ids),
        len(payload.otdel_ids),
    )
    return user
