from __future__ import annotations

from sqlalchemy import create_engine, inspect, text

import seed_data
from alembic_bootstrap import needs_baseline_stamp
from helpdesk.enums import OrderPermission, PermissionScope
from helpdesk.models import Priority, Role, Status
from helpdesk.services.permissions import build_actor_context


def test_seeding_twice_keeps_one_row_per_code(db) -> None:
    seed_data.seed_reference_data(db)
    seed_data.seed_reference_data(db)
    db.commit()

    assert db.query(Status).count() == len(seed_data.STATUSES)
    assert db.query(Priority).count() == len(seed_data.PRIORITIES)
    assert db.query(Role).count() == len(seed_data.ROLES)
    assert [s.code for s in db.query(Status).filter(Status.is_final.is_(True)).all()] == ["CLOSED"]


def test_seeded_role_grants_flow_into_actor_context(make) -> None:
    seed_data.seed_reference_data(make.db)
    role = make.db.query(Role).filter(Role.name == "head_of_department").one()
    user = make.user(role_id=role.id)

    actor = build_actor_context(make.db, user)

    assert actor.has_permission(OrderPermission.UPDATE.value)
    assert not actor.has_permission(OrderPermission.DELETE.value)
    assert actor.scopes == frozenset({PermissionScope.DEPARTMENT})


def test_baseline_stamp_needed_only_for_unversioned_schema(engine) -> None:
    assert needs_baseline_stamp(inspect(engine)) is True

    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
    assert needs_baseline_stamp(inspect(engine)) is False

    empty = create_engine("sqlite+pysqlite://")
    try:
        assert needs_baseline_stamp(inspect(empty)) is False
    finally:
        empty.dispose()
