from __future__ import annotations

import os

# Settings are read at import time; point them at SQLite and keep the outbox quiet.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from helpdesk.database import Base  # noqa: E402
from helpdesk.enums import PermissionScope, PositionType, UserStatus  # noqa: E402
from helpdesk.models import (  # noqa: E402
    Branch,
    Department,
    Office,
    Order,
    OrderType,
    Otdel,
    Position,
    Priority,
    RoutingRule,
    Status,
    User,
    UserOtdel,
    UserPosition,
)
from helpdesk.services.permissions import ActorContext  # noqa: E402

BASE_TIME = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def pg_engine():
    """Real PostgreSQL for row-lock behaviour; set HELPDESK_TEST_POSTGRES_URL to run."""
    url = os.environ.get("HELPDESK_TEST_POSTGRES_URL")
    if not url:
        pytest.skip("row locking requires PostgreSQL (HELPDESK_TEST_POSTGRES_URL is not set)")
    engine = create_engine(url)
    if engine.dialect.name != "postgresql":
        engine.dispose()
        pytest.skip("row locking requires PostgreSQL")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


class Factory:
    """Small builders for org structure, users and orders."""

    def __init__(self, db) -> None:
        self.db = db
        self._user_seq = 0

    def _save(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def department(self, name: str = "Департамент") -> Department:
        return self._save(Department(name=name))

    def otdel(self, department: Department, name: str = "Отдел") -> Otdel:
        return self._save(Otdel(name=name, department_id=department.id))

    def branch(self, name: str = "Филиал") -> Branch:
        return self._save(Branch(name=name))

    def office(self, branch: Branch, name: str = "Офис") -> Office:
        return self._save(Office(name=name, branch_id=branch.id))

    def position(self, position_type: PositionType, **anchors) -> Position:
        return self._save(Position(name=position_type.value, type=position_type.value, **anchors))

    def user(
        self,
        fio: str | None = None,
        *,
        positions: tuple[Position, ...] = (),
        otdels: tuple[Otdel, ...] = (),
        created_at: datetime | None = None,
        status: UserStatus = UserStatus.ACTIVE,
        **anchors,
    ) -> User:
        self._user_seq += 1
        user = self._save(User(
            fio=fio or f"Сотрудник {self._user_seq}",
            status=status.value,
            created_at=created_at or BASE_TIME + timedelta(minutes=self._user_seq),
            **anchors,
        ))
        for position in positions:
            self.db.add(UserPosition(user_id=user.id, position_id=position.id))
        for otdel in otdels:
            self.db.add(UserOtdel(user_id=user.id, otdel_id=otdel.id))
        self.db.flush()
        return user

    def order_type(self, code: str = "HARDWARE_REPAIR", name: str = "Ремонт оборудования") -> OrderType:
        return self._save(OrderType(code=code, name=name))

    def rule(self, order_type: OrderType, position_type: PositionType, **scope) -> RoutingRule:
        return self._save(RoutingRule(
            rule_name=f"{order_type.code}:{position_type.value}",
            order_type_id=order_type.id,
            position_type=position_type.value,
            **scope,
        ))

    def lookups(self) -> dict[str, object]:
        statuses = {
            "OPEN": self._save(Status(code="OPEN", name="Открыта", is_final=False)),
            "IN_PROGRESS": self._save(Status(code="IN_PROGRESS", name="В работе", is_final=False)),
            "CLOSED": self._save(Status(code="CLOSED", name="Закрыта", is_final=True)),
        }
        priorities = {
            "MEDIUM": self._save(Priority(code="MEDIUM", name="Средний", rank=20)),
            "HIGH": self._save(Priority(code="HIGH", name="Высокий", rank=30)),
        }
        return {"statuses": statuses, "priorities": priorities}

    def order(self, *, creator: User, status: Status, priority: Priority, **fields) -> Order:
        return self._save(Order(
            name=fields.pop("name", "Заявка"),
            creator_id=creator.id,
            status_id=status.id,
            priority_id=priority.id,
            **fields,
        ))


@pytest.fixture()
def make(db) -> Factory:
    return Factory(db)


def actor_with(user: User, *scopes: PermissionScope, permissions: tuple[str, ...] = ()) -> ActorContext:
    names = frozenset(permissions) | frozenset(scope.value for scope in scopes)
    return ActorContext(user=user, permissions=names, scopes=frozenset(scopes))
