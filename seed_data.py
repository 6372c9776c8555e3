"""Seed reference data: statuses, priorities, permissions and the default roles."""
import logging

from helpdesk.database import SessionLocal
from helpdesk.enums import OrderPermission, PermissionScope
from helpdesk.models import Permission, Priority, Role, Status

logger = logging.getLogger("seed_data")

STATUSES = [
    {'code': 'OPEN', 'name': 'Открыта', 'is_final': False},
    {'code': 'IN_PROGRESS', 'name': 'В работе', 'is_final': False},
    {'code': 'SERVICE', 'name': 'Сервисное обслуживание', 'is_final': False},
    {'code': 'CLARIFICATION', 'name': 'Уточнение', 'is_final': False},
    {'code': 'CONFIRMED', 'name': 'Подтверждена', 'is_final': False},
    {'code': 'CLOSED', 'name': 'Закрыта', 'is_final': True},
]

PRIORITIES = [
    {'code': 'LOW', 'name': 'Низкий', 'rank': 10},
    {'code': 'MEDIUM', 'name': 'Средний', 'rank': 20},
    {'code': 'HIGH', 'name': 'Высокий', 'rank': 30},
    {'code': 'CRITICAL', 'name': 'Критический', 'rank': 40},
]

_ORDER_ACTIONS = [
    OrderPermission.VIEW.value,
    OrderPermission.CREATE.value,
    OrderPermission.UPDATE.value,
]

ROLES = {
    'admin': [p.value for p in OrderPermission] + [PermissionScope.ALL.value],
    'auditor': [OrderPermission.VIEW.value, OrderPermission.ROUTING_RULES_VIEW.value, PermissionScope.ALL_VIEW.value],
    'head_of_department': _ORDER_ACTIONS + [PermissionScope.DEPARTMENT.value],
    'branch_director': _ORDER_ACTIONS + [PermissionScope.BRANCH.value],
    'head_of_otdel': _ORDER_ACTIONS + [PermissionScope.OTDEL.value],
    'head_of_office': _ORDER_ACTIONS + [PermissionScope.OFFICE.value],
    'specialist': _ORDER_ACTIONS + [PermissionScope.OWN.value],
}


def _upsert_by_code(db, model, rows: list[dict]) -> int:
    created = 0
    for row in rows:
        existing = db.query(model).filter(model.code == row['code']).first()
        if existing is None:
            db.add(model(**row))
            created += 1
        else:
            for key, value in row.items():
                setattr(existing, key, value)
    return created


def seed_reference_data(db) -> None:
    """Idempotent: re-running updates names and role grants in place."""
    _upsert_by_code(db, Status, STATUSES)
    _upsert_by_code(db, Priority, PRIORITIES)

    names = sorted({name for grants in ROLES.values() for name in grants})
    permissions = {p.name: p for p in db.query(Permission).filter(Permission.name.in_(names)).all()}
    for name in names:
        if name not in permissions:
            permissions[name] = Permission(name=name)
            db.add(permissions[name])
    db.flush()

    for role_name, grants in ROLES.items():
        role = db.query(Role).filter(Role.name == role_name).first()
        if role is None:
            role = Role(name=role_name)
            db.add(role)
        role.permissions = [permissions[name] for name in grants]
    db.flush()


def seed():
    """Seed database with reference data."""
    db = SessionLocal()
    try:
        seed_reference_data(db)
        db.commit()
        logger.info("Reference data seeded: %d statuses, %d priorities, %d roles",
                    len(STATUSES), len(PRIORITIES), len(ROLES))
    except Exception:
        db.rollback()
        logger.exception("Seeding failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    seed()
