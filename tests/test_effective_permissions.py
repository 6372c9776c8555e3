from __future__ import annotations

from helpdesk.enums import OrderPermission, PermissionEffect, PermissionScope
from helpdesk.models import Permission, Role, UserPermissionOverride
from helpdesk.services.permissions import (
    build_actor_context,
    compute_effective_permissions,
    get_effective_permissions,
    get_effective_scopes,
)


def _permission(db, name: str) -> Permission:
    permission = Permission(name=name)
    db.add(permission)
    db.flush()
    return permission


def test_denial_beats_grant_from_any_source() -> None:
    effective = compute_effective_permissions(
        role_grants={"orders:view", "orders:update"},
        direct_grants={"orders:delete"},
        denials={"orders:update", "orders:delete"},
    )

    assert effective == frozenset({"orders:view"})


def test_effective_permissions_merge_role_and_direct_grants(make) -> None:
    db = make.db
    view = _permission(db, OrderPermission.VIEW.value)
    update = _permission(db, OrderPermission.UPDATE.value)
    department_scope = _permission(db, PermissionScope.DEPARTMENT.value)
    all_view = _permission(db, PermissionScope.ALL_VIEW.value)
    role = Role(name="head_of_department", permissions=[view, update, department_scope])
    db.add(role)
    db.flush()
    user = make.user(role_id=role.id)
    db.add_all([
        UserPermissionOverride(user_id=user.id, permission_id=all_view.id, effect=PermissionEffect.GRANT.value),
        UserPermissionOverride(user_id=user.id, permission_id=update.id, effect=PermissionEffect.DENY.value),
    ])
    db.flush()

    assert get_effective_permissions(db, user) == frozenset({
        OrderPermission.VIEW.value,
        PermissionScope.DEPARTMENT.value,
        PermissionScope.ALL_VIEW.value,
    })
    assert get_effective_scopes(db, user) == frozenset({PermissionScope.DEPARTMENT, PermissionScope.ALL_VIEW})


def test_denied_scope_is_not_in_actor_context(make) -> None:
    db = make.db
    own = _permission(db, PermissionScope.OWN.value)
    role = Role(name="specialist", permissions=[own])
    db.add(role)
    db.flush()
    user = make.user(role_id=role.id)
    db.add(UserPermissionOverride(user_id=user.id, permission_id=own.id, effect=PermissionEffect.DENY.value))
    db.flush()

    actor = build_actor_context(db, user)

    assert actor.scopes == frozenset()
    assert not actor.has_permission(PermissionScope.OWN.value)


def test_user_without_role_gets_only_direct_grants(make) -> None:
    db = make.db
    view = _permission(db, OrderPermission.VIEW.value)
    user = make.user()
    db.add(UserPermissionOverride(user_id=user.id, permission_id=view.id, effect=PermissionEffect.GRANT.value))
    db.flush()

    assert get_effective_permissions(db, user) == frozenset({OrderPermission.VIEW.value})
