"""Effective permissions of a user: (role grants | direct grants) - denials."""
from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ..enums import PermissionEffect, PermissionScope
from ..models import Permission, RolePermission, User, UserPermissionOverride

_SCOPE_BY_NAME = {scope.value: scope for scope in PermissionScope}


@dataclass(frozen=True)
class ActorContext:
    """Who is acting and with which permissions, resolved once per request."""

    user: User
    permissions: frozenset[str] = field(default_factory=frozenset)
    scopes: frozenset[PermissionScope] = field(default_factory=frozenset)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


def _role_permission_names(db: Session, role_id: int | None) -> set[str]:
    if role_id is None:
        return set()
    rows = (
        db.query(Permission.name)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .filter(RolePermission.role_id == role_id)
        .all()
    )
    return {row[0] for row in rows}


def _override_permission_names(db: Session, user_id: int, effect: PermissionEffect) -> set[str]:
    rows = (
        db.query(Permission.name)
        .join(UserPermissionOverride, UserPermissionOverride.permission_id == Permission.id)
        .filter(
            UserPermissionOverride.user_id == user_id,
            UserPermissionOverride.effect == effect.value,
        )
        .all()
    )
    return {row[0] for row in rows}


def compute_effective_permissions(
    role_grants: set[str],
    direct_grants: set[str],
    denials: set[str],
) -> frozenset[str]:
    """Denials are subtracted last, so they win over a grant from any source."""
    return frozenset((role_grants | direct_grants) - denials)


def scopes_from_permissions(permissions: frozenset[str] | set[str]) -> frozenset[PermissionScope]:
    return frozenset(_SCOPE_BY_NAME[name] for name in permissions if name in _SCOPE_BY_NAME)


def get_effective_permissions(db: Session, user: User) -> frozenset[str]:
    return compute_effective_permissions(
        _role_permission_names(db, user.role_id),
        _override_permission_names(db, user.id, PermissionEffect.GRANT),
        _override_permission_names(db, user.id, PermissionEffect.DENY),
    )


def get_effective_scopes(db: Session, user: User) -> frozenset[PermissionScope]:
    return scopes_from_permissions(get_effective_permissions(db, user))


def build_actor_context(db: Session, user: User) -> ActorContext:
    permissions = get_effective_permissions(db, user)
    return ActorContext(
        user=user,
        permissions=permissions,
        scopes=scopes_from_permissions(permissions),
    )
