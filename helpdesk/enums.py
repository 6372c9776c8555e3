"""Closed vocabularies shared by models, schemas and use-cases."""
from __future__ import annotations

import enum


class PositionType(str, enum.Enum):
    HEAD_OF_DEPARTMENT = "HEAD_OF_DEPARTMENT"
    DEPUTY_HEAD_OF_DEPARTMENT = "DEPUTY_HEAD_OF_DEPARTMENT"
    HEAD_OF_OTDEL = "HEAD_OF_OTDEL"
    DEPUTY_HEAD_OF_OTDEL = "DEPUTY_HEAD_OF_OTDEL"
    BRANCH_DIRECTOR = "BRANCH_DIRECTOR"
    HEAD_OF_OFFICE = "HEAD_OF_OFFICE"
    # Catch-all leadership role, substituted when the required type is vacant.
    MANAGER = "MANAGER"
    SPECIALIST = "SPECIALIST"


POSITION_TYPE_NAMES: dict[PositionType, str] = {
    PositionType.HEAD_OF_DEPARTMENT: "Руководитель департамента",
    PositionType.DEPUTY_HEAD_OF_DEPARTMENT: "Заместитель руководителя департамента",
    PositionType.HEAD_OF_OTDEL: "Руководитель отдела",
    PositionType.DEPUTY_HEAD_OF_OTDEL: "Заместитель руководителя отдела",
    PositionType.BRANCH_DIRECTOR: "Директор филиала",
    PositionType.HEAD_OF_OFFICE: "Руководитель офиса",
    PositionType.MANAGER: "Менеджер",
    PositionType.SPECIALIST: "Специалист",
}

FALLBACK_POSITION_TYPE = PositionType.MANAGER


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PermissionScope(str, enum.Enum):
    """Visibility boundaries; the value is the permission name that grants it."""

    OWN = "scope:own"
    OTDEL = "scope:otdel"
    DEPARTMENT = "scope:department"
    BRANCH = "scope:branch"
    OFFICE = "scope:office"
    ALL = "scope:all"
    ALL_VIEW = "scope:all_view"


class OrderPermission(str, enum.Enum):
    VIEW = "orders:view"
    CREATE = "orders:create"
    UPDATE = "orders:update"
    DELETE = "orders:delete"
    ROUTING_RULES_VIEW = "routing_rules:view"
    ROUTING_RULES_MANAGE = "routing_rules:manage"


class PermissionEffect(str, enum.Enum):
    GRANT = "GRANT"
    DENY = "DENY"


class HistoryEventType(str, enum.Enum):
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    DELEGATION = "DELEGATION"
    PRIORITY_CHANGE = "PRIORITY_CHANGE"
    COMMENT = "COMMENT"
    ATTACHMENT_ADD = "ATTACHMENT_ADD"
    DURATION_CHANGE = "DURATION_CHANGE"
    NAME_CHANGE = "NAME_CHANGE"
    ADDRESS_CHANGE = "ADDRESS_CHANGE"
    ORG_CHANGE = "ORG_CHANGE"


class NotificationType(str, enum.Enum):
    ORDER_ASSIGNED = "order_assigned"
    ORDER_STATUS_CHANGED = "order_status_changed"
