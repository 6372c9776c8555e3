"""SQLAlchemy models: org structure, access control, routing rules, orders and their history."""
from sqlalchemy import (
    JSON, Boolean, Column, String, Integer, BigInteger, DateTime, Text,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .enums import (
    HistoryEventType,
    NotificationType,
    PermissionEffect,
    PositionType,
    UserStatus,
)

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class SyncedMixin:
    """External identity for records imported by the org sync collaborator."""

    external_id = Column(String(100), nullable=True)
    source_system = Column(String(50), nullable=True)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ==== Org structure ====

class Department(SyncedMixin, TimestampMixin, Base):
    """Department model (department/otdel axis root)."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("external_id", "source_system", name="uq_departments_external"),
    )

    otdels = relationship("Otdel", back_populates="department")


class Otdel(SyncedMixin, TimestampMixin, Base):
    """Otdel (sub-unit) model, optionally nested under a department."""
    __tablename__ = "otdels"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("external_id", "source_system", name="uq_otdels_external"),
    )

    department = relationship("Department", back_populates="otdels")


class Branch(SyncedMixin, TimestampMixin, Base):
    """Branch model (branch/office axis root)."""
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("external_id", "source_system", name="uq_branches_external"),
    )

    offices = relationship("Office", back_populates="branch")


class Office(SyncedMixin, TimestampMixin, Base):
    """Office model, optionally nested under a branch."""
    __tablename__ = "offices"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("external_id", "source_system", name="uq_offices_external"),
    )

    branch = relationship("Branch", back_populates="offices")


class Position(SyncedMixin, TimestampMixin, Base):
    """Position model: one PositionType anchored to one or more org units."""
    __tablename__ = "positions"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    otdel_id = Column(Integer, ForeignKey("otdels.id"), nullable=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(type.in_(_values(PositionType)), name="chk_position_type"),
        UniqueConstraint("external_id", "source_system", name="uq_positions_external"),
    )


# ==== Access control ====

class Role(TimestampMixin, Base):
    """Role model."""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)

    permissions = relationship("Permission", secondary="role_permissions")


class Permission(Base):
    """Permission model; names look like 'orders:view' or 'scope:department'."""
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class UserPermissionOverride(Base):
    """Direct per-user grant or denial; a denial beats grants from any source."""
    __tablename__ = "user_permission_overrides"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)
    effect = Column(String(10), nullable=False)

    __table_args__ = (
        CheckConstraint(effect.in_(_values(PermissionEffect)), name="chk_permission_effect"),
    )


class User(SyncedMixin, TimestampMixin, Base):
    """User model with a single primary org anchor plus held positions/otdels."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    fio = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=UserStatus.ACTIVE.value, index=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=True, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    otdel_id = Column(Integer, ForeignKey("otdels.id"), nullable=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True, index=True)
    telegram_chat_id = Column(String(50), nullable=True)

    __table_args__ = (
        CheckConstraint(status.in_(_values(UserStatus)), name="chk_user_status"),
        UniqueConstraint("external_id", "source_system", name="uq_users_external"),
    )

    role = relationship("Role")
    positions = relationship("Position", secondary="user_positions", viewonly=True)
    otdels = relationship("Otdel", secondary="user_otdels", viewonly=True)


class UserPosition(Base):
    __tablename__ = "user_positions"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    position_id = Column(Integer, ForeignKey("positions.id", ondelete="CASCADE"), primary_key=True, index=True)


class UserOtdel(Base):
    __tablename__ = "user_otdels"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    otdel_id = Column(Integer, ForeignKey("otdels.id", ondelete="CASCADE"), primary_key=True, index=True)


# ==== Lookups ====

class OrderType(TimestampMixin, Base):
    """Order type lookup."""
    __tablename__ = "order_types"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Status(Base):
    """Order status lookup. Final statuses close the order for SLA purposes."""
    __tablename__ = "statuses"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    is_final = Column(Boolean, default=False, nullable=False)


class Priority(Base):
    """Order priority lookup."""
    __tablename__ = "priorities"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    rank = Column(Integer, nullable=False, default=0)


# ==== Routing ====

class RoutingRule(TimestampMixin, Base):
    """Maps (order type, org scope) to the PositionType that should take the order."""
    __tablename__ = "order_routing_rules"

    id = Column(Integer, primary_key=True)
    rule_name = Column(String(255), nullable=False)
    order_type_id = Column(Integer, ForeignKey("order_types.id"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    otdel_id = Column(Integer, ForeignKey("otdels.id"), nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True)
    position_type = Column(String(50), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(position_type.in_(_values(PositionType)), name="chk_rule_position_type"),
        CheckConstraint("otdel_id IS NULL OR department_id IS NOT NULL", name="chk_rule_otdel_requires_department"),
        CheckConstraint("office_id IS NULL OR branch_id IS NOT NULL", name="chk_rule_office_requires_branch"),
        UniqueConstraint(
            "order_type_id", "department_id", "otdel_id", "branch_id", "office_id",
            name="uq_routing_rule_scope",
            postgresql_nulls_not_distinct=True,
        ),
    )

    order_type = relationship("OrderType")


# ==== Orders ====

class Order(TimestampMixin, Base):
    """Order (ticket) model. Never hard-deleted."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    order_type_id = Column(Integer, ForeignKey("order_types.id"), nullable=True, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    executor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status_id = Column(Integer, ForeignKey("statuses.id"), nullable=False, index=True)
    priority_id = Column(Integer, ForeignKey("priorities.id"), nullable=False, index=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True, index=True)
    otdel_id = Column(Integer, ForeignKey("otdels.id"), nullable=True, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True, index=True)
    office_id = Column(Integer, ForeignKey("offices.id"), nullable=True, index=True)
    duration = Column(DateTime(timezone=True), nullable=True)  # SLA deadline
    completed_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orders_active_created", "created_at", postgresql_where=(deleted_at == None)),  # noqa: E711
    )

    creator = relationship("User", foreign_keys=[creator_id])
    executor = relationship("User", foreign_keys=[executor_id])
    status = relationship("Status")
    priority = relationship("Priority")
    order_type = relationship("OrderType")


class Attachment(Base):
    """Attachment metadata; file bytes live in the external file store."""
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_path = Column(Text, nullable=False)
    file_type = Column(String(100), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class OrderHistory(Base):
    """Append-only audit trail. Rows are never updated or deleted."""
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    attachment_id = Column(Integer, ForeignKey("attachments.id"), nullable=True)
    tx_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(event_type.in_(_values(HistoryEventType)), name="chk_order_history_event_type"),
        Index("idx_order_history_order_created", "order_id", "created_at", "id"),
        Index("idx_order_history_order_user", "order_id", "user_id"),
    )

    actor = relationship("User")
    attachment = relationship("Attachment")


class NotificationOutbox(Base):
    """
    Notification outbox - one row per recipient.
    Processed by the Celery worker with SELECT FOR UPDATE SKIP LOCKED.
    """
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True)
    type = Column(String(50), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    order_name = Column(String(255), nullable=True)
    recipient_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    recipient_chat_id = Column(String(100), nullable=True)  # Telegram chat_id snapshot
    message = Column(Text, nullable=False)
    meta_data = Column(JSONVariant, default=dict)
    status = Column(String(20), default="pending", index=True)  # pending/sent/failed/skipped
    attempts = Column(Integer, default=0)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    idempotency_key = Column(String(255), unique=True, nullable=False)  # type:order_id:user_id
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(type.in_(_values(NotificationType)), name="chk_notification_type"),
        CheckConstraint(
            status.in_(["pending", "sent", "failed", "skipped"]),
            name="chk_notification_status",
        ),
        Index("idx_outbox_pending_retry", "status", "next_retry_at",
              postgresql_where=(status == "pending")),
    )
