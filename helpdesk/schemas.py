"""Pydantic schemas for API."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import HistoryEventType, PositionType, UserStatus


class OrgContext(BaseModel):
    """Org anchors of an order or a rule on the two independent axes.

    An otdel without its department (or an office without its branch) is invalid.
    """

    department_id: Optional[int] = None
    otdel_id: Optional[int] = None
    branch_id: Optional[int] = None
    office_id: Optional[int] = None
    model_config = ConfigDict(from_attributes=True, frozen=True)

    @model_validator(mode="after")
    def _check_axis_consistency(self) -> "OrgContext":
        if self.otdel_id is not None and self.department_id is None:
            raise ValueError("otdel_id requires department_id")
        if self.office_id is not None and self.branch_id is None:
            raise ValueError("office_id requires branch_id")
        return self

    def populated_fields(self) -> dict[str, int]:
        return {name: value for name, value in self.model_dump().items() if value is not None}

    def is_empty(self) -> bool:
        return not self.populated_fields()


# User / org brief schemas
class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: int
    fio: str
    model_config = ConfigDict(from_attributes=True)


# Routing rules
class RoutingRuleBase(BaseModel):
    rule_name: str = Field(min_length=1, max_length=255)
    order_type_id: int
    position_type: PositionType
    is_active: bool = True


class RoutingRuleCreate(RoutingRuleBase):
    scope: OrgContext = Field(default_factory=OrgContext)


class RoutingRuleUpdate(BaseModel):
    rule_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    order_type_id: Optional[int] = None
    position_type: Optional[PositionType] = None
    is_active: Optional[bool] = None
    scope: Optional[OrgContext] = None


class RoutingRuleResponse(BaseModel):
    id: int
    rule_name: str
    order_type_id: int
    department_id: Optional[int] = None
    otdel_id: Optional[int] = None
    branch_id: Optional[int] = None
    office_id: Optional[int] = None
    position_type: PositionType
    is_active: bool
    created_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class RoutingPreviewRequest(BaseModel):
    order_type_id: int
    context: OrgContext = Field(default_factory=OrgContext)


class RoutingPreviewResponse(BaseModel):
    found: bool
    user_id: Optional[int] = None
    rule_id: Optional[int] = None
    position_type: Optional[PositionType] = None
    used_fallback: bool = False


# Orders
class OrderCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    address: Optional[str] = None
    order_type_id: int
    context: OrgContext = Field(default_factory=OrgContext)
    priority_id: Optional[int] = None
    duration: Optional[datetime] = None
    comment: Optional[str] = None


class OrderChange(BaseModel):
    """Partial update of an order; every set field becomes one history event."""
    status_id: Optional[int] = None
    executor_id: Optional[int] = None
    priority_id: Optional[int] = None
    duration: Optional[datetime] = None
    comment: Optional[str] = None
    attachment_id: Optional[int] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    address: Optional[str] = None
    context: Optional[OrgContext] = None


class OrderResponse(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    order_type_id: Optional[int] = None
    creator_id: int
    executor_id: Optional[int] = None
    status_id: int
    priority_id: int
    department_id: Optional[int] = None
    otdel_id: Optional[int] = None
    branch_id: Optional[int] = None
    office_id: Optional[int] = None
    duration: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class OrderHistoryResponse(BaseModel):
    id: int
    order_id: int
    user_id: int
    event_type: HistoryEventType
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    comment: Optional[str] = None
    attachment_id: Optional[int] = None
    tx_id: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TimelineEvent(BaseModel):
    actor: UserBrief
    created_at: datetime
    lines: list[str] = Field(default_factory=list)
    comment: Optional[str] = None
    attachment_ids: list[int] = Field(default_factory=list)


# Order list criteria
class OrderSortField(str, enum.Enum):
    ID = "id"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    DURATION = "duration"
    PRIORITY = "priority"
    STATUS = "status"


class SortDirection(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


class OrderListCriteria(BaseModel):
    """Typed filters/sort for order listings. Values are always bound, never interpolated."""
    status_ids: list[int] = Field(default_factory=list)
    priority_ids: list[int] = Field(default_factory=list)
    order_type_id: Optional[int] = None
    department_id: Optional[int] = None
    otdel_id: Optional[int] = None
    branch_id: Optional[int] = None
    office_id: Optional[int] = None
    executor_id: Optional[int] = None
    creator_id: Optional[int] = None
    search: Optional[str] = Field(default=None, max_length=255)
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    overdue: Optional[bool] = None
    sort_by: Optional[OrderSortField] = None
    sort_dir: SortDirection = SortDirection.DESC
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


# Org sync payloads
class OrgUnitSync(BaseModel):
    external_id: str
    source_system: str
    name: str
    parent_id: Optional[int] = None
    is_active: bool = True


class PositionSync(BaseModel):
    external_id: str
    source_system: str
    name: str
    type: PositionType
    anchors: OrgContext = Field(default_factory=OrgContext)
    is_active: bool = True


class UserSync(BaseModel):
    """Full snapshot of a user; position and otdel sets replace the stored ones."""
    external_id: str
    source_system: str
    fio: str
    email: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    anchors: OrgContext = Field(default_factory=OrgContext)
    position_ids: list[int] = Field(default_factory=list)
    otdel_ids: list[int] = Field(default_factory=list)
