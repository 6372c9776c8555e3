from __future__ import annotations

import pytest
from pydantic import ValidationError

from helpdesk.domain_errors import DomainError
from helpdesk.enums import PositionType
from helpdesk.schemas import (
    OrgContext,
    RoutingPreviewRequest,
    RoutingRuleCreate,
    RoutingRuleUpdate,
)
from helpdesk.use_cases.routing_rules import (
    create_routing_rule_use_case,
    deactivate_routing_rule_use_case,
    list_routing_rules_use_case,
    preview_routing_use_case,
    update_routing_rule_use_case,
)


def _rule_payload(order_type_id: int, **scope) -> RoutingRuleCreate:
    return RoutingRuleCreate(
        rule_name="Ремонт",
        order_type_id=order_type_id,
        position_type=PositionType.HEAD_OF_DEPARTMENT,
        scope=OrgContext(**scope),
    )


def test_rule_scope_rejects_otdel_without_department() -> None:
    with pytest.raises(ValidationError):
        RoutingRuleCreate(
            rule_name="bad",
            order_type_id=1,
            position_type=PositionType.HEAD_OF_OTDEL,
            scope={"otdel_id": 2},
        )


def test_duplicate_scope_is_conflict(make) -> None:
    department = make.department()
    hardware = make.order_type()
    make.db.commit()
    create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id, department_id=department.id))

    with pytest.raises(DomainError) as exc:
        create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id, department_id=department.id))

    assert exc.value.http_status == 409
    assert exc.value.code == "ROUTING_RULE_DUPLICATE"


def test_empty_scope_duplicate_is_detected_too(make) -> None:
    hardware = make.order_type()
    make.db.commit()
    create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id))

    with pytest.raises(DomainError) as exc:
        create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id))

    assert exc.value.code == "ROUTING_RULE_DUPLICATE"


def test_rule_for_unknown_order_type_is_not_found(make) -> None:
    with pytest.raises(DomainError) as exc:
        create_routing_rule_use_case(db=make.db, data=_rule_payload(404))

    assert exc.value.http_status == 404
    assert exc.value.code == "ORDER_TYPE_NOT_FOUND"


def test_update_moves_rule_scope_and_keeps_uniqueness(make) -> None:
    first_department = make.department()
    second_department = make.department("Второй")
    hardware = make.order_type()
    make.db.commit()
    rule = create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id, department_id=first_department.id))
    other = create_routing_rule_use_case(
        db=make.db,
        data=_rule_payload(hardware.id, department_id=second_department.id),
    )

    with pytest.raises(DomainError) as exc:
        update_routing_rule_use_case(
            db=make.db,
            rule_id=other.id,
            data=RoutingRuleUpdate(scope=OrgContext(department_id=first_department.id)),
        )
    assert exc.value.code == "ROUTING_RULE_DUPLICATE"

    updated = update_routing_rule_use_case(
        db=make.db,
        rule_id=rule.id,
        data=RoutingRuleUpdate(position_type=PositionType.MANAGER, rule_name="Ремонт (менеджер)"),
    )
    assert updated.position_type == PositionType.MANAGER.value
    assert updated.department_id == first_department.id


def test_deactivated_rule_is_hidden_from_default_listing(make) -> None:
    hardware = make.order_type()
    make.db.commit()
    rule = create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id))

    deactivate_routing_rule_use_case(db=make.db, rule_id=rule.id)

    assert list_routing_rules_use_case(db=make.db) == []
    assert [r.id for r in list_routing_rules_use_case(db=make.db, include_inactive=True)] == [rule.id]


def test_preview_reports_fallback(make) -> None:
    department = make.department()
    hardware = make.order_type()
    manager = make.user(positions=(make.position(PositionType.MANAGER, department_id=department.id),))
    make.db.commit()
    rule = create_routing_rule_use_case(db=make.db, data=_rule_payload(hardware.id, department_id=department.id))

    preview = preview_routing_use_case(
        db=make.db,
        data=RoutingPreviewRequest(order_type_id=hardware.id, context=OrgContext(department_id=department.id)),
    )

    assert preview.found is True
    assert preview.user_id == manager.id
    assert preview.rule_id == rule.id
    assert preview.position_type == PositionType.MANAGER
    assert preview.used_fallback is True
