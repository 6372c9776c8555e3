from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from conftest import actor_with

from helpdesk.auth import get_actor_context
from helpdesk.config import settings
from helpdesk.database import get_db
from helpdesk.enums import OrderPermission, PermissionScope, PositionType
from helpdesk.main import app


@pytest.fixture()
def api(engine, make):
    lookups = make.lookups()
    department = make.department()
    hardware = make.order_type()
    make.rule(hardware, PositionType.HEAD_OF_DEPARTMENT, department_id=department.id)
    head = make.user(positions=(make.position(PositionType.HEAD_OF_DEPARTMENT, department_id=department.id),))
    creator = make.user(department_id=department.id)
    make.db.commit()

    state = {
        "actor": actor_with(
            creator,
            PermissionScope.DEPARTMENT,
            permissions=(
                OrderPermission.VIEW.value,
                OrderPermission.CREATE.value,
                OrderPermission.UPDATE.value,
            ),
        ),
    }
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_actor_context] = lambda: state["actor"]
    try:
        yield {
            "client": TestClient(app),
            "state": state,
            "department": department,
            "hardware": hardware,
            "head": head,
            "creator": creator,
            "statuses": lookups["statuses"],
        }
    finally:
        app.dependency_overrides.clear()


def _create(api) -> dict:
    response = api["client"].post("/api/v1/orders", json={
        "name": "Не работает интернет",
        "order_type_id": api["hardware"].id,
        "context": {"department_id": api["department"].id},
        "comment": "Весь этаж",
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_create_then_read_history_and_timeline(api) -> None:
    order = _create(api)
    client = api["client"]

    assert order["executor_id"] == api["head"].id

    history = client.get(f"/api/v1/orders/{order['id']}/history")
    assert history.status_code == 200
    assert [event["event_type"] for event in history.json()] == ["CREATE", "DELEGATION", "COMMENT"]

    timeline = client.get(f"/api/v1/orders/{order['id']}/timeline")
    assert timeline.status_code == 200
    groups = timeline.json()
    assert groups[0]["comment"] == "Весь этаж"
    assert "Создана заявка: «Не работает интернет»" in groups[0]["lines"]


def test_patch_applies_change(api) -> None:
    order = _create(api)

    response = api["client"].patch(
        f"/api/v1/orders/{order['id']}",
        json={"status_id": api["statuses"]["CLOSED"].id},
    )

    assert response.status_code == 200
    assert response.json()["completed_at"] is not None


def test_missing_permission_is_forbidden(api) -> None:
    order = _create(api)

    response = api["client"].delete(f"/api/v1/orders/{order['id']}")

    assert response.status_code == 403


def test_out_of_scope_order_is_problem_details_404(api, make) -> None:
    order = _create(api)
    outsider = make.user()
    make.db.commit()
    api["state"]["actor"] = actor_with(outsider, PermissionScope.OWN, permissions=(OrderPermission.VIEW.value,))

    response = api["client"].get(f"/api/v1/orders/{order['id']}")

    assert response.status_code == 404
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["code"] == "ORDER_NOT_FOUND"


def test_invalid_org_context_is_rejected_at_the_boundary(api) -> None:
    response = api["client"].post("/api/v1/orders", json={
        "name": "x",
        "order_type_id": api["hardware"].id,
        "context": {"otdel_id": 1},
    })

    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["instance"] == "/api/v1/orders"
    assert "otdel_id requires department_id" in body["details"]["errors"][0]["msg"]


def test_listing_returns_visible_orders_with_total(api) -> None:
    _create(api)
    _create(api)

    response = api["client"].get("/api/v1/orders", params={"limit": 1, "sort_by": "id", "sort_dir": "asc"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["total"] == 2
    assert len(payload["items"]) == 1


def test_health() -> None:
    response = TestClient(app).get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_listing_rejects_page_size_above_configured_maximum(api) -> None:
    response = api["client"].get("/api/v1/orders", params={"limit": settings.ORDER_LIST_MAX_LIMIT + 1})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
