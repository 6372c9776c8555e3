from __future__ import annotations

import time

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from conftest import actor_with

from helpdesk.auth import PermissionChecker, decode_token, get_current_user
from helpdesk.config import Settings, settings
from helpdesk.enums import OrderPermission, UserStatus


def _token(**claims) -> str:
    now = int(time.time())
    payload = {"iat": now, "exp": now + 600, "type": "access"}
    payload.update(claims)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_decode_accepts_fresh_token() -> None:
    assert decode_token(_token(sub="42"))["sub"] == "42"


def test_expired_token_is_rejected_after_leeway() -> None:
    now = int(time.time())
    stale = _token(sub="1", iat=now - 3600, exp=now - settings.JWT_LEEWAY_SECONDS - 5)

    with pytest.raises(HTTPException) as exc:
        decode_token(stale)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Token expired"


def test_token_issued_in_the_future_is_rejected() -> None:
    with pytest.raises(HTTPException) as exc:
        decode_token(_token(sub="1", iat=int(time.time()) + 3600))

    assert exc.value.status_code == 401


def test_foreign_signature_is_rejected() -> None:
    forged = jwt.encode({"sub": "1", "exp": int(time.time()) + 60}, "other-secret", algorithm="HS256")

    with pytest.raises(HTTPException):
        decode_token(forged)


def test_current_user_must_be_active(make) -> None:
    active = make.user()
    inactive = make.user(status=UserStatus.INACTIVE)
    make.db.commit()

    assert get_current_user(_bearer(_token(sub=str(active.id))), make.db).id == active.id
    with pytest.raises(HTTPException) as exc:
        get_current_user(_bearer(_token(sub=str(inactive.id))), make.db)
    assert exc.value.status_code == 401


def test_refresh_tokens_are_not_accepted(make) -> None:
    user = make.user()
    make.db.commit()

    with pytest.raises(HTTPException) as exc:
        get_current_user(_bearer(_token(sub=str(user.id), type="refresh")), make.db)

    assert exc.value.detail == "Invalid token type"


def test_permission_checker_returns_actor_or_forbids(make) -> None:
    user = make.user()
    checker = PermissionChecker(OrderPermission.DELETE.value)

    allowed = actor_with(user, permissions=(OrderPermission.DELETE.value,))
    assert checker(actor=allowed) is allowed

    with pytest.raises(HTTPException) as exc:
        checker(actor=actor_with(user, permissions=(OrderPermission.VIEW.value,)))
    assert exc.value.status_code == 403


def test_settings_expose_only_consumed_options() -> None:
    assert "DEBUG" not in Settings.model_fields
    assert "REDIS_URL" not in Settings.model_fields
    assert {"DATABASE_URL", "CELERY_BROKER_URL", "ORDER_LIST_MAX_LIMIT"} <= set(Settings.model_fields)
