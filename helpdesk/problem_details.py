"""RFC 7807 Problem Details rendering for domain and request validation errors."""
from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .domain_errors import DomainError

PROBLEM_TYPE_BASE = "https://api.helpdesk.local/problems"


def _title(http_status: int) -> str:
    try:
        return HTTPStatus(http_status).phrase
    except ValueError:
        return "Domain Error"


def build_problem_details_response(exc: DomainError, *, instance: str | None = None) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    payload: dict[str, Any] = {
        "type": f"{PROBLEM_TYPE_BASE}/{exc.code.lower()}",
        "title": _title(exc.http_status),
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance is not None:
        payload["instance"] = instance
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=jsonable_encoder(payload),
        media_type="application/problem+json",
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return build_problem_details_response(exc, instance=request.url.path)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed payloads (e.g. an otdel without its department) share the 422 contract."""
    error = DomainError(
        code="VALIDATION_ERROR",
        http_status=422,
        message="Request validation failed",
        details={"errors": [
            {"loc": list(item.get("loc", ())), "msg": item.get("msg", ""), "type": item.get("type", "")}
            for item in exc.errors()
        ]},
    )
    return build_problem_details_response(error, instance=request.url.path)
