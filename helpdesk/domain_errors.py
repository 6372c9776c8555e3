"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATEs raised when SET LOCAL lock_timeout / statement_timeout fire.
_LOCK_NOT_AVAILABLE = "55P03"
_QUERY_CANCELED = "57014"


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def not_found(code: str, message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=code, http_status=404, message=message, details=details)


def conflict(code: str, message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=code, http_status=409, message=message, details=details)


def validation_error(code: str, message: str, details: dict[str, Any] | None = None) -> DomainError:
    return DomainError(code=code, http_status=422, message=message, details=details)


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def domain_error_from_storage(exc: SQLAlchemyError, *, operation: str) -> DomainError:
    """Classify a storage failure at the repository boundary.

    Constraint violations become Conflict. A lock wait timeout becomes the
    retryable ORDER_LOCKED and a statement timeout the retryable
    STORAGE_TIMEOUT. Everything else is logged and surfaced as internal.
    """
    if isinstance(exc, IntegrityError):
        return conflict(
            "STORAGE_CONFLICT",
            "Operation conflicts with existing data",
            details={"operation": operation},
        )
    sqlstate = _sqlstate(exc) if isinstance(exc, DBAPIError) else None
    if sqlstate == _LOCK_NOT_AVAILABLE:
        return conflict(
            "ORDER_LOCKED",
            "Order is being modified by another request, retry later",
            details={"operation": operation},
        )
    if sqlstate == _QUERY_CANCELED:
        logger.warning("storage.timeout operation=%s", operation)
        return conflict(
            "STORAGE_TIMEOUT",
            "Storage operation timed out, retry later",
            details={"operation": operation},
        )

    logger.exception("Unexpected storage error during %s", operation)
    return DomainError(
        code="INTERNAL_ERROR",
        http_status=500,
        message="Internal server error",
    )
