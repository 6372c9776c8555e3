"""Authentication and authorization.

Tokens are issued by the external auth service; here they are only verified.
"""
import logging
import time

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .enums import UserStatus
from .models import User
from .services.permissions import ActorContext, build_actor_context

logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()


def _credentials_error(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token; exp/iat are checked with the configured leeway."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    leeway = int(settings.JWT_LEEWAY_SECONDS)
    try:
        exp = int(payload["exp"])
        iat = int(payload["iat"]) if payload.get("iat") is not None else None
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()

    if now > exp + leeway:
        raise _credentials_error("Token expired")
    # Reject tokens issued far in the future (clock skew / malicious tokens).
    if iat is not None and iat > now + leeway:
        raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> int:
    """Parse and validate JWT subject as a user id."""
    sub = payload.get("sub")
    if sub is None:
        raise _credentials_error()
    try:
        return int(str(sub))
    except ValueError:
        raise _credentials_error()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type", "access") != "access":
        raise _credentials_error("Invalid token type")

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.status == UserStatus.ACTIVE.value).first()
    if user is None:
        raise _credentials_error("User not found or inactive")
    return user


def get_actor_context(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActorContext:
    """Effective permissions and scopes of the caller, resolved once per request."""
    return build_actor_context(db, current_user)


# Permission checks
class PermissionChecker:
    """Check an action permission against the caller's effective permissions."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, actor: ActorContext = Depends(get_actor_context)) -> ActorContext:
        if not actor.has_permission(self.required_permission):
            logger.info("auth.permission_denied user=%s permission=%s", actor.user.id, self.required_permission)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required"
            )
        return actor
