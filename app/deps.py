"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request

from app.core.exceptions import ForbiddenError, NotFoundError, UnauthorizedError
from app.core.logging import bind_principal
from app.core.security import load_auth_token
from app.services.owners import ROLES, Principal

SESSION_COOKIE_NAME = "zeva_session"


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_principal(request: Request) -> Principal:
    """Dependency: verify the auth token and return the caller's id and role."""
    token = _token_from_request(request)
    if not token:
        raise UnauthorizedError("Not authenticated")
    payload = load_auth_token(token)
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    user_id = payload.get("user_id")
    role = payload.get("role")
    if not user_id or role not in ROLES:
        raise UnauthorizedError("Invalid token")
    principal = Principal(id=str(user_id), role=role, tenant_id=payload.get("tenant_id"))
    bind_principal(principal.id, principal.role)
    return principal


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Dependency: require current caller to have role admin."""
    if not principal.is_admin:
        raise ForbiddenError("Admin only")
    return principal


def parse_object_id(value: str, what: str = "Resource") -> PydanticObjectId:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found") from None
