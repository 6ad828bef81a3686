from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.core.pagination import page_of, paginate
from app.deps import get_current_principal, parse_object_id, require_admin
from app.services import topups as topups_service
from app.services.owners import Principal

router = APIRouter()


class TopupCreate(BaseModel):
    credits: int
    note: str = ""


class TopupResolve(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["approved", "rejected"]
    admin_note: str = Field(default="", alias="adminNote")


@router.get("")
async def topups_list(
    principal: Principal = Depends(get_current_principal),
    status: str | None = None,
    owner_type: str | None = Query(None, alias="ownerType"),
    owner_id: str | None = Query(None, alias="ownerId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """List top-up requests, newest first. Non-admins only see their own."""
    limit, offset = paginate(limit, offset)
    items, total = await topups_service.list_requests(
        principal, status=status, owner_type=owner_type, owner_id=owner_id, limit=limit, offset=offset
    )
    return {"success": True, "data": page_of([topups_service.request_out(r) for r in items], limit, offset, total)}


@router.post("")
async def topup_create(body: TopupCreate, principal: Principal = Depends(get_current_principal)):
    req = await topups_service.create_request(principal, body.credits, body.note)
    return {"success": True, "data": topups_service.request_out(req)}


@router.get("/{request_id}")
async def topup_get(request_id: str, principal: Principal = Depends(get_current_principal)):
    req = await topups_service.get_request(parse_object_id(request_id, "Top-up request"), principal)
    return {"success": True, "data": topups_service.request_out(req)}


@router.patch("/{request_id}")
async def topup_resolve(request_id: str, body: TopupResolve, admin: Principal = Depends(require_admin)):
    """Approve (pool -> wallet) or reject a pending request. Terminal; a second call fails."""
    req = await topups_service.resolve(
        parse_object_id(request_id, "Top-up request"),
        body.status,
        admin_note=body.admin_note,
        admin_id=admin.id,
    )
    return {"success": True, "data": topups_service.request_out(req)}
