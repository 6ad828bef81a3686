from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import BadRequestError
from app.core.pagination import page_of, paginate
from app.deps import get_current_principal, parse_object_id, require_admin
from app.models.owner_wallet import OwnerType
from app.services import allocations as allocations_service
from app.services import wallets as wallets_service
from app.services.owners import Principal, owner_type_for_role

router = APIRouter()


class ManualAllocation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias="ownerId")
    owner_type: OwnerType = Field(alias="ownerType")
    credits: int
    note: str = ""


class WalletUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_active: bool | None = Field(default=None, alias="isActive")
    low_balance_threshold: int | None = Field(default=None, alias="lowBalanceThreshold")
    reset_low_balance_threshold: bool = Field(default=False, alias="resetLowBalanceThreshold")


@router.get("/me")
async def wallet_me(principal: Principal = Depends(get_current_principal)):
    """Caller's wallet snapshot (created on first access)."""
    wallet = await wallets_service.get_or_create(principal.owner_id, owner_type_for_role(principal.role))
    return {"success": True, "data": wallets_service.snapshot(wallet)}


@router.get("/me/ledger")
async def wallet_me_ledger(
    principal: Principal = Depends(get_current_principal),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    limit, offset = paginate(limit, offset)
    wallet = await wallets_service.get_or_create(principal.owner_id, owner_type_for_role(principal.role))
    entries, total = await wallets_service.list_ledger(wallet.id, limit=limit, offset=offset)
    return {"success": True, "data": page_of([wallets_service.ledger_entry_out(e) for e in entries], limit, offset, total)}


@router.get("")
async def wallets_list(
    admin: Principal = Depends(require_admin),
    owner_type: OwnerType | None = Query(None, alias="ownerType"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    limit, offset = paginate(limit, offset)
    items, total = await wallets_service.list_wallets(owner_type=owner_type, limit=limit, offset=offset)
    return {"success": True, "data": page_of([wallets_service.snapshot(w) for w in items], limit, offset, total)}


@router.post("")
async def wallet_allocate(body: ManualAllocation, admin: Principal = Depends(require_admin)):
    """Admin: move credits from the pool straight into an owner's wallet."""
    wallet, entry = await allocations_service.allocate_manual_credit(
        body.owner_id, body.owner_type, body.credits, note=body.note, admin_id=admin.id
    )
    return {
        "success": True,
        "data": {"wallet": wallets_service.snapshot(wallet), "entry": wallets_service.ledger_entry_out(entry)},
    }


@router.patch("/{wallet_id}")
async def wallet_update(wallet_id: str, body: WalletUpdate, admin: Principal = Depends(require_admin)):
    """Admin: enable/disable a wallet or override its low-balance threshold."""
    oid = parse_object_id(wallet_id, "Wallet")
    if body.is_active is None and body.low_balance_threshold is None and not body.reset_low_balance_threshold:
        raise BadRequestError("Nothing to update")
    wallet = await wallets_service.get_wallet(oid)
    if body.is_active is not None:
        wallet = await wallets_service.set_active(oid, body.is_active, actor_id=admin.id)
    if body.low_balance_threshold is not None or body.reset_low_balance_threshold:
        threshold = None if body.reset_low_balance_threshold else body.low_balance_threshold
        wallet = await wallets_service.set_low_balance_threshold(oid, threshold, actor_id=admin.id)
    return {"success": True, "data": wallets_service.snapshot(wallet)}


@router.get("/{wallet_id}/ledger")
async def wallet_ledger(
    wallet_id: str,
    admin: Principal = Depends(require_admin),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    limit, offset = paginate(limit, offset)
    wallet = await wallets_service.get_wallet(parse_object_id(wallet_id, "Wallet"))
    entries, total = await wallets_service.list_ledger(wallet.id, limit=limit, offset=offset)
    return {"success": True, "data": page_of([wallets_service.ledger_entry_out(e) for e in entries], limit, offset, total)}
