from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import BadRequestError
from app.deps import require_admin
from app.services import admin_credits as pool_service
from app.services import reconciliation as reconciliation_service
from app.services.amounts import require_non_negative, require_positive
from app.services.owners import Principal

router = APIRouter()


class AdminCreditsUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int | None = None
    note: str | None = None
    low_threshold: int | None = Field(default=None, alias="lowThreshold")


@router.get("")
async def admin_credits_get(admin: Principal = Depends(require_admin)):
    """Pool snapshot including derived isLow."""
    pool = await pool_service.get_or_create()
    return {"success": True, "data": pool_service.snapshot(pool)}


@router.post("")
async def admin_credits_update(body: AdminCreditsUpdate, admin: Principal = Depends(require_admin)):
    """Top up the pool and/or change its low-water threshold."""
    if body.amount is None and body.low_threshold is None:
        raise BadRequestError("Provide amount and/or lowThreshold")
    # Validate both before writing either
    if body.amount is not None:
        require_positive(body.amount)
    if body.low_threshold is not None:
        require_non_negative(body.low_threshold, "Low threshold must be a non-negative integer")
    pool = None
    if body.low_threshold is not None:
        pool = await pool_service.update_low_threshold(body.low_threshold, actor_id=admin.id)
    if body.amount is not None:
        pool = await pool_service.add_credits(body.amount, note=body.note, actor_id=admin.id)
    return {"success": True, "data": pool_service.snapshot(pool)}


@router.get("/reconciliation")
async def admin_credits_reconciliation(admin: Principal = Depends(require_admin)):
    """Run recovery, then report conservation and per-wallet ledger drift."""
    return {"success": True, "data": await reconciliation_service.run_reconciliation()}
