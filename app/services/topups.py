"""SMS top-up requests: owner submits, admin approves (pool -> wallet) or rejects.

A request is applied exactly once. Approval first claims the pending request
(claim_token), runs the pool->wallet transfer keyed by the request id, then
flips status to approved conditional on the claim. status stays the single
source of truth for "applied"; a claim left behind by a crash is settled by
`settle_stale_claim`.
"""

import uuid
from datetime import datetime
from typing import Any

from beanie import PydanticObjectId

from app.core.audit import log_event
from app.core.exceptions import (
    AlreadyProcessedError,
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    OutcomeUnknownError,
)
from app.core.logging import get_logger
from app.db.atomic import find_one_and_update
from app.models.topup_request import TopupRequest
from app.services import admin_credits, allocations, wallets
from app.services.amounts import require_positive
from app.services.owners import OWNER_TYPES, TOPUP_ROLES, Principal

log = get_logger(__name__)

STATUSES = ("pending", "approved", "rejected")
DECISIONS = ("approved", "rejected")


async def create_request(principal: Principal, credits: int, note: str = "") -> TopupRequest:
    if principal.role not in TOPUP_ROLES:
        raise ForbiddenError("Only clinic or doctor accounts can request SMS top-ups")
    require_positive(credits, "Credits must be a positive integer")
    req = TopupRequest(
        owner_id=principal.owner_id,
        owner_type=principal.owner_type,
        credits=credits,
        note=note or "",
        requested_by=principal.id,
    )
    await req.insert()
    log.info("topup_created", request_id=str(req.id), owner_id=req.owner_id, owner_type=req.owner_type, credits=credits)
    return req


async def get_request(request_id: PydanticObjectId, principal: Principal | None = None) -> TopupRequest:
    req = await TopupRequest.get(request_id)
    if not req:
        raise NotFoundError("Top-up request not found")
    if principal is not None and not principal.is_admin:
        if req.owner_id != principal.owner_id or req.owner_type != principal.owner_type:
            raise NotFoundError("Top-up request not found")
    return req


async def list_requests(
    principal: Principal,
    status: str | None = None,
    owner_type: str | None = None,
    owner_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[TopupRequest], int]:
    """Owners see only their own requests; admins can filter by owner."""
    filter_: dict[str, Any] = {}
    if status:
        if status not in STATUSES:
            raise BadRequestError(f"Invalid status: {status}")
        filter_["status"] = status
    if principal.is_admin:
        if owner_type:
            if owner_type not in OWNER_TYPES:
                raise BadRequestError(f"Invalid owner type: {owner_type}")
            filter_["owner_type"] = owner_type
        if owner_id:
            filter_["owner_id"] = owner_id
    else:
        filter_["owner_id"] = principal.owner_id
        filter_["owner_type"] = principal.owner_type
    total = await TopupRequest.find(filter_).count()
    items = await TopupRequest.find(filter_).sort(-TopupRequest.created_at).skip(offset).limit(limit).to_list()
    return items, total


async def _already_processed(request_id: PydanticObjectId) -> AlreadyProcessedError:
    req = await TopupRequest.get(request_id)
    if req is None:
        raise NotFoundError("Top-up request not found")
    if req.status != "pending":
        return AlreadyProcessedError(f"Top-up request already {req.status}", req.status)
    return AlreadyProcessedError("Top-up request is already being processed", req.status)


async def resolve(
    request_id: PydanticObjectId,
    decision: str,
    admin_note: str = "",
    admin_id: str | None = None,
) -> TopupRequest:
    if decision not in DECISIONS:
        raise BadRequestError("Status must be 'approved' or 'rejected'")
    req = await get_request(request_id)
    if req.status != "pending":
        raise AlreadyProcessedError(f"Top-up request already {req.status}", req.status)
    if decision == "rejected":
        return await _reject(req, admin_note, admin_id)
    return await _approve(req, admin_note, admin_id)


async def _reject(req: TopupRequest, admin_note: str, admin_id: str | None) -> TopupRequest:
    now = datetime.utcnow()
    rejected = await find_one_and_update(
        TopupRequest,
        {"_id": req.id, "status": "pending", "claim_token": None},
        {
            "$set": {
                "status": "rejected",
                "admin_note": admin_note or "",
                "processed_by": admin_id,
                "processed_at": now,
                "updated_at": now,
            }
        },
    )
    if rejected is None:
        raise await _already_processed(req.id)
    log.info("topup_resolved", request_id=str(req.id), status="rejected")
    await log_event(admin_id, "topup_rejected", "topup_request", str(req.id), {"credits": req.credits})
    return rejected


async def _approve(req: TopupRequest, admin_note: str, admin_id: str | None) -> TopupRequest:
    token = uuid.uuid4().hex
    now = datetime.utcnow()
    claimed = await find_one_and_update(
        TopupRequest,
        {"_id": req.id, "status": "pending", "claim_token": None},
        {
            "$set": {
                "claim_token": token,
                "claimed_at": now,
                "admin_note": admin_note or "",
                "processed_by": admin_id,
                "updated_at": now,
            }
        },
    )
    if claimed is None:
        raise await _already_processed(req.id)
    try:
        await allocations.transfer_from_pool(
            claimed.owner_id,
            claimed.owner_type,
            claimed.credits,
            "topup_approved",
            claimed.reservation_key,
            meta={"request_id": str(claimed.id), "admin_id": admin_id},
        )
    except OutcomeUnknownError:
        raise
    except Exception:
        await _release_claim(claimed.id, token)
        raise
    try:
        approved = await _commit_approval(claimed.id, token)
    except Exception as exc:
        log.error("topup_commit_failed", request_id=str(claimed.id), error=str(exc))
        raise OutcomeUnknownError(details={"request_id": str(claimed.id)}) from exc
    if approved is None:
        # Recovery settled the claim first
        approved = await get_request(claimed.id)
        if approved.status != "approved":
            raise OutcomeUnknownError(details={"request_id": str(claimed.id)})
    log.info("topup_resolved", request_id=str(approved.id), status="approved", credits=approved.credits)
    await log_event(
        admin_id,
        "topup_approved",
        "topup_request",
        str(approved.id),
        {"credits": approved.credits, "owner_id": approved.owner_id, "owner_type": approved.owner_type},
    )
    return approved


async def _commit_approval(request_id: PydanticObjectId, token: str) -> TopupRequest | None:
    now = datetime.utcnow()
    return await find_one_and_update(
        TopupRequest,
        {"_id": request_id, "status": "pending", "claim_token": token},
        {
            "$set": {
                "status": "approved",
                "processed_at": now,
                "claim_token": None,
                "claimed_at": None,
                "updated_at": now,
            }
        },
    )


async def _release_claim(request_id: PydanticObjectId, token: str) -> TopupRequest | None:
    return await find_one_and_update(
        TopupRequest,
        {"_id": request_id, "status": "pending", "claim_token": token},
        {
            "$set": {
                "claim_token": None,
                "claimed_at": None,
                "admin_note": "",
                "processed_by": None,
                "updated_at": datetime.utcnow(),
            }
        },
    )


async def settle_stale_claim(req: TopupRequest) -> str:
    """
    Finish or undo an approval abandoned mid-flight.
    Wallet credited -> commit as approved. Otherwise roll the pool back and release the claim (request stays pending).
    """
    key = req.reservation_key
    landed = await wallets.find_entry_by_key(key)
    if landed is not None:
        await _commit_approval(req.id, req.claim_token)
        await admin_credits.release_reservation(key)
        log.info("ledger_recovery", request_id=str(req.id), action="completed")
        return "completed"
    await admin_credits.rollback_consumption(key)
    await _release_claim(req.id, req.claim_token)
    log.info("ledger_recovery", request_id=str(req.id), action="released")
    return "released"


async def stale_claims(cutoff: datetime) -> list[TopupRequest]:
    return await TopupRequest.find(
        {"status": "pending", "claim_token": {"$ne": None}, "claimed_at": {"$lte": cutoff}}
    ).to_list()


def request_out(req: TopupRequest) -> dict[str, Any]:
    return {
        "id": str(req.id),
        "ownerId": req.owner_id,
        "ownerType": req.owner_type,
        "credits": req.credits,
        "note": req.note,
        "adminNote": req.admin_note,
        "status": req.status,
        "requestedBy": req.requested_by,
        "processedBy": req.processed_by if req.status != "pending" else None,
        "processedAt": req.processed_at.isoformat() if req.processed_at else None,
        "createdAt": req.created_at.isoformat(),
        "updatedAt": req.updated_at.isoformat(),
    }
