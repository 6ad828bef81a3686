"""Admin credit pool: the single reservoir every wallet credit is drawn from.

All mutations are conditional single-document updates on the one pool row, so
concurrent approvals can never overdraw it. Pool->wallet transfers consume under
a reservation key that stays in ``in_flight`` until the wallet credit lands;
the key makes consumption idempotent and lets an aborted transfer be rolled back.
"""

from datetime import datetime
from typing import Any

from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import InsufficientAdminCreditsError
from app.core.logging import get_logger
from app.db.atomic import find_one_and_update
from app.models.admin_credit_pool import POOL_KEY, AdminCreditPool, PoolReservation
from app.services.amounts import require_non_negative, require_positive

log = get_logger(__name__)


async def get_or_create() -> AdminCreditPool:
    """Return the pool, creating it empty on first access (unique key makes racing upserts converge)."""
    now = datetime.utcnow()
    on_insert = {
        "available_credits": 0,
        "total_added": 0,
        "total_consumed": 0,
        "low_threshold": get_settings().admin_pool_default_low_threshold,
        "last_topup_at": None,
        "last_note": None,
        "in_flight": [],
        "created_at": now,
        "updated_at": now,
    }
    try:
        pool = await find_one_and_update(
            AdminCreditPool, {"key": POOL_KEY}, {"$setOnInsert": on_insert}, upsert=True
        )
    except DuplicateKeyError:
        pool = None
    if pool is None:
        # Lost the insert race; the winner's row is there now
        pool = await AdminCreditPool.find_one(AdminCreditPool.key == POOL_KEY)
    return pool


async def add_credits(amount: int, note: str | None = None, actor_id: str | None = None) -> AdminCreditPool:
    require_positive(amount)
    await get_or_create()
    now = datetime.utcnow()
    pool = await find_one_and_update(
        AdminCreditPool,
        {"key": POOL_KEY},
        {
            "$inc": {"available_credits": amount, "total_added": amount},
            "$set": {"last_topup_at": now, "last_note": note, "updated_at": now},
        },
    )
    log.info("pool_topup", amount=amount, available=pool.available_credits, total_added=pool.total_added)
    await log_event(actor_id, "pool_topup", "admin_credit_pool", str(pool.id), {"amount": amount, "note": note})
    return pool


async def consume_credits(amount: int, reservation_key: str | None = None) -> AdminCreditPool:
    """
    Take `amount` out of the pool, failing with InsufficientAdminCreditsError if it cannot cover it.
    With a reservation_key the consumption is recorded in-flight and applied at most once per key.
    """
    require_positive(amount)
    await get_or_create()
    now = datetime.utcnow()
    filter_: dict[str, Any] = {"key": POOL_KEY, "available_credits": {"$gte": amount}}
    update: dict[str, Any] = {
        "$inc": {"available_credits": -amount, "total_consumed": amount},
        "$set": {"updated_at": now},
    }
    if reservation_key:
        filter_["in_flight.key"] = {"$ne": reservation_key}
        update["$push"] = {"in_flight": PoolReservation(key=reservation_key, amount=amount, created_at=now).model_dump()}
    pool = await find_one_and_update(AdminCreditPool, filter_, update)
    if pool is None:
        current = await get_or_create()
        if reservation_key and current.reservation(reservation_key):
            return current
        log.info("pool_insufficient", available=current.available_credits, requested=amount)
        raise InsufficientAdminCreditsError(current.available_credits, amount)
    log.info("pool_consumed", amount=amount, available=pool.available_credits, key=reservation_key)
    if pool.is_low:
        log.warning("pool_low", available=pool.available_credits, threshold=pool.low_threshold)
    return pool


async def has_reservation(key: str) -> bool:
    pool = await get_or_create()
    return pool.reservation(key) is not None


async def release_reservation(key: str) -> bool:
    """Commit: forget the in-flight marker. Balances are untouched."""
    pool = await find_one_and_update(
        AdminCreditPool,
        {"key": POOL_KEY, "in_flight.key": key},
        {"$pull": {"in_flight": {"key": key}}, "$set": {"updated_at": datetime.utcnow()}},
    )
    return pool is not None


async def rollback_consumption(key: str) -> bool:
    """Undo an uncommitted consumption. Applies at most once: the reservation is pulled in the same update."""
    pool = await get_or_create()
    reservation = pool.reservation(key)
    if reservation is None:
        return False
    updated = await find_one_and_update(
        AdminCreditPool,
        {"key": POOL_KEY, "in_flight.key": key},
        {
            "$inc": {"available_credits": reservation.amount, "total_consumed": -reservation.amount},
            "$pull": {"in_flight": {"key": key}},
            "$set": {"updated_at": datetime.utcnow()},
        },
    )
    if updated is None:
        return False
    log.warning("pool_rollback", key=key, amount=reservation.amount, available=updated.available_credits)
    return True


async def update_low_threshold(threshold: int, actor_id: str | None = None) -> AdminCreditPool:
    require_non_negative(threshold, "Low threshold must be a non-negative integer")
    await get_or_create()
    pool = await find_one_and_update(
        AdminCreditPool,
        {"key": POOL_KEY},
        {"$set": {"low_threshold": threshold, "updated_at": datetime.utcnow()}},
    )
    await log_event(actor_id, "pool_threshold_updated", "admin_credit_pool", str(pool.id), {"low_threshold": threshold})
    return pool


async def stale_reservations(cutoff: datetime) -> list[PoolReservation]:
    pool = await get_or_create()
    return [r for r in pool.in_flight if r.created_at <= cutoff]


def snapshot(pool: AdminCreditPool) -> dict[str, Any]:
    return {
        "availableCredits": pool.available_credits,
        "totalAdded": pool.total_added,
        "totalConsumed": pool.total_consumed,
        "lowThreshold": pool.low_threshold,
        "isLow": pool.is_low,
        "lastTopupAt": pool.last_topup_at.isoformat() if pool.last_topup_at else None,
        "lastNote": pool.last_note,
        "inFlight": sum(r.amount for r in pool.in_flight),
        "updatedAt": pool.updated_at.isoformat(),
    }
