"""Owner SMS wallets and their append-only ledger.

Each credit/debit is one conditional update on the wallet document that changes
the balance and pushes the ledger entry into ``pending_entries`` together, so a
balance change never exists without its ledger record. The entry is then copied
into ``sms_wallet_ledger`` (same _id, insert is idempotent) and pulled from the
wallet. Entries left behind by a crash are flushed by the recovery job.
"""

from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    BadRequestError,
    InsufficientBalanceError,
    NotFoundError,
    WalletInactiveError,
)
from app.core.logging import get_logger
from app.db.atomic import find_one_and_update
from app.models.owner_wallet import OwnerType, OwnerWallet, PendingLedgerEntry
from app.models.wallet_ledger import WalletLedgerEntry
from app.services import notifications
from app.services.amounts import require_non_negative, require_positive
from app.services.owners import OWNER_TYPES

log = get_logger(__name__)

REASONS = ("sms_send", "topup_approved", "manual_credit")


class _IdempotencyKeyTaken(Exception):
    """Another entry already holds this idempotency key in the ledger."""


def effective_threshold(wallet: OwnerWallet) -> int:
    if wallet.low_balance_threshold is not None:
        return wallet.low_balance_threshold
    return get_settings().sms_low_balance_threshold


async def get_or_create(owner_id: str, owner_type: OwnerType) -> OwnerWallet:
    """Return the owner's wallet, creating it on first access. Racing creators converge on the unique (owner_id, owner_type) row."""
    if owner_type not in OWNER_TYPES:
        raise BadRequestError(f"Invalid owner type: {owner_type}")
    if not owner_id:
        raise BadRequestError("Owner id is required")
    now = datetime.utcnow()
    on_insert = {
        "balance": 0,
        "total_purchased": 0,
        "total_sent": 0,
        "low_balance_threshold": None,
        "low_balance_notified_at": None,
        "last_topup_at": None,
        "is_active": True,
        "pending_entries": [],
        "created_at": now,
        "updated_at": now,
    }
    try:
        wallet = await find_one_and_update(
            OwnerWallet,
            {"owner_id": owner_id, "owner_type": owner_type},
            {"$setOnInsert": on_insert},
            upsert=True,
        )
    except DuplicateKeyError:
        wallet = None
    if wallet is None:
        wallet = await OwnerWallet.find_one(OwnerWallet.owner_id == owner_id, OwnerWallet.owner_type == owner_type)
    return wallet


async def get_wallet(wallet_id: PydanticObjectId) -> OwnerWallet:
    wallet = await OwnerWallet.get(wallet_id)
    if not wallet:
        raise NotFoundError("Wallet not found")
    return wallet


def _entry_from_pending(wallet: OwnerWallet, pending: PendingLedgerEntry, balance_after: int | None = None) -> WalletLedgerEntry:
    return WalletLedgerEntry(
        id=pending.entry_id,
        wallet_id=wallet.id,
        owner_id=wallet.owner_id,
        owner_type=wallet.owner_type,
        direction=pending.direction,
        amount=pending.amount,
        balance_after=balance_after if balance_after is not None else pending.balance_after,
        reason=pending.reason,
        meta=pending.meta,
        idempotency_key=pending.idempotency_key,
        created_at=pending.created_at,
    )


async def find_entry_by_key(key: str) -> WalletLedgerEntry | None:
    """Ledger entry carrying this idempotency key, flushed or still pending on its wallet."""
    # Pending first: a flush inserts into the ledger before pulling the pending copy
    wallet = await OwnerWallet.find_one({"pending_entries.idempotency_key": key})
    if wallet:
        pending = next((p for p in wallet.pending_entries if p.idempotency_key == key), None)
        if pending:
            return _entry_from_pending(wallet, pending)
    return await WalletLedgerEntry.find_one(WalletLedgerEntry.idempotency_key == key)


async def _revert_pending(wallet_id: PydanticObjectId, pending: PendingLedgerEntry) -> OwnerWallet | None:
    """Undo a balance change whose ledger entry could not be recorded. Only matches while the pending entry is present."""
    if pending.direction == "credit":
        inc = {"balance": -pending.amount, "total_purchased": -pending.amount}
    else:
        inc = {"balance": pending.amount, "total_sent": -pending.amount}
    return await find_one_and_update(
        OwnerWallet,
        {"_id": wallet_id, "pending_entries.entry_id": pending.entry_id},
        {
            "$inc": inc,
            "$pull": {"pending_entries": {"entry_id": pending.entry_id}},
            "$set": {"updated_at": datetime.utcnow()},
        },
    )


async def flush_pending(wallet: OwnerWallet, entry_id: PydanticObjectId, balance_after: int | None = None) -> WalletLedgerEntry:
    """Copy a pending entry into the ledger collection and drop it from the wallet."""
    pending = wallet.pending_entry(entry_id)
    if pending is None:
        existing = await WalletLedgerEntry.get(entry_id)
        if existing is None:
            raise NotFoundError("Ledger entry not found")
        return existing
    entry = _entry_from_pending(wallet, pending, balance_after)
    try:
        await entry.insert()
    except DuplicateKeyError:
        existing = await WalletLedgerEntry.get(entry_id)
        if existing is None:
            raise _IdempotencyKeyTaken(pending.idempotency_key) from None
        entry = existing
    await OwnerWallet.get_motor_collection().update_one(
        {"_id": wallet.id},
        {"$pull": {"pending_entries": {"entry_id": entry_id}}},
    )
    return entry


async def settle_pending(wallet: OwnerWallet, pending: PendingLedgerEntry) -> str:
    """Recovery path for an entry left pending by a crash: flush it, or revert it if its key was already used."""
    try:
        await flush_pending(wallet, pending.entry_id)
    except _IdempotencyKeyTaken:
        await _revert_pending(wallet.id, pending)
        log.warning("wallet_pending_reverted", wallet_id=str(wallet.id), entry_id=str(pending.entry_id))
        return "reverted"
    return "flushed"


async def credit(
    owner_id: str,
    owner_type: OwnerType,
    amount: int,
    reason: str,
    meta: dict[str, Any] | None = None,
    idempotency_key: str | None = None,
) -> tuple[OwnerWallet, WalletLedgerEntry]:
    """
    Add `amount` to the wallet and record a credit entry.
    With an idempotency_key, a second call with the same key returns the first entry without re-applying.
    """
    require_positive(amount)
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")
    if idempotency_key:
        existing = await find_entry_by_key(idempotency_key)
        if existing:
            return await get_wallet(existing.wallet_id), existing
    wallet = await get_or_create(owner_id, owner_type)
    now = datetime.utcnow()
    pending = PendingLedgerEntry(
        entry_id=PydanticObjectId(),
        direction="credit",
        amount=amount,
        reason=reason,
        meta=meta or {},
        idempotency_key=idempotency_key,
        created_at=now,
    )
    filter_: dict[str, Any] = {"_id": wallet.id}
    if idempotency_key:
        filter_["pending_entries.idempotency_key"] = {"$ne": idempotency_key}
    updated = await find_one_and_update(
        OwnerWallet,
        filter_,
        {
            "$inc": {"balance": amount, "total_purchased": amount},
            "$set": {"last_topup_at": now, "updated_at": now},
            "$push": {"pending_entries": pending.model_dump()},
        },
    )
    if updated is None:
        if not idempotency_key:
            raise NotFoundError("Wallet not found")
        # Same key is being applied concurrently
        existing = await find_entry_by_key(idempotency_key)
        if existing is None:
            raise NotFoundError("Wallet not found")
        return await get_wallet(existing.wallet_id), existing
    try:
        entry = await flush_pending(updated, pending.entry_id, balance_after=updated.balance)
    except _IdempotencyKeyTaken:
        # Lost a race with a flushed entry for the same key: undo ours, return theirs
        await _revert_pending(updated.id, pending)
        existing = await WalletLedgerEntry.find_one(WalletLedgerEntry.idempotency_key == idempotency_key)
        return await get_wallet(updated.id), existing
    log.info(
        "wallet_credit",
        wallet_id=str(updated.id),
        owner_id=owner_id,
        owner_type=owner_type,
        amount=amount,
        reason=reason,
        balance=updated.balance,
    )
    return updated, entry


async def debit(
    owner_id: str,
    owner_type: OwnerType,
    amount: int,
    reason: str,
    meta: dict[str, Any] | None = None,
) -> tuple[OwnerWallet, WalletLedgerEntry]:
    """Take `amount` from the wallet, failing with InsufficientBalanceError rather than going negative."""
    require_positive(amount)
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")
    wallet = await get_or_create(owner_id, owner_type)
    if not wallet.is_active:
        raise WalletInactiveError()
    now = datetime.utcnow()
    pending = PendingLedgerEntry(
        entry_id=PydanticObjectId(),
        direction="debit",
        amount=amount,
        reason=reason,
        meta=meta or {},
        created_at=now,
    )
    updated = await find_one_and_update(
        OwnerWallet,
        {"_id": wallet.id, "is_active": True, "balance": {"$gte": amount}},
        {
            "$inc": {"balance": -amount, "total_sent": amount},
            "$set": {"updated_at": now},
            "$push": {"pending_entries": pending.model_dump()},
        },
    )
    if updated is None:
        current = await get_wallet(wallet.id)
        if not current.is_active:
            raise WalletInactiveError()
        log.info("wallet_insufficient", wallet_id=str(current.id), balance=current.balance, required=amount)
        raise InsufficientBalanceError(current.balance, amount)
    # Debit has committed with its pending entry; later failures are left to the outbox recovery
    try:
        entry = await flush_pending(updated, pending.entry_id, balance_after=updated.balance)
    except Exception as e:
        log.warning("wallet_ledger_flush_deferred", wallet_id=str(updated.id), entry_id=str(pending.entry_id), error=str(e))
        entry = _entry_from_pending(updated, pending, updated.balance)
    log.info(
        "wallet_debit",
        wallet_id=str(updated.id),
        owner_id=owner_id,
        owner_type=owner_type,
        amount=amount,
        reason=reason,
        balance=updated.balance,
    )
    try:
        await _flag_low_balance(updated, now)
    except Exception as e:
        log.warning("wallet_low_balance_check_failed", wallet_id=str(updated.id), error=str(e))
    return updated, entry


async def _flag_low_balance(wallet: OwnerWallet, now: datetime) -> bool:
    """Stamp low_balance_notified_at (compare-and-set on the previous stamp) and notify once per interval."""
    threshold = effective_threshold(wallet)
    if wallet.balance > threshold:
        return False
    interval = timedelta(hours=get_settings().sms_low_balance_notify_interval_hours)
    if not notifications.should_notify(wallet.low_balance_notified_at, now, interval):
        return False
    claimed = await find_one_and_update(
        OwnerWallet,
        {"_id": wallet.id, "low_balance_notified_at": wallet.low_balance_notified_at},
        {"$set": {"low_balance_notified_at": now}},
    )
    if claimed is None:
        return False
    wallet.low_balance_notified_at = claimed.low_balance_notified_at
    await notifications.notify_low_balance(claimed, threshold)
    return True


async def set_active(wallet_id: PydanticObjectId, active: bool, actor_id: str | None = None) -> OwnerWallet:
    wallet = await find_one_and_update(
        OwnerWallet,
        {"_id": wallet_id},
        {"$set": {"is_active": active, "updated_at": datetime.utcnow()}},
    )
    if wallet is None:
        raise NotFoundError("Wallet not found")
    await log_event(actor_id, "wallet_activated" if active else "wallet_deactivated", "sms_wallet", str(wallet_id), {})
    return wallet


async def set_low_balance_threshold(
    wallet_id: PydanticObjectId,
    threshold: int | None,
    actor_id: str | None = None,
) -> OwnerWallet:
    """Per-wallet override; None falls back to the configured default."""
    if threshold is not None:
        require_non_negative(threshold, "Low balance threshold must be a non-negative integer")
    wallet = await find_one_and_update(
        OwnerWallet,
        {"_id": wallet_id},
        {"$set": {"low_balance_threshold": threshold, "updated_at": datetime.utcnow()}},
    )
    if wallet is None:
        raise NotFoundError("Wallet not found")
    await log_event(actor_id, "wallet_threshold_updated", "sms_wallet", str(wallet_id), {"low_balance_threshold": threshold})
    return wallet


async def list_wallets(
    owner_type: OwnerType | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[OwnerWallet], int]:
    filter_: dict[str, Any] = {}
    if owner_type:
        if owner_type not in OWNER_TYPES:
            raise BadRequestError(f"Invalid owner type: {owner_type}")
        filter_["owner_type"] = owner_type
    total = await OwnerWallet.find(filter_).count()
    items = await OwnerWallet.find(filter_).sort(-OwnerWallet.updated_at).skip(offset).limit(limit).to_list()
    return items, total


async def list_ledger(wallet_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> tuple[list[WalletLedgerEntry], int]:
    """Ledger entries for a wallet, newest first."""
    query = WalletLedgerEntry.find(WalletLedgerEntry.wallet_id == wallet_id)
    total = await query.count()
    entries = (
        await WalletLedgerEntry.find(WalletLedgerEntry.wallet_id == wallet_id)
        .sort(-WalletLedgerEntry.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return entries, total


def snapshot(wallet: OwnerWallet) -> dict[str, Any]:
    threshold = effective_threshold(wallet)
    return {
        "id": str(wallet.id),
        "ownerId": wallet.owner_id,
        "ownerType": wallet.owner_type,
        "balance": wallet.balance,
        "totalPurchased": wallet.total_purchased,
        "totalSent": wallet.total_sent,
        "lowBalanceThreshold": threshold,
        "isLow": wallet.balance <= threshold,
        "lowBalanceNotifiedAt": wallet.low_balance_notified_at.isoformat() if wallet.low_balance_notified_at else None,
        "lastTopupAt": wallet.last_topup_at.isoformat() if wallet.last_topup_at else None,
        "isActive": wallet.is_active,
        "updatedAt": wallet.updated_at.isoformat(),
    }


def ledger_entry_out(entry: WalletLedgerEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "walletId": str(entry.wallet_id),
        "direction": entry.direction,
        "amount": entry.amount,
        "balanceAfter": entry.balance_after,
        "reason": entry.reason,
        "meta": entry.meta,
        "createdAt": entry.created_at.isoformat(),
    }
