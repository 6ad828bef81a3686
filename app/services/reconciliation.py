"""Ledger recovery and reconciliation.

Settles work a crashed request left half-done, and checks the two
invariants the ledger protects:

    wallet.balance == sum(credits) - sum(debits)                    per wallet
    pool.available + sum(balance) + sum(total_sent) + unsettled == pool.total_added
"""

from datetime import datetime, timedelta
from typing import Any

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.owner_wallet import OwnerWallet
from app.models.wallet_ledger import WalletLedgerEntry
from app.services import admin_credits, topups, wallets

log = get_logger(__name__)


def _cutoff(grace_seconds: int | None = None) -> datetime:
    grace = get_settings().ledger_recovery_grace_seconds if grace_seconds is None else grace_seconds
    return datetime.utcnow() - timedelta(seconds=grace)


async def flush_outbox(grace_seconds: int | None = None) -> dict[str, int]:
    """Copy wallet entries stranded in pending_entries into the ledger collection."""
    cutoff = _cutoff(grace_seconds)
    stats = {"flushed": 0, "reverted": 0}
    stranded = await OwnerWallet.find(
        {"pending_entries": {"$elemMatch": {"created_at": {"$lte": cutoff}}}}
    ).to_list()
    for wallet in stranded:
        for pending in list(wallet.pending_entries):
            if pending.created_at > cutoff:
                continue
            outcome = await wallets.settle_pending(wallet, pending)
            stats[outcome] += 1
    return stats


async def recover_stale_operations(grace_seconds: int | None = None) -> dict[str, int]:
    """Complete or roll back approvals and manual credits abandoned after the pool was consumed."""
    cutoff = _cutoff(grace_seconds)
    stats = {"claims_completed": 0, "claims_released": 0, "reservations_released": 0, "reservations_rolled_back": 0}
    for req in await topups.stale_claims(cutoff):
        outcome = await topups.settle_stale_claim(req)
        stats[f"claims_{outcome}"] += 1
    # Claims are settled first: any reservation still stale here has no live claim behind it
    for reservation in await admin_credits.stale_reservations(cutoff):
        landed = await wallets.find_entry_by_key(reservation.key)
        if landed is not None:
            if await admin_credits.release_reservation(reservation.key):
                stats["reservations_released"] += 1
        elif await admin_credits.rollback_consumption(reservation.key):
            stats["reservations_rolled_back"] += 1
    if any(stats.values()):
        log.warning("ledger_recovery", **stats)
        await log_event(None, "ledger_recovery", "admin_credit_pool", None, stats)
    return stats


async def _ledger_sum(wallet: OwnerWallet, direction: str) -> int:
    total = await WalletLedgerEntry.find(
        WalletLedgerEntry.wallet_id == wallet.id,
        WalletLedgerEntry.direction == direction,
    ).sum(WalletLedgerEntry.amount)
    return int(total or 0)


async def reconcile_wallet(wallet: OwnerWallet) -> dict[str, Any]:
    credits = await _ledger_sum(wallet, "credit")
    debits = await _ledger_sum(wallet, "debit")
    for pending in wallet.pending_entries:
        # Flushed but not yet pulled entries are already counted
        if await WalletLedgerEntry.get(pending.entry_id):
            continue
        if pending.direction == "credit":
            credits += pending.amount
        else:
            debits += pending.amount
    ok = (
        wallet.balance == credits - debits
        and wallet.total_purchased == credits
        and wallet.total_sent == debits
    )
    return {
        "walletId": str(wallet.id),
        "ownerId": wallet.owner_id,
        "ownerType": wallet.owner_type,
        "balance": wallet.balance,
        "ledgerCredits": credits,
        "ledgerDebits": debits,
        "ledgerBalance": credits - debits,
        "totalPurchased": wallet.total_purchased,
        "totalSent": wallet.total_sent,
        "ok": ok,
    }


async def reconcile_wallets() -> list[dict[str, Any]]:
    """Mismatched wallets only."""
    mismatches = []
    async for wallet in OwnerWallet.find_all():
        report = await reconcile_wallet(wallet)
        if not report["ok"]:
            log.error("ledger_mismatch", **report)
            mismatches.append(report)
    return mismatches


async def check_conservation() -> dict[str, Any]:
    pool = await admin_credits.get_or_create()
    balances = int(await OwnerWallet.find_all().sum(OwnerWallet.balance) or 0)
    sent = int(await OwnerWallet.find_all().sum(OwnerWallet.total_sent) or 0)
    purchased = int(await OwnerWallet.find_all().sum(OwnerWallet.total_purchased) or 0)
    # Consumed from the pool but not yet credited to any wallet
    unsettled = 0
    for reservation in pool.in_flight:
        if await wallets.find_entry_by_key(reservation.key) is None:
            unsettled += reservation.amount
    ok = (
        pool.available_credits + balances + sent + unsettled == pool.total_added
        and pool.total_added >= purchased
        and pool.available_credits == pool.total_added - pool.total_consumed
    )
    report = {
        "availableCredits": pool.available_credits,
        "totalAdded": pool.total_added,
        "totalConsumed": pool.total_consumed,
        "walletBalances": balances,
        "walletTotalSent": sent,
        "walletTotalPurchased": purchased,
        "unsettled": unsettled,
        "ok": ok,
    }
    if not ok:
        log.error("ledger_conservation_violated", **report)
    return report


async def run_reconciliation() -> dict[str, Any]:
    """Recovery first, then the checks, so settled work is not reported as drift."""
    outbox = await flush_outbox()
    recovery = await recover_stale_operations()
    return {
        "outbox": outbox,
        "recovery": recovery,
        "conservation": await check_conservation(),
        "walletMismatches": await reconcile_wallets(),
    }
