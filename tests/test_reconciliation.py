"""Recovery of half-done work and the ledger invariants."""

import uuid
from datetime import datetime, timedelta

import pytest
from beanie import PydanticObjectId

from app.db.atomic import find_one_and_update
from app.models.owner_wallet import OwnerWallet, PendingLedgerEntry
from app.models.topup_request import TopupRequest
from app.models.wallet_ledger import WalletLedgerEntry
from app.services import admin_credits as pool_service
from app.services import reconciliation
from app.services import topups as topups_service
from app.services import wallets as wallets_service
from app.services.owners import Principal

pytestmark = pytest.mark.usefixtures("db")

DOCTOR = Principal(id="doc-1", role="doctor")


async def _claim(req: TopupRequest) -> TopupRequest:
    """Leave a request claimed as if the approving process died."""
    return await find_one_and_update(
        TopupRequest,
        {"_id": req.id},
        {"$set": {"claim_token": uuid.uuid4().hex, "claimed_at": datetime.utcnow() - timedelta(minutes=10)}},
    )


async def test_clean_ledger_reconciles():
    await pool_service.add_credits(1000)
    req = await topups_service.create_request(DOCTOR, 200)
    await topups_service.resolve(req.id, "approved", admin_id="admin-1")
    await wallets_service.debit("doc-1", "doctor", 30, "sms_send")
    report = await reconciliation.check_conservation()
    assert report["ok"]
    assert report["availableCredits"] + report["walletBalances"] + report["walletTotalSent"] == report["totalAdded"]
    assert await reconciliation.reconcile_wallets() == []


async def test_drift_is_reported():
    wallet, _ = await wallets_service.credit("doc-1", "doctor", 50, "manual_credit")
    await OwnerWallet.get_motor_collection().update_one({"_id": wallet.id}, {"$inc": {"balance": 5}})
    mismatches = await reconciliation.reconcile_wallets()
    assert len(mismatches) == 1
    assert mismatches[0]["balance"] == 55
    assert mismatches[0]["ledgerBalance"] == 50


async def test_flush_outbox():
    wallet = await wallets_service.get_or_create("doc-1", "doctor")
    pending = PendingLedgerEntry(
        entry_id=PydanticObjectId(),
        direction="credit",
        amount=40,
        reason="manual_credit",
        balance_after=40,
        created_at=datetime.utcnow() - timedelta(minutes=10),
    )
    # Balance moved, process died before the ledger insert
    await OwnerWallet.get_motor_collection().update_one(
        {"_id": wallet.id},
        {"$inc": {"balance": 40, "total_purchased": 40}, "$push": {"pending_entries": pending.model_dump()}},
    )
    stale = await wallets_service.get_wallet(wallet.id)
    assert (await reconciliation.reconcile_wallet(stale))["ok"]

    assert await reconciliation.flush_outbox(grace_seconds=60) == {"flushed": 1, "reverted": 0}
    wallet = await wallets_service.get_wallet(wallet.id)
    assert wallet.pending_entries == []
    entry = await WalletLedgerEntry.get(pending.entry_id)
    assert entry.amount == 40
    assert (await reconciliation.reconcile_wallet(wallet))["ok"]


async def test_fresh_outbox_entries_are_left_alone():
    wallet = await wallets_service.get_or_create("doc-1", "doctor")
    pending = PendingLedgerEntry(entry_id=PydanticObjectId(), direction="credit", amount=5, reason="manual_credit")
    await OwnerWallet.get_motor_collection().update_one(
        {"_id": wallet.id},
        {"$inc": {"balance": 5, "total_purchased": 5}, "$push": {"pending_entries": pending.model_dump()}},
    )
    assert await reconciliation.flush_outbox(grace_seconds=600) == {"flushed": 0, "reverted": 0}


async def test_abandoned_manual_allocation_is_rolled_back():
    await pool_service.add_credits(100)
    await pool_service.consume_credits(60, reservation_key="manual:lost")
    stats = await reconciliation.recover_stale_operations(grace_seconds=0)
    assert stats["reservations_rolled_back"] == 1
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 100
    assert pool.total_consumed == 0
    assert pool.in_flight == []


async def test_landed_manual_allocation_is_released():
    await pool_service.add_credits(100)
    await pool_service.consume_credits(60, reservation_key="manual:landed")
    await wallets_service.credit("clinic-1", "clinic", 60, "manual_credit", idempotency_key="manual:landed")
    stats = await reconciliation.recover_stale_operations(grace_seconds=0)
    assert stats["reservations_released"] == 1
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 40
    assert pool.in_flight == []
    assert (await reconciliation.check_conservation())["ok"]


async def test_stale_claim_completed_when_wallet_credited():
    await pool_service.add_credits(500)
    req = await _claim(await topups_service.create_request(DOCTOR, 200))
    await pool_service.consume_credits(200, reservation_key=req.reservation_key)
    await wallets_service.credit("doc-1", "doctor", 200, "topup_approved", idempotency_key=req.reservation_key)

    stats = await reconciliation.recover_stale_operations(grace_seconds=60)
    assert stats["claims_completed"] == 1
    stored = await topups_service.get_request(req.id)
    assert stored.status == "approved"
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 300
    assert pool.in_flight == []
    assert (await reconciliation.check_conservation())["ok"]


async def test_stale_claim_released_when_wallet_not_credited():
    await pool_service.add_credits(500)
    req = await _claim(await topups_service.create_request(DOCTOR, 200))
    await pool_service.consume_credits(200, reservation_key=req.reservation_key)
    # Unsettled consumption still balances the books
    assert (await reconciliation.check_conservation())["unsettled"] == 200

    stats = await reconciliation.recover_stale_operations(grace_seconds=60)
    assert stats["claims_released"] == 1
    stored = await topups_service.get_request(req.id)
    assert stored.status == "pending"
    assert stored.claim_token is None
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 500
    # Released request can be approved again
    approved = await topups_service.resolve(req.id, "approved", admin_id="admin-1")
    assert approved.status == "approved"


async def test_run_reconciliation_report():
    await pool_service.add_credits(100)
    report = await reconciliation.run_reconciliation()
    assert report["conservation"]["ok"]
    assert report["walletMismatches"] == []
    assert report["outbox"] == {"flushed": 0, "reverted": 0}
