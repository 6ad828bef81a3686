"""Pool -> wallet transfers (top-up approvals and manual admin credits)."""

import uuid
from typing import Any

from app.core.audit import log_event
from app.core.exceptions import OutcomeUnknownError
from app.core.logging import get_logger
from app.models.owner_wallet import OwnerType, OwnerWallet
from app.models.wallet_ledger import WalletLedgerEntry
from app.services import admin_credits, wallets
from app.services.amounts import require_positive

log = get_logger(__name__)


async def transfer_from_pool(
    owner_id: str,
    owner_type: OwnerType,
    credits: int,
    reason: str,
    key: str,
    meta: dict[str, Any] | None = None,
) -> tuple[OwnerWallet, WalletLedgerEntry]:
    """
    Consume `credits` from the pool under reservation `key`, then credit the wallet with the same key.

    Ends in one of: fully applied (returned), nothing applied (exception re-raised,
    pool rolled back), or OutcomeUnknownError when storage failed in a way that
    hides which; the recovery job settles that case from the ledger.
    """
    require_positive(credits)
    await admin_credits.consume_credits(credits, reservation_key=key)
    try:
        wallet, entry = await wallets.credit(owner_id, owner_type, credits, reason, meta, idempotency_key=key)
    except Exception as exc:
        entry = await _settle_failed_credit(key, exc)
        wallet = await wallets.get_wallet(entry.wallet_id)
    try:
        await admin_credits.release_reservation(key)
    except Exception as e:
        # Transfer is complete; recovery drops the stale marker
        log.warning("reservation_release_deferred", key=key, error=str(e))
    return wallet, entry


async def _settle_failed_credit(key: str, exc: Exception) -> WalletLedgerEntry:
    """Wallet credit raised: keep it if it actually landed, otherwise roll the pool back and re-raise."""
    try:
        landed = await wallets.find_entry_by_key(key)
    except Exception as lookup_exc:
        log.error("transfer_outcome_unknown", key=key, error=str(lookup_exc))
        raise OutcomeUnknownError(details={"key": key}) from exc
    if landed is not None:
        log.warning("transfer_credit_landed", key=key, error=str(exc))
        return landed
    try:
        await admin_credits.rollback_consumption(key)
    except Exception as rollback_exc:
        log.error("transfer_rollback_failed", key=key, error=str(rollback_exc))
        raise OutcomeUnknownError(details={"key": key}) from exc
    log.warning("transfer_aborted", key=key, error=str(exc))
    raise exc


async def allocate_manual_credit(
    owner_id: str,
    owner_type: OwnerType,
    credits: int,
    note: str | None = None,
    admin_id: str | None = None,
) -> tuple[OwnerWallet, WalletLedgerEntry]:
    """Admin moves credits straight from the pool into a wallet."""
    key = f"manual:{uuid.uuid4().hex}"
    wallet, entry = await transfer_from_pool(
        owner_id,
        owner_type,
        credits,
        "manual_credit",
        key,
        meta={"note": note or "", "admin_id": admin_id},
    )
    await log_event(
        admin_id,
        "manual_credit",
        "sms_wallet",
        str(wallet.id),
        {"credits": credits, "note": note, "owner_id": owner_id, "owner_type": owner_type},
    )
    return wallet, entry
