"""Low-balance alerts for owner wallets."""

from datetime import datetime, timedelta

from app.core.logging import get_logger
from app.models.owner_wallet import OwnerWallet

log = get_logger(__name__)

DEFAULT_INTERVAL = timedelta(hours=24)


def should_notify(last_notified_at: datetime | None, now: datetime, interval: timedelta = DEFAULT_INTERVAL) -> bool:
    """True if no alert was sent yet, or the last one is at least `interval` old."""
    if last_notified_at is None:
        return True
    return now - last_notified_at >= interval


async def notify_low_balance(wallet: OwnerWallet, threshold: int) -> None:
    """Hand the alert to the worker. The debit that triggered it has already committed."""
    log.warning(
        "wallet_low_balance",
        wallet_id=str(wallet.id),
        owner_id=wallet.owner_id,
        owner_type=wallet.owner_type,
        balance=wallet.balance,
        threshold=threshold,
    )
    from app.worker.tasks import enqueue_low_balance_notification
    try:
        await enqueue_low_balance_notification(str(wallet.id), wallet.balance, threshold)
    except Exception as e:
        # Stamp is already set; the alert is only logged for this interval
        log.warning("low_balance_enqueue_failed", wallet_id=str(wallet.id), error=str(e))
