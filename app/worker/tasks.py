"""ARQ job definitions."""

import uuid
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> None:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        await coro
    except Exception as e:
        from app.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def notify_low_balance(ctx: dict[str, Any], wallet_id: str, balance: int, threshold: int) -> None:
    """Record a low-balance alert for an owner wallet."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None

    async def _run() -> None:
        from app.core.audit import log_event
        log.info("job_start", job="notify_low_balance", wallet_id=wallet_id)
        log.warning("wallet_low_balance_alert", wallet_id=wallet_id, balance=balance, threshold=threshold)
        await log_event(None, "wallet_low_balance", "sms_wallet", wallet_id, {"balance": balance, "threshold": threshold})
        log.info("job_done", job="notify_low_balance", wallet_id=wallet_id)

    await _run_with_dlq("notify_low_balance", job_id, [wallet_id, balance, threshold], {}, _run())


async def startup(ctx: dict) -> None:
    from app.db.init import init_db
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    from urllib.parse import urlparse
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.strip("/") else 0,
        conn_retries=1,
    )


async def enqueue_low_balance_notification(wallet_id: str, balance: int, threshold: int) -> None:
    """Enqueue notify_low_balance job (call from the debit path)."""
    redis = await create_pool(get_redis_settings())
    try:
        await redis.enqueue_job("notify_low_balance", wallet_id, balance, threshold)
    finally:
        await redis.close()


# Cron: ledger recovery and reconciliation
async def reconcile_ledger(ctx: dict[str, Any]) -> None:
    """Cron job: flush the wallet outbox, settle abandoned transfers, report drift."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from app.worker.cron import run_ledger_reconciliation
    await _run_with_dlq("reconcile_ledger", job_id, [], {}, run_ledger_reconciliation())
