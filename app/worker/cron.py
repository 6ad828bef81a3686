"""Cron: settle abandoned ledger work and check the credit invariants."""

from app.core.logging import get_logger
from app.services.reconciliation import run_reconciliation

log = get_logger(__name__)


async def run_ledger_reconciliation() -> dict:
    """Run recovery then the checks. Beanie is initialised by the worker's startup hook."""
    report = await run_reconciliation()
    conservation = report["conservation"]
    mismatches = report["walletMismatches"]
    if conservation["ok"] and not mismatches:
        log.info("ledger_reconciliation", outbox=report["outbox"], recovery=report["recovery"])
    else:
        log.error(
            "ledger_reconciliation",
            conservation=conservation,
            mismatched_wallets=len(mismatches),
        )
    return report
