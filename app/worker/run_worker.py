"""Run ARQ worker. Usage: python -m app.worker.run_worker"""

from arq import run_worker
from arq.cron import cron

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.worker.tasks import get_redis_settings, notify_low_balance, reconcile_ledger, shutdown, startup


class WorkerSettings:
    redis_settings = get_redis_settings()
    functions = [notify_low_balance]
    cron_jobs = [
        cron(reconcile_ledger, minute=set(range(0, 60, 5)), second=0),  # every 5 minutes
    ]
    on_startup = startup
    on_shutdown = shutdown


def main() -> None:
    configure_logging(debug=get_settings().debug)
    run_worker(WorkerSettings, worker_name="sms_ledger_worker")


if __name__ == "__main__":
    main()
