from app.models.admin_credit_pool import AdminCreditPool, PoolReservation
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.owner_wallet import OwnerWallet, PendingLedgerEntry
from app.models.sms_dispatch import RecipientOutcome, SmsDispatch
from app.models.topup_request import TopupRequest
from app.models.wallet_ledger import WalletLedgerEntry

__all__ = [
    "AdminCreditPool",
    "PoolReservation",
    "AuditLog",
    "FailedJob",
    "OwnerWallet",
    "PendingLedgerEntry",
    "RecipientOutcome",
    "SmsDispatch",
    "TopupRequest",
    "WalletLedgerEntry",
]
