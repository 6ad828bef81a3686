import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.admin_credit_pool import AdminCreditPool
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.owner_wallet import OwnerWallet
from app.models.sms_dispatch import SmsDispatch
from app.models.topup_request import TopupRequest
from app.models.wallet_ledger import WalletLedgerEntry

DOCUMENT_MODELS = [
    AdminCreditPool,
    OwnerWallet,
    WalletLedgerEntry,
    TopupRequest,
    SmsDispatch,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client(**extra) -> AsyncIOMotorClient:
    settings = get_settings()
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = dict(extra)
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db(db_name: str | None = None, client: AsyncIOMotorClient | None = None) -> None:
    settings = get_settings()
    client = client or get_client()
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
