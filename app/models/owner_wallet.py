from datetime import datetime
from typing import Any, Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import ASCENDING, IndexModel

OwnerType = Literal["clinic", "doctor"]
Direction = Literal["credit", "debit"]


class PendingLedgerEntry(BaseModel):
    """Ledger entry written in the same update as the balance change, flushed to wallet_ledger afterwards."""
    entry_id: PydanticObjectId
    direction: Direction
    amount: int
    reason: str
    meta: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    balance_after: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class OwnerWallet(Document):
    owner_id: str
    owner_type: OwnerType
    balance: int = 0
    total_purchased: int = 0
    total_sent: int = 0
    low_balance_threshold: int | None = None  # None -> settings.sms_low_balance_threshold
    low_balance_notified_at: datetime | None = None
    last_topup_at: datetime | None = None
    is_active: bool = True
    pending_entries: list[PendingLedgerEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def pending_entry(self, entry_id: PydanticObjectId) -> PendingLedgerEntry | None:
        return next((e for e in self.pending_entries if e.entry_id == entry_id), None)

    class Settings:
        name = "sms_wallets"
        indexes = [
            IndexModel([("owner_id", ASCENDING), ("owner_type", ASCENDING)], unique=True, name="owner_unique"),
            [("pending_entries.created_at", 1)],
            [("owner_type", 1), ("updated_at", -1)],
        ]
