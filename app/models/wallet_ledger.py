from datetime import datetime
from typing import Any

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel

from app.models.owner_wallet import Direction, OwnerType


class WalletLedgerEntry(Document):
    """Append-only; never updated after insert."""
    wallet_id: PydanticObjectId
    owner_id: str
    owner_type: OwnerType
    direction: Direction
    amount: int  # always > 0; sign comes from direction
    balance_after: int | None = None
    reason: str  # sms_send, topup_approved, manual_credit
    meta: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def signed_amount(self) -> int:
        return self.amount if self.direction == "credit" else -self.amount

    class Settings:
        name = "sms_wallet_ledger"
        indexes = [
            [("wallet_id", 1), ("created_at", -1)],
            [("owner_id", 1), ("owner_type", 1), ("created_at", -1)],
            IndexModel(
                [("idempotency_key", ASCENDING)],
                unique=True,
                name="idempotency_key_unique",
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
            ),
        ]
