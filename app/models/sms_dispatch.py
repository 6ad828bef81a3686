from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field

from app.models.owner_wallet import OwnerType


class RecipientOutcome(BaseModel):
    to: str
    status: Literal["sent", "failed"]
    error: str | None = None
    provider_message_id: str | None = None


class SmsDispatch(Document):
    """One charged send: the debit plus per-recipient transport outcomes."""
    owner_id: str
    owner_type: OwnerType
    sender_id: str
    title: str | None = None
    body: str
    media_url: str | None = None
    segments: int
    credits_charged: int
    ledger_entry_id: PydanticObjectId
    recipients: list[RecipientOutcome] = Field(default_factory=list)
    sent_count: int = 0
    failed_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "sms_dispatches"
        indexes = [[("owner_id", 1), ("owner_type", 1), ("created_at", -1)]]
