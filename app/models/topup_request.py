from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field

from app.models.owner_wallet import OwnerType

TopupStatus = Literal["pending", "approved", "rejected"]


class TopupRequest(Document):
    owner_id: str
    owner_type: OwnerType
    credits: int
    note: str = ""
    admin_note: str = ""
    status: TopupStatus = "pending"
    requested_by: str | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    # Set while an approval is in flight; status stays pending until commit
    claim_token: str | None = None
    claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def reservation_key(self) -> str:
        return f"topup:{self.id}"

    class Settings:
        name = "sms_topup_requests"
        indexes = [
            [("owner_id", 1), ("owner_type", 1), ("created_at", -1)],
            [("status", 1), ("created_at", -1)],
            [("status", 1), ("claimed_at", 1)],
        ]
