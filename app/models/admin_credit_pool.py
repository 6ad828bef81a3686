from datetime import datetime

from beanie import Document, Indexed
from pydantic import BaseModel, Field

POOL_KEY = "global"


class PoolReservation(BaseModel):
    """Credits consumed for a pool->wallet transfer that has not committed yet."""
    key: str  # topup:<request_id> | manual:<uuid>
    amount: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AdminCreditPool(Document):
    """Singleton pool of purchased, unallocated SMS credits. Mutated only via conditional updates."""
    key: Indexed(str, unique=True) = POOL_KEY
    available_credits: int = 0
    total_added: int = 0
    total_consumed: int = 0
    low_threshold: int = 0
    last_topup_at: datetime | None = None
    last_note: str | None = None
    in_flight: list[PoolReservation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_low(self) -> bool:
        return self.available_credits <= self.low_threshold

    def reservation(self, key: str) -> PoolReservation | None:
        return next((r for r in self.in_flight if r.key == key), None)

    class Settings:
        name = "admin_credit_pool"
