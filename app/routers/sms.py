from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from app.deps import get_current_principal
from app.services import consumption as consumption_service
from app.services.owners import Principal

router = APIRouter()


class SmsSend(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    body: str
    to: list[str] | str
    media_url: str | None = Field(default=None, alias="mediaUrl")
    title: str | None = None
    meta: dict[str, Any] | None = None


class SmsQuote(BaseModel):
    body: str
    to: list[str] | str


@router.post("/sms-send")
async def sms_send(payload: SmsSend, principal: Principal = Depends(get_current_principal)):
    """Charge the caller's wallet, then send to every recipient. 402 when credits are short."""
    out = await consumption_service.charge_and_send(
        principal,
        payload.body,
        payload.to,
        media_url=payload.media_url,
        title=payload.title,
        meta=payload.meta,
    )
    return {"success": True, "data": out}


@router.post("/sms-send/quote")
async def sms_quote(payload: SmsQuote, principal: Principal = Depends(get_current_principal)):
    """Credit cost of a send, without charging."""
    return {"success": True, "data": consumption_service.quote(payload.body, payload.to)}
