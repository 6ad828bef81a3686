"""SMS consumption: price a send, debit the wallet, then dispatch.

The debit is the admission gate: nothing reaches the transport unless the
wallet was charged first. Transport failures are recorded per recipient and
are not refunded.
"""

import math
import re
from typing import Any

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, InvalidAmountError, OutcomeUnknownError
from app.core.logging import get_logger
from app.models.sms_dispatch import RecipientOutcome, SmsDispatch
from app.services import wallets
from app.services.owners import Principal, owner_type_for_role
from app.transport.base import MessageTransport, get_transport

log = get_logger(__name__)

PHONE_RE = re.compile(r"^\+?\d{10,15}$")
PREVIEW_CHARS = 60


def segments_for(body: str) -> int:
    """160-character segments per message; an empty body still costs one."""
    return max(1, math.ceil(len(body) / get_settings().sms_segment_length))


def quote_cost(body: str, recipient_count: int) -> int:
    """recipients x segments; no recipients costs nothing."""
    if recipient_count < 0:
        raise InvalidAmountError("Recipient count cannot be negative", amount=recipient_count)
    return recipient_count * segments_for(body)


def normalize_recipients(to: list[str] | str) -> list[str]:
    """Trim, validate and de-duplicate (order kept). A comma-separated string is accepted."""
    raw = to.split(",") if isinstance(to, str) else list(to)
    seen: set[str] = set()
    out: list[str] = []
    invalid: list[str] = []
    for item in raw:
        number = (item or "").strip().replace(" ", "")
        if not number:
            continue
        if not PHONE_RE.match(number):
            invalid.append(number)
            continue
        if number not in seen:
            seen.add(number)
            out.append(number)
    if invalid:
        raise BadRequestError("Invalid recipient numbers", details={"invalid": invalid})
    if not out:
        raise BadRequestError("No valid recipient numbers provided")
    if len(out) > get_settings().sms_max_recipients:
        raise BadRequestError(f"Too many recipients (max {get_settings().sms_max_recipients})")
    return out


def quote(body: str, to: list[str] | str) -> dict[str, Any]:
    recipients = normalize_recipients(to)
    segments = segments_for(body)
    return {
        "segments": segments,
        "recipients": len(recipients),
        "credits": quote_cost(body, len(recipients)),
    }


async def _deliver(
    transport: MessageTransport,
    recipients: list[str],
    body: str,
    media_url: str | None,
) -> list[RecipientOutcome]:
    """One transport session per batch; per-recipient failures are recorded, not raised."""
    outcomes: list[RecipientOutcome] = []
    async with transport:
        for number in recipients:
            result = await transport.send(number, body, media_url=media_url)
            outcomes.append(
                RecipientOutcome(
                    to=number,
                    status=result.status,
                    error=result.error,
                    provider_message_id=result.message_id,
                )
            )
    return outcomes


async def charge_and_send(
    principal: Principal,
    body: str,
    to: list[str] | str,
    media_url: str | None = None,
    title: str | None = None,
    meta: dict[str, Any] | None = None,
    transport: MessageTransport | None = None,
) -> dict[str, Any]:
    owner_type = owner_type_for_role(principal.role)
    if not body or not body.strip():
        raise BadRequestError("Message body is required")
    recipients = normalize_recipients(to)
    segments = segments_for(body)
    cost = quote_cost(body, len(recipients))
    # Resolve the transport before charging so a misconfigured gateway fails closed
    transport = transport or get_transport()

    debit_meta: dict[str, Any] = {
        "preview": body[:PREVIEW_CHARS],
        "recipients": len(recipients),
        "segments": segments,
        "sender_id": principal.id,
    }
    if title:
        debit_meta["title"] = title
    if meta:
        debit_meta["client"] = meta
    wallet, entry = await wallets.debit(principal.owner_id, owner_type, cost, "sms_send", debit_meta)

    # Charged from here on: any failure must say so, a blind retry would charge twice
    try:
        outcomes = await _deliver(transport, recipients, body, media_url)
        sent = sum(1 for o in outcomes if o.status == "sent")
        dispatch = SmsDispatch(
            owner_id=principal.owner_id,
            owner_type=owner_type,
            sender_id=principal.id,
            title=title,
            body=body,
            media_url=media_url,
            segments=segments,
            credits_charged=cost,
            ledger_entry_id=entry.id,
            recipients=outcomes,
            sent_count=sent,
            failed_count=len(outcomes) - sent,
        )
        await dispatch.insert()
    except Exception as exc:
        log.error(
            "sms_dispatch_failed",
            ledger_entry_id=str(entry.id),
            wallet_id=str(wallet.id),
            credits=cost,
            error=str(exc),
        )
        raise OutcomeUnknownError(
            "SMS credits were charged but the send could not be recorded; do not retry",
            details={"ledger_entry_id": str(entry.id), "wallet_id": str(wallet.id), "credits": cost},
        ) from exc
    log.info(
        "sms_dispatch",
        dispatch_id=str(dispatch.id),
        owner_id=principal.owner_id,
        owner_type=owner_type,
        credits=cost,
        sent=sent,
        failed=dispatch.failed_count,
        transport=transport.name,
    )
    return {
        "dispatchId": str(dispatch.id),
        "creditsCharged": cost,
        "segments": segments,
        "balance": wallet.balance,
        "sent": sent,
        "failed": dispatch.failed_count,
        "results": [o.model_dump() for o in outcomes],
    }
