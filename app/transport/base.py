from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from app.core.config import get_settings
from app.core.logging import get_logger

log = get_logger(__name__)


class TransportError(Exception):
    """Gateway rejected or failed to accept a message."""


@dataclass
class TransportResult:
    status: Literal["sent", "failed"]
    error: str | None = None
    message_id: str | None = None


class MessageTransport(ABC):
    """Used as `async with transport:` around a batch so backends can hold one connection."""

    name = "base"

    async def __aenter__(self) -> "MessageTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    @abstractmethod
    async def deliver(self, to: str, body: str, media_url: str | None = None) -> str:
        """Hand one message to the gateway; return the provider message id. Raise on failure."""
        ...

    async def send(self, to: str, body: str, media_url: str | None = None) -> TransportResult:
        """Deliver and report the outcome; never raises, so one bad recipient does not stop a batch."""
        try:
            message_id = await self.deliver(to, body, media_url=media_url)
        except Exception as e:
            log.warning("sms_transport_failed", transport=self.name, to=to, error=str(e))
            return TransportResult(status="failed", error=str(e)[:500])
        return TransportResult(status="sent", message_id=message_id)


def get_transport() -> MessageTransport:
    settings = get_settings()
    if settings.sms_transport == "twilio":
        from app.transport.twilio import TwilioTransport
        return TwilioTransport()
    from app.transport.log import LogTransport
    return LogTransport()
