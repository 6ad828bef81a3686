import uuid

from app.core.logging import get_logger
from app.transport.base import MessageTransport

log = get_logger(__name__)


class LogTransport(MessageTransport):
    """Development transport: accepts every message and logs it."""

    name = "log"

    async def deliver(self, to: str, body: str, media_url: str | None = None) -> str:
        message_id = f"log-{uuid.uuid4().hex[:12]}"
        log.info("sms_log_transport", to=to, chars=len(body), media_url=media_url, message_id=message_id)
        return message_id
