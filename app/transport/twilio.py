"""Twilio Programmable Messaging over its REST API."""

import httpx

from app.core.config import get_settings
from app.core.exceptions import BadRequestError
from app.transport.base import MessageTransport, TransportError

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioTransport(MessageTransport):
    name = "twilio"

    def __init__(self, http_transport: httpx.AsyncBaseTransport | None = None) -> None:
        settings = get_settings()
        if not settings.twilio_account_sid or not settings.twilio_auth_token or not settings.twilio_from_number:
            raise BadRequestError("SMS transport not configured")
        self.account_sid = settings.twilio_account_sid
        self.auth = (settings.twilio_account_sid, settings.twilio_auth_token)
        self.from_number = settings.twilio_from_number
        self.timeout = settings.sms_transport_timeout_seconds
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, auth=self.auth, transport=self._http_transport)

    async def __aenter__(self) -> "TwilioTransport":
        self._client = self._new_client()
        return self

    async def __aexit__(self, *exc_info) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def deliver(self, to: str, body: str, media_url: str | None = None) -> str:
        data = {"To": to, "From": self.from_number, "Body": body}
        if media_url:
            data["MediaUrl"] = media_url
        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        if self._client is not None:
            resp = await self._client.post(url, data=data)
        else:
            async with self._new_client() as client:
                resp = await client.post(url, data=data)
        if resp.status_code >= 400:
            try:
                message = resp.json().get("message") or resp.text
            except ValueError:
                message = resp.text
            raise TransportError(f"Twilio {resp.status_code}: {message}")
        return resp.json().get("sid", "")
