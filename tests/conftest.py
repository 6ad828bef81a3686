import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "sms_ledger_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("SMS_TRANSPORT", "log")


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Fresh Beanie on the test database; skipped when MongoDB is unreachable."""
    from app.core.config import get_settings
    from app.db.init import DOCUMENT_MODELS, get_client, init_db

    client = get_client(serverSelectionTimeoutMS=1500)
    try:
        await client.admin.command("ping")
    except Exception as e:
        client.close()
        pytest.skip(f"MongoDB not reachable: {e}")
    name = get_settings().mongodb_db_name
    for model in DOCUMENT_MODELS:
        await client[name][model.Settings.name].drop()
    await init_db(db_name=name, client=client)
    yield
    client.close()


@pytest.fixture(autouse=True)
def low_balance_alerts(monkeypatch) -> list[tuple]:
    """Capture low-balance jobs instead of talking to Redis."""
    calls: list[tuple] = []

    async def _enqueue(wallet_id: str, balance: int, threshold: int) -> None:
        calls.append((wallet_id, balance, threshold))

    monkeypatch.setattr("app.worker.tasks.enqueue_low_balance_notification", _enqueue)
    return calls


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def create_auth_token(user_id: str, role: str, tenant_id: str | None = None) -> str:
    """Sign a token the way the auth service does."""
    from app.core.security import get_token_serializer
    payload = {"user_id": user_id, "role": role}
    if tenant_id:
        payload["tenant_id"] = tenant_id
    return get_token_serializer().dumps(payload)


def auth_headers(user_id: str, role: str, tenant_id: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user_id, role, tenant_id)}"}


class FakeTransport:
    """Records sends; numbers listed in `fail` are reported as failed."""

    name = "fake"

    def __init__(self, fail: set[str] | None = None):
        self.calls: list[str] = []
        self.fail = fail or set()
        self.sessions = 0

    async def __aenter__(self):
        self.sessions += 1
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def send(self, to: str, body: str, media_url: str | None = None):
        from app.transport.base import TransportResult
        self.calls.append(to)
        if to in self.fail:
            return TransportResult(status="failed", error="gateway rejected")
        return TransportResult(status="sent", message_id=f"fake-{len(self.calls)}")
