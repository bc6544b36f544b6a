import pytest
from httpx import ASGITransport, AsyncClient

from callbridge import db as db_module
from callbridge.db import InMemoryDB
from callbridge.main import app

_ENV_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "TWILIO_STREAM_URL",
    "PUBLIC_BASE_URL",
    "VAPI_PRIVATE_KEY",
    "VAPI_ASSISTANT_ID",
    "VAPI_PHONE_NUMBER_ID",
    "VAPI_WEBHOOK_URL",
    "CONTACT_CENTRE_NUMBER",
    "INBOUND_COMPANY_MATCH",
    "FALLBACK_AGENT_MATCH",
)


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """Fresh in-memory store per test, with no provider credentials set."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    store = InMemoryDB()
    monkeypatch.setattr(db_module, "_db_instance", store)
    yield store


@pytest.fixture
async def client():
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
