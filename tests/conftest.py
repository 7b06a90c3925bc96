from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fakeredis import aioredis as fake_aioredis
from mongomock_motor import AsyncMongoMockClient

from app.db import mongo
from app.db.indexes import create_indexes
from app.services import rate_limit_service
from app.services.whatsapp_service import whatsapp_service
from tests.helpers import make_user


@pytest.fixture(autouse=True)
async def db():
    """Fresh in-memory database with the production indexes."""
    mongo._database = AsyncMongoMockClient()["ledgerchat_test"]
    await create_indexes()
    yield mongo._database
    mongo._database = None


@pytest.fixture
async def fake_redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    rate_limit_service.set_redis(client)
    yield client
    rate_limit_service.set_redis(None)


@pytest.fixture(autouse=True)
def sent():
    """Captures outgoing WhatsApp payloads instead of calling the API."""
    with patch.object(whatsapp_service, "send_message", AsyncMock(return_value={"success": True})) as send:
        yield send


@pytest.fixture
def ai():
    """Stands in for both AI providers."""
    service = MagicMock()
    service.chat_json = AsyncMock(return_value={})
    service.chat_text = AsyncMock(return_value="Keep your costs down.")
    with patch("app.services.extraction_service.get_ai_service", return_value=service), \
            patch("app.services.intent_service.get_ai_service", return_value=service):
        yield service


@pytest.fixture
async def user():
    return await make_user()
