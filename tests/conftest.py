"""Shared test fixtures for kryten-counters."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from kryten_counters.config import CountersConfig
from kryten_counters.database import CountersDatabase
from kryten_counters.engine import ChatCommandContext, ChatCommandEngine
from kryten_counters.models import CounterUpdateEvent, MilestoneEvent

CH = "testchannel"
T0 = datetime(2026, 3, 1, 20, 0, 0, tzinfo=timezone.utc)


# ── Minimal config dict matching CountersConfig schema ───────

def make_config_dict(**overrides) -> dict:
    """Build a valid config dict with sensible test defaults."""
    base = {
        "nats": {"servers": ["nats://localhost:4222"]},
        "channels": [{"domain": "cytu.be", "channel": CH}],
        "service": {"name": "counters"},
        "database": {"path": ":memory:"},
        "bot": {"username": "TestBot"},
        "ignored_users": ["IgnoredBot"],
        "milestones": {
            "thresholds": {
                "deaths": [10, 25, 50],
                "swears": [5, 10],
                "screams": [3],
                "bits": [100],
            },
            "notifications": {"deaths": True, "swears": True, "screams": True, "bits": False},
        },
        "announcements": {
            "batch_delay_seconds": 0.0,
            "max_per_minute": 10,
            "dedup_window_seconds": 30.0,
        },
    }
    base.update(overrides)
    return base


def make_ctx(
    message: str,
    *,
    username: str = "alice",
    channel: str = CH,
    mod: bool = False,
    broadcaster: bool = False,
    sub: bool = False,
    at: datetime | None = T0,
) -> ChatCommandContext:
    """Build a chat message context for the engine."""
    return ChatCommandContext(
        broadcaster_id=channel,
        username=username,
        message=message,
        is_moderator=mod,
        is_broadcaster=broadcaster,
        is_subscriber=sub,
        timestamp=at,
    )


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a config dict suitable for tests."""
    return make_config_dict()


@pytest.fixture
def sample_config(sample_config_dict: dict) -> CountersConfig:
    """Return a parsed CountersConfig."""
    return CountersConfig(**sample_config_dict)


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> str:
    """Return a temporary SQLite database path."""
    return str(tmp_path / "test_counters.db")


@pytest_asyncio.fixture
async def database(tmp_db_path: str) -> AsyncGenerator[CountersDatabase, None]:
    """Provide an initialized database with temp file."""
    db = CountersDatabase(tmp_db_path, logging.getLogger("test"))
    await db.initialize()
    yield db


@pytest.fixture
def mock_client() -> MagicMock:
    """Return a mock KrytenClient with async methods."""
    client = MagicMock()
    client.send_chat = AsyncMock(return_value="corr-id-456")
    client.kv_put = AsyncMock()
    client.kv_get = AsyncMock(return_value=None)
    client.connect = AsyncMock()
    client.run = AsyncMock()
    client.stop = AsyncMock()
    client.subscribe = AsyncMock()
    client.subscribe_request_reply = AsyncMock()
    return client


# ── Recording collaborators ──────────────────────────────────

class RecordingDispatcher:
    """Collects every event the engine emits."""

    def __init__(self) -> None:
        self.milestones: list[MilestoneEvent] = []
        self.updates: list[CounterUpdateEvent] = []

    async def dispatch_milestone(self, event: MilestoneEvent) -> None:
        self.milestones.append(event)

    async def dispatch_counter_update(self, event: CounterUpdateEvent) -> None:
        self.updates.append(event)


class RecordingSender:
    """Collects chat replies."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, broadcaster_id: str, text: str) -> None:
        self.sent.append((broadcaster_id, text))


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest_asyncio.fixture
async def engine(
    sample_config: CountersConfig,
    database: CountersDatabase,
    dispatcher: RecordingDispatcher,
    sender: RecordingSender,
) -> ChatCommandEngine:
    """ChatCommandEngine backed by a real database and recording collaborators."""
    return ChatCommandEngine(
        config=sample_config,
        counters=database,
        broadcaster_config=database,
        library=database,
        dispatcher=dispatcher,
        chat_sender=sender,
        logger=logging.getLogger("test.engine"),
    )


# ── Mock client for integration tests ───────────────────────

class MockKrytenClient:
    """Mock kryten-py client for integration testing.

    Records all method calls for assertion.
    """

    def __init__(self) -> None:
        self.sent_chats: list[tuple[str, str]] = []
        self._handlers: dict[str, list] = {}
        self._request_reply_handlers: dict[str, Any] = {}
        self._kv_store: dict[str, dict[str, Any]] = {}
        self.lifecycle = None

    async def send_chat(
        self, channel: str, message: str, *, domain: str | None = None,
    ) -> str:
        self.sent_chats.append((channel, message))
        return "mock-corr-id"

    async def kv_get(
        self, bucket_name: str, key: str, default: Any = None, parse_json: bool = False,
    ) -> Any:
        return self._kv_store.get(bucket_name, {}).get(key, default)

    async def kv_put(
        self, bucket_name: str, key: str, value: Any, *, as_json: bool = False,
    ) -> None:
        self._kv_store.setdefault(bucket_name, {})[key] = value

    async def connect(self) -> None:
        pass

    async def run(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def subscribe(self, subject: str, handler: Any) -> None:
        pass

    async def subscribe_request_reply(self, subject: str, handler: Any) -> None:
        self._request_reply_handlers[subject] = handler

    async def get_or_create_kv_store(self, bucket_name: str, description: str = "") -> Any:
        self._kv_store.setdefault(bucket_name, {})
        return MagicMock()

    def on(self, event_name: str, channel: str | None = None, domain: str | None = None):
        """Match kryten-py's ``on()`` decorator signature."""
        def decorator(func):
            self._handlers.setdefault(event_name, []).append(func)
            return func
        return decorator

    async def fire_event(self, event_name: str, event: Any) -> None:
        """Test helper: simulate an incoming event."""
        for handler in self._handlers.get(event_name, []):
            await handler(event)


@pytest.fixture
def mock_kryten_client() -> MockKrytenClient:
    """Return a MockKrytenClient for integration tests."""
    return MockKrytenClient()
