"""Shared fakes for the delivery engine: clock, chat API, model stream, history."""

from __future__ import annotations

import pytest
import pytest_asyncio

from streamrelay.config import Settings
from streamrelay.storage.database import Database
from streamrelay.streaming.errors import DeliveryError

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Messaging API
# ---------------------------------------------------------------------------


class FakeMessenger:
    """In-memory stand-in for TelegramClient.

    create_errors / edit_errors are queues consumed one entry per call;
    an entry that is an exception is raised, None lets the call succeed.
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.calls: list[tuple] = []
        self.times: list[float] = []
        self.messages: dict[int, str] = {}
        self.create_errors: list[Exception | None] = []
        self.edit_errors: list[Exception | None] = []
        self._next_id = 100

    def _record(self, call: tuple) -> None:
        self.calls.append(call)
        self.times.append(self.clock() if self.clock else 0.0)

    async def create_message(self, chat_id, text):
        self._record(("create", chat_id, text))
        if self.create_errors:
            error = self.create_errors.pop(0)
            if error is not None:
                raise error
        message_id = self._next_id
        self._next_id += 1
        self.messages[message_id] = text
        return message_id

    async def edit_message(self, chat_id, message_id, text):
        self._record(("edit", chat_id, message_id, text))
        if self.edit_errors:
            error = self.edit_errors.pop(0)
            if error is not None:
                raise error
        self.messages[message_id] = text

    async def send_presence(self, chat_id, kind="typing"):
        self._record(("presence", chat_id, kind))

    @property
    def deliveries(self) -> list[tuple]:
        """create/edit calls only, in order."""
        return [c for c in self.calls if c[0] in ("create", "edit")]

    @property
    def delivered_texts(self) -> list[str]:
        return [c[-1] for c in self.deliveries]

    def delivery_times(self) -> list[float]:
        return [t for c, t in zip(self.calls, self.times) if c[0] in ("create", "edit")]


def edit_failure(message: str = "Bad Request: message to edit not found", status: int = 400) -> DeliveryError:
    return DeliveryError(f"editMessageText failed ({status}): {message}", status=status)


# ---------------------------------------------------------------------------
# Model stream
# ---------------------------------------------------------------------------


class FakeModel:
    """Yields preset deltas, advancing the clock before each one."""

    model = "test-model"

    def __init__(
        self,
        deltas: list[str],
        *,
        clock: FakeClock | None = None,
        step: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.deltas = deltas
        self.clock = clock
        self.step = step
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def stream_text(self, system_prompt: str, prompt: str):
        self.calls.append((system_prompt, prompt))
        for delta in self.deltas:
            if self.clock is not None:
                self.clock.advance(self.step)
            yield delta
        if self.error is not None:
            raise self.error


# ---------------------------------------------------------------------------
# History store
# ---------------------------------------------------------------------------


class FakeHistory:
    def __init__(self, recent: list | None = None) -> None:
        self.recent = recent or []
        self.recorded: list[tuple] = []
        self.fetch_error: Exception | None = None
        self.record_error: Exception | None = None

    async def fetch_recent_turns(self, conversation_id, limit=3):
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.recent[:limit]

    async def record_turn(self, conversation_id, user_id, user_name, prompt_text, response_text, model):
        if self.record_error is not None:
            raise self.record_error
        self.recorded.append((conversation_id, user_id, user_name, prompt_text, response_text, model))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def messenger(clock) -> FakeMessenger:
    return FakeMessenger(clock)


@pytest.fixture
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture
def settings() -> Settings:
    """Default settings (500ms debounce, 50-char modulus)."""
    return Settings(TELEGRAM_BOT_TOKEN="test-token", ANTHROPIC_API_KEY="test-key")


@pytest.fixture
def db_settings(tmp_path) -> Settings:
    return Settings(DB_URL=f"sqlite+aiosqlite:///{tmp_path / 'history.sqlite'}")


@pytest_asyncio.fixture
async def db(db_settings):
    """Fresh SQLite database per test."""
    database = Database(db_settings)
    await database.connect()
    yield database
    await database.disconnect()
