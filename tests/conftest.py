"""Shared fixtures: isolated settings, a SQLite history store, a scripted chat client."""

import itertools

import pytest
import pytest_asyncio

from troy.agent.transport import ModelTurn
from troy.config import Settings
from troy.conversation.messages import ToolCall
from troy.storage.database import Database
from troy.storage.history import HistoryStore

# ---------------------------------------------------------------------------
# Scripted model
# ---------------------------------------------------------------------------


_call_ids = itertools.count(1)


def tool_call(name: str, arguments: str = "{}", call_id: str | None = None) -> ToolCall:
    """Build a ToolCall with a unique id."""
    return ToolCall(id=call_id or f"call_{next(_call_ids)}", name=name, arguments=arguments)


def text_turn(content: str) -> ModelTurn:
    return ModelTurn(content=content)


def tools_turn(*calls: ToolCall, content: str | None = None) -> ModelTurn:
    return ModelTurn(content=content, tool_calls=list(calls))


class FakeChatClient:
    """Returns scripted turns in order and records every request.

    Each request's messages are snapshotted (list copy) at call time, so
    later mutation of the live message list does not change what a test
    sees. A script item that is an exception instance is raised.
    """

    def __init__(self, *turns):
        self._turns = list(turns)
        self.requests: list[dict] = []

    async def send(self, messages, tools=None):
        self.requests.append({
            "messages": list(messages),
            "tools": tools or [],
            "message_type": type(messages),
        })
        if not self._turns:
            raise AssertionError("FakeChatClient ran out of scripted turns")
        turn = self._turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    def tool_names(self, index: int) -> list[str]:
        return [t["function"]["name"] for t in self.requests[index]["tools"]]


# ---------------------------------------------------------------------------
# Settings and storage
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in a temp data dir, ignoring any local .env."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "troy_data"),
        OPENROUTER_API_KEY="test-key",
        OPENROUTER_MODEL="test/model",
        USER="",
        max_turns=5,
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.connect()
    yield db
    await db.disconnect()


@pytest_asyncio.fixture
async def store(database) -> HistoryStore:
    return HistoryStore(database)
