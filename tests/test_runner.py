"""Tests for AgentRunner turn orchestration and replay (troy/agent/runner.py)."""

import json
from datetime import date

import pytest

from conftest import FakeChatClient, text_turn, tool_call, tools_turn
from troy.agent.dispatch import ToolRegistry, Trust
from troy.agent.loop import DELEGATE_TOOL_NAME, ModelUnavailableError, TurnStatus
from troy.agent.runner import AgentRunner, ConversationNotFound, TurnResult
from troy.conversation.log import Prompt, Response, ToolInput, ToolOutput
from troy.conversation.messages import AssistantMessage, SystemMessage, ToolMessage, UserMessage


@pytest.fixture
def registries():
    trusted = ToolRegistry(Trust.TRUSTED)
    untrusted = ToolRegistry(Trust.UNTRUSTED)

    async def get_weather(location: str) -> str:
        return f"Weather for {location}: Partly cloudy"

    schema = {"type": "object", "description": "Weather", "properties": {"location": {"type": "string"}}}
    trusted.register("get_weather", get_weather, schema, read_only=True)
    untrusted.register("get_weather", get_weather, schema, read_only=True)
    return trusted, untrusted


def _runner(settings, client, store, registries):
    trusted, untrusted = registries
    return AgentRunner(settings, client, store, trusted, untrusted)


class TestTurnResult:
    def test_reply_suffix(self):
        assert TurnResult("Hi", TurnStatus.COMPLETED, conversation_id=3).reply == "Hi [C3]"
        assert TurnResult("Hi", TurnStatus.COMPLETED, 4, ["get_weather"]).reply == "Hi [C4, 1 tool use]"
        assert TurnResult("Hi", TurnStatus.DELEGATED, 5, ["a", "b"]).reply == "Hi [C5, 2 tool uses]"

    def test_unsaved_turn_has_no_suffix(self):
        assert TurnResult("Sorry", TurnStatus.MODEL_UNAVAILABLE).reply == "Sorry"


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_turn_is_persisted(self, settings, store, registries):
        client = FakeChatClient(
            tools_turn(tool_call("get_weather", '{"location":"London"}')),
            text_turn("It's partly cloudy."),
        )
        runner = _runner(settings, client, store, registries)

        result = await runner.run_turn("What's the weather?")

        assert result.status is TurnStatus.COMPLETED
        assert result.conversation_id is not None
        assert result.reply == f"It's partly cloudy. [C{result.conversation_id}, 1 tool use]"

        entries = await store.read_log(result.conversation_id)
        assert entries[0] == Prompt("What's the weather?")
        assert entries[1] == ToolInput("get_weather", '{\n  "location": "London"\n}')
        assert isinstance(entries[2], ToolOutput)
        assert entries[3] == Response("It's partly cloudy.")

        record = await store.get(result.conversation_id)
        assert record.model == "test/model"
        assert json.loads(record.tools_used) == ["get_weather"]

    @pytest.mark.asyncio
    async def test_history_seeds_next_turn(self, settings, store, registries):
        client = FakeChatClient(text_turn("a1"), text_turn("a2"), text_turn("a3"), text_turn("a4"))
        runner = _runner(settings, client, store, registries)

        for prompt in ("q1", "q2", "q3", "q4"):
            await runner.run_turn(prompt)

        last = client.requests[-1]["messages"]
        assert isinstance(last[0], SystemMessage)
        assert last[1:] == [
            UserMessage("q2"),
            AssistantMessage(content="a2"),
            UserMessage("q3"),
            AssistantMessage(content="a3"),
            UserMessage("q4"),
        ]

    @pytest.mark.asyncio
    async def test_sources_do_not_share_history(self, settings, store, registries):
        client = FakeChatClient(text_turn("cli answer"), text_turn("discord answer"))
        runner = _runner(settings, client, store, registries)

        await runner.run_turn("cli question", "cli")
        await runner.run_turn("discord question", "discord:99")

        assert client.requests[1]["messages"][1:] == [UserMessage("discord question")]

    @pytest.mark.asyncio
    async def test_system_prompt_includes_rules(self, settings, store, registries):
        settings.rules_dir.mkdir(parents=True)
        settings.notes_path.write_text("The user's dog is called Rex.\n")
        client = FakeChatClient(text_turn("Rex."))
        runner = _runner(settings, client, store, registries)

        await runner.run_turn("What's my dog called?")

        assert "The user's dog is called Rex." in client.requests[0]["messages"][0].content

    @pytest.mark.asyncio
    async def test_model_unavailable_not_persisted(self, settings, store, registries):
        runner = _runner(settings, FakeChatClient(None), store, registries)

        result = await runner.run_turn("hello")

        assert result.status is TurnStatus.MODEL_UNAVAILABLE
        assert result.ok is False
        assert result.conversation_id is None
        assert result.reply == "Sorry, I didn't get a response from the model."
        assert await store.load_recent_history() == []

    @pytest.mark.asyncio
    async def test_delegated_turn_logs_subagent(self, settings, store, registries):
        client = FakeChatClient(
            tools_turn(tool_call(DELEGATE_TOOL_NAME, '{"prompt": "weather in Oslo"}')),
            tools_turn(tool_call("get_weather", '{"location": "Oslo"}')),
            text_turn("Oslo is partly cloudy."),
        )
        runner = _runner(settings, client, store, registries)

        result = await runner.run_turn("Oslo weather please")

        assert result.status is TurnStatus.DELEGATED
        assert result.reply.endswith("[C1, 2 tool uses]")
        entries = await store.read_log(result.conversation_id)
        assert [type(e).__name__ for e in entries] == [
            "Prompt", "ToolInput", "Response", "ToolInput", "ToolOutput", "Response",
        ]
        assert entries[2] == Response("[subagent] weather in Oslo")
        assert entries[-1] == Response("Oslo is partly cloudy.")


class TestReplay:
    @pytest.mark.asyncio
    async def test_replay_sends_projection_without_tools(self, settings, store, registries):
        entries = [
            Prompt("What's the weather?"),
            ToolInput("get_weather", '{"location":"London"}'),
            ToolOutput("get_weather", "Partly cloudy", 100),
            Response("It's partly cloudy"),
        ]
        conversation_id = await store.write_log(entries)
        client = FakeChatClient(text_turn("Still partly cloudy."))
        runner = _runner(settings, client, store, registries)

        text = await runner.replay(conversation_id)

        assert text == "Still partly cloudy."
        request = client.requests[0]
        assert request["tools"] == []
        messages = request["messages"]
        assert len(messages) == 4
        assert messages[1] == UserMessage("What's the weather?")
        assert messages[2].tool_calls[0].name == "get_weather"
        assert messages[3] == ToolMessage("Partly cloudy", "replay_1")
        assert all("It's partly cloudy" != getattr(m, "content", None) for m in messages)

    @pytest.mark.asyncio
    async def test_replay_unknown_id(self, settings, store, registries):
        runner = _runner(settings, FakeChatClient(), store, registries)
        with pytest.raises(ConversationNotFound):
            await runner.replay(12345)

    @pytest.mark.asyncio
    async def test_replay_empty_answer(self, settings, store, registries):
        conversation_id = await store.write_log([Prompt("hi"), Response("hello")])
        runner = _runner(settings, FakeChatClient(text_turn("")), store, registries)
        with pytest.raises(ModelUnavailableError):
            await runner.replay(conversation_id)

    @pytest.mark.asyncio
    async def test_replay_uses_current_date_context(self, settings, store, registries):
        conversation_id = await store.write_log([Prompt("hi"), Response("hello")])
        client = FakeChatClient(text_turn("hello again"))
        runner = _runner(settings, client, store, registries)

        await runner.replay(conversation_id)

        assert f"Today is {date.today().strftime('%A')}" in client.requests[0]["messages"][0].content
