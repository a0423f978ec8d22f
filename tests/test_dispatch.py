"""Tests for ToolRegistry (troy/agent/dispatch.py) -- registration, schemas, dispatch."""

import logging

import pytest

from troy.agent.dispatch import ToolArgumentError, ToolRegistry, Trust, parse_arguments

_ECHO_SCHEMA = {
    "type": "object",
    "description": "Echo tool",
    "properties": {"message": {"type": "string"}},
    "required": ["message"],
}


@pytest.fixture
def registry():
    registry = ToolRegistry(Trust.TRUSTED)

    async def echo(message: str = "default") -> str:
        return f"Echo: {message}"

    async def boom() -> str:
        raise RuntimeError("kaboom")

    async def number() -> int:
        return 42

    registry.register("echo", echo, _ECHO_SCHEMA)
    registry.register("boom", boom, {"type": "object", "description": "Fails", "properties": {}})
    registry.register("number", number, {"type": "object", "description": "Not a string", "properties": {}})
    return registry


class TestRegistration:
    def test_untrusted_rejects_side_effect_tools(self):
        registry = ToolRegistry(Trust.UNTRUSTED)

        async def write() -> str:
            return "wrote"

        with pytest.raises(ValueError, match="side effects"):
            registry.register("append_note", write, {"type": "object", "properties": {}})
        assert "append_note" not in registry

    def test_untrusted_accepts_read_only(self):
        registry = ToolRegistry(Trust.UNTRUSTED)

        async def read() -> str:
            return "data"

        registry.register("get_weather", read, {"type": "object", "properties": {}}, read_only=True)
        assert registry.names == ["get_weather"]

    def test_tool_definitions(self, registry):
        definitions = registry.tool_definitions()
        echo = next(d for d in definitions if d["function"]["name"] == "echo")
        assert echo["type"] == "function"
        assert echo["function"]["description"] == "Echo tool"
        assert "description" not in echo["function"]["parameters"]
        assert echo["function"]["parameters"]["required"] == ["message"]

    def test_registries_are_independent(self):
        trusted = ToolRegistry(Trust.TRUSTED)
        untrusted = ToolRegistry(Trust.UNTRUSTED)

        async def tool() -> str:
            return ""

        trusted.register("edit_note", tool, {"type": "object"})
        assert "edit_note" not in untrusted


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self, registry):
        result = await registry.dispatch("echo", '{"message": "hi"}')
        assert result.content == "Echo: hi"
        assert result.is_error is False
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_empty_arguments(self, registry):
        result = await registry.dispatch("echo", "")
        assert result.content == "Echo: default"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.dispatch("nope", "{}")
        assert result.content == 'Error: unknown tool "nope"'
        assert result.is_error is True
        assert result.duration_ms == 0

    @pytest.mark.asyncio
    async def test_handler_exception_contained(self, registry, caplog):
        with caplog.at_level(logging.ERROR):
            result = await registry.dispatch("boom", "{}")
        assert result.content == "Error in boom: kaboom"
        assert result.is_error is True
        assert any(r.exc_info for r in caplog.records)

    @pytest.mark.asyncio
    async def test_malformed_json_contained(self, registry):
        result = await registry.dispatch("echo", "{not json")
        assert result.content.startswith("Error in echo: ")
        assert result.is_error is True

    @pytest.mark.asyncio
    async def test_non_object_arguments_contained(self, registry):
        result = await registry.dispatch("echo", "[1, 2]")
        assert result.content == "Error in echo: expected a JSON object, got list"

    @pytest.mark.asyncio
    async def test_unexpected_argument_contained(self, registry):
        result = await registry.dispatch("echo", '{"bogus": 1}')
        assert result.content.startswith("Error in echo: ")

    @pytest.mark.asyncio
    async def test_non_string_result_coerced(self, registry):
        result = await registry.dispatch("number", "{}")
        assert result.content == "42"


class TestParseArguments:
    def test_object(self):
        assert parse_arguments('{"a": 1}') == {"a": 1}

    def test_blank(self):
        assert parse_arguments("  ") == {}

    def test_non_object(self):
        with pytest.raises(ToolArgumentError):
            parse_arguments('"just a string"')
