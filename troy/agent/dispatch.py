"""Tool registries and the dispatch boundary.

Provides:
- Trust: the capability class of a registry (trusted / untrusted)
- ToolRegistry: registers tool handlers, advertises their schemas,
  dispatches calls and reports a normalized string result with timing

Handlers are async callables that take the tool's arguments as keyword
arguments and return a string. Dispatch never lets a handler exception
escape: failures come back as error text the model can react to.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[str]]


class Trust(StrEnum):
    TRUSTED = "trusted"
    UNTRUSTED = "untrusted"


class ToolArgumentError(ValueError):
    """Tool arguments were not a JSON object."""


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one dispatched call."""

    name: str
    content: str
    duration_ms: int
    is_error: bool = False


def parse_arguments(arguments: str) -> dict[str, Any]:
    """Decode a tool call's raw argument string into keyword arguments.

    An empty string means no arguments. Raises json.JSONDecodeError or
    ToolArgumentError for anything that is not a JSON object.
    """
    if not arguments.strip():
        return {}
    parsed = json.loads(arguments)
    if not isinstance(parsed, dict):
        raise ToolArgumentError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ToolRegistry:
    """A set of tools available to one agent loop.

    The trusted and untrusted loops each get their own registry; registries
    are never merged. An untrusted registry only accepts read-only tools.
    """

    def __init__(self, trust: Trust) -> None:
        self.trust = trust
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        schema: dict[str, Any],
        *,
        read_only: bool = False,
    ) -> None:
        """Register a tool handler with its JSON schema."""
        if self.trust is Trust.UNTRUSTED and not read_only:
            raise ValueError(f"Tool '{name}' has side effects and cannot be registered as untrusted")
        self._handlers[name] = handler
        self._schemas[name] = schema

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in chat-completions function format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": schema.get("description", ""),
                    "parameters": {k: v for k, v in schema.items() if k != "description"},
                },
            }
            for name, schema in self._schemas.items()
        ]

    async def dispatch(self, name: str, arguments: str) -> ToolResult:
        """Run one tool call and return its result text and elapsed time."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Unknown %s tool requested: %s", self.trust, name)
            return ToolResult(name=name, content=f'Error: unknown tool "{name}"', duration_ms=0, is_error=True)

        start_time = time.monotonic()
        try:
            kwargs = parse_arguments(arguments)
            content = await handler(**kwargs)
            is_error = False
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            content = f"Error in {name}: {e}"
            is_error = True
        duration_ms = int((time.monotonic() - start_time) * 1000)

        if is_error:
            logger.error("Tool failed: %s (%dms)", name, duration_ms)
        else:
            logger.info("Tool completed: %s (%dms)", name, duration_ms)

        if not isinstance(content, str):
            content = str(content)
        return ToolResult(name=name, content=content, duration_ms=duration_ms, is_error=is_error)
