"""Chat messages in the shape the chat-completions API consumes.

Messages are built per request and never persisted; tool call ids only
mean something within one live request.

Each agent loop owns a message list typed by its trust domain.
TrustedMessages and UntrustedMessages cannot be merged into each other,
so the untrusted sub-agent's context can only ever reach the trusted
agent as a plain string.
"""

from __future__ import annotations

import json
import weakref
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model; arguments is the raw JSON string."""

    id: str
    name: str
    arguments: str

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ToolCall:
        function = data.get("function") or {}
        arguments = function.get("arguments")
        if arguments is None:
            arguments = ""
        elif not isinstance(arguments, str):
            # Some providers return already-decoded objects
            arguments = json.dumps(arguments)
        return cls(id=data.get("id", ""), name=function.get("name", ""), arguments=arguments)


@dataclass(frozen=True)
class SystemMessage:
    content: str
    role: ClassVar[str] = "system"

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class UserMessage:
    content: str
    role: ClassVar[str] = "user"

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class AssistantMessage:
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    role: ClassVar[str] = "assistant"

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_api() for tc in self.tool_calls]
        return data


@dataclass(frozen=True)
class ToolMessage:
    content: str
    tool_call_id: str
    role: ClassVar[str] = "tool"

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "tool_call_id": self.tool_call_id, "content": self.content}


ChatMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage

_MESSAGE_TYPES = (SystemMessage, UserMessage, AssistantMessage, ToolMessage)

# id(message) -> the MessageList subclass that first took it; entries are
# dropped when the message is garbage collected
_owners: dict[int, type] = {}


def _claim(message: ChatMessage, domain: type) -> None:
    """Bind a message object to one trust domain, or raise if another owns it."""
    key = id(message)
    owner = _owners.get(key)
    if owner is None:
        _owners[key] = domain
        weakref.finalize(message, _owners.pop, key, None)
    elif owner is not domain:
        raise TypeError(
            f"{type(message).__name__} already belongs to {owner.__name__}; "
            f"cannot add it to {domain.__name__}"
        )


class MessageList:
    """Ordered, append-only message list bound to one trust domain.

    Each message object is claimed by the domain of the first list it is
    added to, so copying messages out through a plain list or iterator
    does not get them into the other domain.
    """

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        if isinstance(messages, MessageList):
            self._check_domain(messages)
        self._messages: list[ChatMessage] = []
        for message in messages:
            self.append(message)

    def _check_domain(self, other: MessageList) -> None:
        if type(other) is not type(self):
            raise TypeError(
                f"Cannot combine {type(other).__name__} with {type(self).__name__}"
            )

    def append(self, message: ChatMessage) -> None:
        if not isinstance(message, _MESSAGE_TYPES):
            raise TypeError(f"Expected a chat message, got {type(message).__name__}")
        _claim(message, type(self))
        self._messages.append(message)

    def extend(self, messages: Iterable[ChatMessage]) -> None:
        if isinstance(messages, MessageList):
            self._check_domain(messages)
        for message in messages:
            self.append(message)

    def to_api(self) -> list[dict[str, Any]]:
        return [m.to_api() for m in self._messages]

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> ChatMessage:
        return self._messages[index]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._messages!r})"


class TrustedMessages(MessageList):
    """Context of the trusted agent: system prompt, notes, history, private tools."""


class UntrustedMessages(MessageList):
    """Context of the untrusted sub-agent: its seed prompt and its own tool exchanges."""
