"""Conversation log entries and their text codec.

A conversation is an ordered list of entries. Each entry renders as a
header line followed by its content indented by two spaces; entries are
separated by one blank line and the log ends with a newline:

    Prompt:
      What's the weather?

    Tool Input name=get_weather:
      {
        "location": "London"
      }

    Tool Output name=get_weather duration=412ms:
      Partly cloudy

    Response:
      It's partly cloudy.

Order is the only link between a tool input and its output. parse_log()
never raises: unrecognised lines are skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar

_INDENT = "  "

_HEADER_RE = re.compile(
    r"^(Prompt|Response|Tool Input|Tool Output)(?: name=(.*?))?(?: duration=(\d+)ms)?:$"
)


@dataclass(frozen=True)
class Prompt:
    """The user's input for a turn."""

    content: str
    kind: ClassVar[str] = "prompt"


@dataclass(frozen=True)
class Response:
    """Model text: an intermediate remark before tool calls, or the final answer."""

    content: str
    kind: ClassVar[str] = "response"


@dataclass(frozen=True)
class ToolInput:
    """A tool invocation; content is the pretty-printed argument payload."""

    name: str
    content: str
    kind: ClassVar[str] = "tool_input"


@dataclass(frozen=True)
class ToolOutput:
    """Result of executing the tool named by the preceding ToolInput."""

    name: str
    content: str
    duration_ms: int = 0
    kind: ClassVar[str] = "tool_output"


ConversationEntry = Prompt | Response | ToolInput | ToolOutput


@dataclass(frozen=True)
class Exchange:
    """One prompt and its final answer, kept as context for later turns."""

    user: str
    assistant: str


def _indent_block(text: str) -> str:
    return "\n".join(_INDENT + line for line in text.split("\n"))


def _header(entry: ConversationEntry) -> str:
    if isinstance(entry, Prompt):
        return "Prompt:"
    if isinstance(entry, Response):
        return "Response:"
    if isinstance(entry, ToolInput):
        return f"Tool Input name={entry.name}:"
    return f"Tool Output name={entry.name} duration={entry.duration_ms}ms:"


def format_entry(entry: ConversationEntry) -> str:
    """Render one entry as header + indented content (no trailing newline)."""
    return f"{_header(entry)}\n{_indent_block(entry.content)}"


def format_log(entries: list[ConversationEntry]) -> str:
    """Render a whole conversation."""
    return "\n\n".join(format_entry(e) for e in entries) + "\n"


def parse_log(text: str) -> list[ConversationEntry]:
    """Parse a formatted log back into entries (best effort, never raises).

    A blank line belongs to the current content block only when the line
    after it is indented; otherwise it ends the block.
    """
    entries: list[ConversationEntry] = []
    lines = text.split("\n")
    i = 0

    while i < len(lines):
        match = _HEADER_RE.match(lines[i])
        if not match:
            i += 1
            continue

        kind, name, duration = match.group(1), match.group(2) or "", match.group(3)
        i += 1

        content_lines: list[str] = []
        while i < len(lines):
            line = lines[i]
            if line.startswith(_INDENT):
                content_lines.append(line[len(_INDENT):])
                i += 1
            elif line == "" and i + 1 < len(lines) and lines[i + 1].startswith(_INDENT):
                content_lines.append("")
                i += 1
            else:
                break

        content = "\n".join(content_lines)

        if kind == "Prompt":
            entries.append(Prompt(content))
        elif kind == "Response":
            entries.append(Response(content))
        elif kind == "Tool Input":
            entries.append(ToolInput(name, content))
        else:
            entries.append(ToolOutput(name, content, int(duration) if duration else 0))

    return entries


def first_prompt(entries: list[ConversationEntry]) -> str:
    """Content of the first Prompt entry, or "" if there is none."""
    for entry in entries:
        if isinstance(entry, Prompt):
            return entry.content
    return ""


def last_response(entries: list[ConversationEntry]) -> str:
    """Content of the last Response entry, or "" if there is none."""
    for entry in reversed(entries):
        if isinstance(entry, Response):
            return entry.content
    return ""
