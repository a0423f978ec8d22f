"""Trusted agent loop and untrusted sub-agent loop.

The trusted loop sees the private context (system prompt, notes, recent
history) and the trusted tools. When the model calls
delegate_to_untrusted, a fresh sub-agent runs with only a generic system
prompt, the delegated task and the read-only untrusted tools. Only its
final text string comes back; its messages never enter the trusted list.

Both loops append every entry to the shared TurnTranscript as it happens,
so the stored log shows the whole turn including the sub-agent's calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from troy.agent.dispatch import ToolRegistry, parse_arguments
from troy.agent.transport import ChatClient
from troy.conversation.log import ConversationEntry, Response, ToolInput, ToolOutput
from troy.conversation.messages import (
    AssistantMessage,
    MessageList,
    SystemMessage,
    ToolCall,
    ToolMessage,
    TrustedMessages,
    UntrustedMessages,
    UserMessage,
)

logger = logging.getLogger(__name__)

DELEGATE_TOOL_NAME = "delegate_to_untrusted"

DELEGATE_TOOL_SCHEMA: dict[str, Any] = {
    "description": (
        "Delegate a task to an untrusted subagent that can search the web, fetch web pages "
        "and check the weather. Use this for anything that needs information from the "
        "internet. The subagent has no access to notes, calendar or conversation history, "
        "so include everything it needs in the prompt. Its answer is returned to the user "
        "as-is."
    ),
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "description": "Self-contained task for the subagent",
        },
    },
    "required": ["prompt"],
}

UNTRUSTED_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question using the available tools. Be concise."
)

NO_MODEL_RESPONSE = "Sorry, I didn't get a response from the model."
NO_SUBAGENT_RESPONSE = "Error: no response from subagent."
ITERATION_LIMIT_RESPONSE = "I reached the maximum number of tool iterations. Please try again."
SUBAGENT_ITERATION_LIMIT_RESPONSE = "Error: subagent reached the maximum number of tool iterations."


class LoopState(StrEnum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DELEGATING_UNTRUSTED = "delegating_untrusted"
    DONE = "done"


class TurnStatus(StrEnum):
    COMPLETED = "completed"
    DELEGATED = "delegated"
    MODEL_UNAVAILABLE = "model_unavailable"
    ITERATION_LIMIT = "iteration_limit"


class ModelUnavailableError(RuntimeError):
    """The model returned no message where one was required."""


@dataclass
class TurnTranscript:
    """Entries and tool names accumulated over one turn."""

    entries: list[ConversationEntry] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)

    def log(self, entry: ConversationEntry) -> None:
        self.entries.append(entry)


@dataclass(frozen=True)
class LoopOutcome:
    text: str
    status: TurnStatus


def format_tool_input(arguments: str) -> str:
    """Pretty-print a call's arguments for the log; unparseable input is kept raw."""
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        return arguments
    return json.dumps(parsed, indent=2, ensure_ascii=False)


async def _run_tool_call(
    registry: ToolRegistry,
    call: ToolCall,
    transcript: TurnTranscript,
    messages: MessageList,
) -> None:
    """Dispatch one call, logging its output and answering it in `messages`."""
    result = await registry.dispatch(call.name, call.arguments)
    transcript.log(ToolOutput(call.name, result.content, result.duration_ms))
    messages.append(ToolMessage(result.content, call.id))


def _delegation_prompt(call: ToolCall) -> str | None:
    """The delegated task, or None when the call carries no usable prompt."""
    try:
        args = parse_arguments(call.arguments)
    except ValueError:
        return None
    prompt = args.get("prompt")
    return prompt if isinstance(prompt, str) else None


class UntrustedSubAgent:
    """Runs a delegated task with only the untrusted tools."""

    def __init__(
        self,
        client: ChatClient,
        registry: ToolRegistry,
        transcript: TurnTranscript,
        max_turns: int = 20,
    ) -> None:
        self._client = client
        self._registry = registry
        self._transcript = transcript
        self._max_turns = max_turns

    async def run(self, task: str) -> str:
        """Answer `task` and return the final text only."""
        if not isinstance(task, str):
            raise TypeError(f"Subagent task must be a string, got {type(task).__name__}")

        logger.info("Starting untrusted subagent")
        self._transcript.log(Response(f"[subagent] {task}"))

        messages = UntrustedMessages([SystemMessage(UNTRUSTED_SYSTEM_PROMPT), UserMessage(task)])
        tools = self._registry.tool_definitions()

        for _ in range(self._max_turns):
            turn = await self._client.send(messages, tools)
            if turn is None:
                logger.error("No response from untrusted subagent")
                return NO_SUBAGENT_RESPONSE

            if not turn.tool_calls:
                return turn.content or ""

            messages.append(AssistantMessage(content=turn.content, tool_calls=tuple(turn.tool_calls)))
            for call in turn.tool_calls:
                self._transcript.tools_used.append(call.name)
                self._transcript.log(ToolInput(call.name, format_tool_input(call.arguments)))
                logger.info("Untrusted tool call: %s", call.name)
                await _run_tool_call(self._registry, call, self._transcript, messages)

        logger.warning("Untrusted subagent reached max_turns=%d", self._max_turns)
        return SUBAGENT_ITERATION_LIMIT_RESPONSE


class TrustedAgentLoop:
    """Drives the trusted model until it answers, delegates or hits the turn bound."""

    def __init__(
        self,
        client: ChatClient,
        registry: ToolRegistry,
        subagent: UntrustedSubAgent,
        transcript: TurnTranscript,
        max_turns: int = 20,
    ) -> None:
        self._client = client
        self._registry = registry
        self._subagent = subagent
        self._transcript = transcript
        self._max_turns = max_turns
        self.state = LoopState.AWAITING_MODEL

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Registry tools plus the delegation tool."""
        return self._registry.tool_definitions() + [
            {
                "type": "function",
                "function": {
                    "name": DELEGATE_TOOL_NAME,
                    "description": DELEGATE_TOOL_SCHEMA["description"],
                    "parameters": {k: v for k, v in DELEGATE_TOOL_SCHEMA.items() if k != "description"},
                },
            }
        ]

    async def run(self, messages: TrustedMessages) -> LoopOutcome:
        """Run the loop over `messages`, which is extended in place."""
        if not isinstance(messages, TrustedMessages):
            raise TypeError(f"Trusted loop requires TrustedMessages, got {type(messages).__name__}")

        tools = self.tool_definitions()

        for _ in range(self._max_turns):
            self.state = LoopState.AWAITING_MODEL
            turn = await self._client.send(messages, tools)

            if turn is None:
                logger.error("No response from model")
                self.state = LoopState.DONE
                return LoopOutcome(NO_MODEL_RESPONSE, TurnStatus.MODEL_UNAVAILABLE)

            if not turn.tool_calls:
                self.state = LoopState.DONE
                return LoopOutcome(turn.content or "", TurnStatus.COMPLETED)

            self.state = LoopState.EXECUTING_TOOLS
            if turn.content:
                self._transcript.log(Response(turn.content))
            messages.append(AssistantMessage(content=turn.content, tool_calls=tuple(turn.tool_calls)))

            delegated: str | None = None
            for call in turn.tool_calls:
                self._transcript.tools_used.append(call.name)
                self._transcript.log(ToolInput(call.name, format_tool_input(call.arguments)))
                logger.info("Tool call: %s", call.name)

                if call.name == DELEGATE_TOOL_NAME:
                    task = _delegation_prompt(call)
                    if task is None:
                        error = f"Error in {DELEGATE_TOOL_NAME}: a string 'prompt' argument is required"
                        logger.error("Malformed delegation call: %r", call.arguments)
                        self._transcript.log(ToolOutput(call.name, error, 0))
                        messages.append(ToolMessage(error, call.id))
                        continue

                    self.state = LoopState.DELEGATING_UNTRUSTED
                    delegated = await self._subagent.run(task)
                    self.state = LoopState.EXECUTING_TOOLS
                    continue

                if delegated is not None:
                    logger.warning("Executing %s after delegation in the same batch", call.name)
                await _run_tool_call(self._registry, call, self._transcript, messages)

            if delegated is not None:
                self.state = LoopState.DONE
                return LoopOutcome(delegated, TurnStatus.DELEGATED)

        logger.warning("Tool loop reached max_turns=%d", self._max_turns)
        self.state = LoopState.DONE
        return LoopOutcome(ITERATION_LIMIT_RESPONSE, TurnStatus.ITERATION_LIMIT)
