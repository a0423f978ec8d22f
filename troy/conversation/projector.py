"""Projection of conversation log entries into chat messages.

Used for seeding a live turn from stored exchanges and for replaying a
stored conversation so the model recomputes its answer.
"""

from __future__ import annotations

from troy.conversation.log import ConversationEntry, Exchange, Prompt, ToolInput, ToolOutput
from troy.conversation.messages import (
    AssistantMessage,
    ChatMessage,
    SystemMessage,
    ToolCall,
    ToolMessage,
    TrustedMessages,
    UserMessage,
)

NO_OUTPUT_RECORDED = "(no output recorded)"


def entries_to_messages(system_prompt: str, entries: list[ConversationEntry]) -> list[ChatMessage]:
    """Convert log entries into the message list for a replay request.

    Response entries are dropped so the model regenerates them. A run of
    consecutive tool inputs becomes one assistant message carrying all the
    calls, followed by one tool message per call in the same order. Call
    ids (replay_1, replay_2, ...) are local to this projection.
    """
    messages: list[ChatMessage] = [SystemMessage(system_prompt)]
    call_counter = 0
    i = 0

    while i < len(entries):
        entry = entries[i]

        if isinstance(entry, Prompt):
            messages.append(UserMessage(entry.content))
            i += 1
            continue

        if isinstance(entry, ToolInput):
            tool_calls: list[ToolCall] = []
            tool_results: list[ToolMessage] = []

            while i < len(entries) and isinstance(entries[i], ToolInput):
                tool_input = entries[i]
                call_counter += 1
                call_id = f"replay_{call_counter}"
                tool_calls.append(ToolCall(id=call_id, name=tool_input.name, arguments=tool_input.content))

                following = entries[i + 1] if i + 1 < len(entries) else None
                if isinstance(following, ToolOutput):
                    tool_results.append(ToolMessage(following.content, call_id))
                    i += 2
                else:
                    tool_results.append(ToolMessage(NO_OUTPUT_RECORDED, call_id))
                    i += 1

            messages.append(AssistantMessage(tool_calls=tuple(tool_calls)))
            messages.extend(tool_results)
            continue

        # Response entries, and tool outputs with no preceding input
        i += 1

    return messages


def seed_messages(system_prompt: str, history: list[Exchange], prompt: str) -> TrustedMessages:
    """Initial trusted context for a live turn: system, prior exchanges, new prompt."""
    messages = TrustedMessages([SystemMessage(system_prompt)])
    for exchange in history:
        messages.append(UserMessage(exchange.user))
        messages.append(AssistantMessage(content=exchange.assistant))
    messages.append(UserMessage(prompt))
    return messages
