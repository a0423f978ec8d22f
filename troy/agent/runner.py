"""Turn orchestration: one prompt in, one persisted conversation out.

AgentRunner ties the pieces together for the front ends. Each turn:
1. Load the last few exchanges for the source
2. Build the system prompt (rules, matching skills, date context)
3. Seed TrustedMessages and run the trusted loop
4. Append the final Response and store the transcript
5. Return the text plus the C<id> reference and tool count

It also replays stored conversations against the current system prompt.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from troy.agent.dispatch import ToolRegistry
from troy.agent.loop import (
    ModelUnavailableError,
    TrustedAgentLoop,
    TurnStatus,
    TurnTranscript,
    UntrustedSubAgent,
)
from troy.agent.prompts import build_system_prompt
from troy.agent.transport import ChatClient
from troy.config import Settings
from troy.conversation.log import ConversationEntry, Prompt, Response
from troy.conversation.projector import entries_to_messages, seed_messages
from troy.storage.history import DEFAULT_SOURCE, HistoryStore

logger = logging.getLogger(__name__)


class ConversationNotFound(LookupError):
    """No stored conversation has the requested id."""


@dataclass
class TurnResult:
    """Outcome of one turn as seen by a front end."""

    text: str
    status: TurnStatus
    conversation_id: int | None = None
    tools_used: list[str] = field(default_factory=list)
    entries: list[ConversationEntry] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status is not TurnStatus.MODEL_UNAVAILABLE

    @property
    def suffix(self) -> str:
        if self.conversation_id is None:
            return ""
        count = len(self.tools_used)
        if count == 0:
            return f"[C{self.conversation_id}]"
        return f"[C{self.conversation_id}, {count} tool {'use' if count == 1 else 'uses'}]"

    @property
    def reply(self) -> str:
        """Text with the conversation reference appended."""
        if not self.suffix:
            return self.text
        return f"{self.text} {self.suffix}"


class AgentRunner:
    """Runs turns for one process; the registries are fixed at construction."""

    def __init__(
        self,
        settings: Settings,
        client: ChatClient,
        store: HistoryStore,
        trusted_registry: ToolRegistry,
        untrusted_registry: ToolRegistry,
    ) -> None:
        self._settings = settings
        self._client = client
        self._store = store
        self._trusted = trusted_registry
        self._untrusted = untrusted_registry

    async def run_turn(self, prompt: str, source: str = DEFAULT_SOURCE) -> TurnResult:
        """Execute a single conversational turn and persist it."""
        start_time = time.monotonic()
        logger.info("Starting turn for %s with model %s", source, self._settings.model)

        history = await self._store.load_recent_history(source, limit=self._settings.history_exchanges)
        system_prompt = build_system_prompt(self._settings, prompt)
        messages = seed_messages(system_prompt, history, prompt)

        transcript = TurnTranscript()
        transcript.log(Prompt(prompt))

        subagent = UntrustedSubAgent(self._client, self._untrusted, transcript, self._settings.max_turns)
        loop = TrustedAgentLoop(self._client, self._trusted, subagent, transcript, self._settings.max_turns)
        outcome = await loop.run(messages)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        result = TurnResult(
            text=outcome.text,
            status=outcome.status,
            tools_used=list(transcript.tools_used),
            entries=transcript.entries,
            duration_ms=duration_ms,
        )

        if outcome.status is TurnStatus.MODEL_UNAVAILABLE or not outcome.text:
            logger.error("No response content from model; turn not stored")
            return result

        transcript.log(Response(outcome.text))
        result.conversation_id = await self._store.write_log(
            transcript.entries,
            source,
            model=self._settings.model,
            tools_used=transcript.tools_used,
            duration_ms=duration_ms,
        )
        logger.info(
            "Completed C%d with %d tool use(s) in %dms (%s)",
            result.conversation_id,
            len(result.tools_used),
            duration_ms,
            outcome.status,
        )
        return result

    async def replay(self, conversation_id: int) -> str:
        """Regenerate the final answer of a stored conversation.

        Stored responses are dropped and the recorded tool outputs are fed
        back, so the model recomputes its answer without running any tool.
        """
        entries = await self._store.read_log(conversation_id)
        if entries is None:
            raise ConversationNotFound(f"Conversation C{conversation_id} not found")

        prompts = [e.content for e in entries if isinstance(e, Prompt)]
        system_prompt = build_system_prompt(self._settings, prompts[0] if prompts else None)
        messages = entries_to_messages(system_prompt, entries)
        logger.debug("Replaying C%d with %d messages", conversation_id, len(messages))

        turn = await self._client.send(messages, [])
        if turn is None or not turn.content:
            logger.error("No response from model during replay")
            raise ModelUnavailableError(f"No response from model while replaying C{conversation_id}")
        return turn.content
