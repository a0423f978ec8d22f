"""Conversation history store.

Each completed turn is stored as one row holding the formatted log. The
row id doubles as the user-facing conversation reference (C<id>).
`source` partitions independent conversations (one per Discord channel,
one flat stream for the CLI); the last few exchanges of a source seed the
next turn in it.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import select

from troy.conversation.log import (
    ConversationEntry,
    Exchange,
    first_prompt,
    format_log,
    last_response,
    parse_log,
)
from troy.storage.database import Database
from troy.storage.models import ConversationRecord

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "cli"


class HistoryStore:
    """Append-only store of conversation logs."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def write_log(
        self,
        entries: list[ConversationEntry],
        source: str = DEFAULT_SOURCE,
        *,
        model: str = "",
        tools_used: list[str] | tuple[str, ...] = (),
        duration_ms: int = 0,
    ) -> int:
        """Persist a finished conversation and return its id."""
        record = ConversationRecord(
            source=source,
            model=model,
            prompt=first_prompt(entries),
            response=last_response(entries),
            content=format_log(entries),
            tools_used=json.dumps(list(tools_used)) if tools_used else None,
            duration_ms=duration_ms,
        )
        async with self._db.session() as session:
            session.add(record)
            await session.commit()
            conversation_id = record.id

        logger.debug("Stored conversation C%d (source=%s, %d entries)", conversation_id, source, len(entries))
        return conversation_id

    async def get(self, conversation_id: int) -> ConversationRecord | None:
        """Return the stored row, or None if the id is unknown."""
        async with self._db.session() as session:
            return await session.get(ConversationRecord, conversation_id)

    async def read_log(self, conversation_id: int) -> list[ConversationEntry] | None:
        """Return the parsed entries of a stored conversation, or None if unknown."""
        record = await self.get(conversation_id)
        if record is None:
            return None
        return parse_log(record.content)

    async def load_recent_history(self, source: str = DEFAULT_SOURCE, limit: int = 2) -> list[Exchange]:
        """Return the last `limit` exchanges for `source`, oldest first."""
        if limit <= 0:
            return []
        async with self._db.session() as session:
            result = await session.execute(
                select(ConversationRecord.prompt, ConversationRecord.response)
                .where(ConversationRecord.source == source)
                .order_by(ConversationRecord.id.desc())
                .limit(limit)
            )
            rows = result.all()
        return [Exchange(user=prompt, assistant=response) for prompt, response in reversed(rows)]
