"""Notes tools: append_note and edit_note over <data_dir>/rules/NOTES.md.

NOTES.md sits with the other rule files, so everything saved here is part
of the trusted system prompt on the next turn.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from troy.agent.dispatch import ToolRegistry
from troy.config import Settings

logger = logging.getLogger(__name__)

NOT_FOUND = "Error: old_text not found in NOTES.md."


def append_note(notes_path: Path, text: str) -> str:
    notes_path.parent.mkdir(parents=True, exist_ok=True)
    with notes_path.open("a", encoding="utf-8") as f:
        f.write(text + "\n")
    logger.info("Appended %d chars to %s", len(text), notes_path)
    return "Done."


def edit_note(notes_path: Path, old_text: str, new_text: str) -> str:
    """Replace the first occurrence of old_text."""
    current = notes_path.read_text(encoding="utf-8") if notes_path.exists() else ""
    if old_text not in current:
        return NOT_FOUND
    notes_path.write_text(current.replace(old_text, new_text, 1), encoding="utf-8")
    logger.info("Edited %s", notes_path)
    return "Done."


_APPEND_NOTE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Append text to the user's NOTES.md file. Use this to save information the user asks you to remember."
    ),
    "properties": {
        "text": {"type": "string", "description": "The text to append to NOTES.md"},
    },
    "required": ["text"],
}

_EDIT_NOTE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Edit the user's NOTES.md file by replacing existing text with new text. "
        "Use this to update, correct, or remove outdated notes."
    ),
    "properties": {
        "old_text": {"type": "string", "description": "The existing text in NOTES.md to find and replace"},
        "new_text": {
            "type": "string",
            "description": "The replacement text. Use an empty string to delete the old text.",
        },
    },
    "required": ["old_text", "new_text"],
}


def register_note_tools(registry: ToolRegistry, settings: Settings) -> None:
    """Register append_note and edit_note, bound to the configured notes file."""
    notes_path = settings.notes_path

    async def _append(text: str) -> str:
        return await asyncio.to_thread(append_note, notes_path, text)

    async def _edit(old_text: str, new_text: str) -> str:
        return await asyncio.to_thread(edit_note, notes_path, old_text, new_text)

    registry.register("append_note", _append, _APPEND_NOTE_SCHEMA)
    registry.register("edit_note", _edit, _EDIT_NOTE_SCHEMA)
