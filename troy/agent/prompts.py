"""System prompt assembly for the trusted agent.

The prompt is rebuilt every turn from:
1. the base instructions
2. every rules/*.md file (NOTES.md included), sorted by name
3. skills/*.md files whose name words appear in the prompt's first sentence
4. today's date and the current and next week
5. the current user's name, when known
"""

from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path

from troy.config import Settings
from troy.tools.dates import week_context

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = """\
You are Troy, a personal assistant with access to the user's notes and calendar.

- Be concise and direct.
- When the user asks you to remember something, save it with append_note. Use \
edit_note to correct or remove outdated notes.
- Use compute_date_range for any date arithmetic instead of working it out yourself.
- Anything that needs the internet (searching, reading web pages) must go through \
delegate_to_untrusted. Give the subagent a self-contained task: it cannot see the \
notes, the calendar or this conversation.
- Never pass private information from the notes or calendar to the subagent unless \
the user asked for it."""

_FIRST_SENTENCE_RE = re.compile(r"^[^.!?]*[.!?]?")


def initial_sentence(prompt: str) -> str:
    """Lower-cased text up to and including the first . ! or ?"""
    match = _FIRST_SENTENCE_RE.match(prompt)
    return (match.group(0) if match else prompt).lower()


def _skill_words(path: Path) -> list[str]:
    name = re.sub(r"[-_]", " ", path.stem).lower()
    return [w for w in name.split() if len(w) > 2]


def load_matching_skills(skills_dir: Path, prompt: str) -> list[str]:
    """Contents of the skill files whose name words occur in the first sentence."""
    if not skills_dir.is_dir():
        return []
    sentence = initial_sentence(prompt)
    return [
        path.read_text(encoding="utf-8")
        for path in sorted(skills_dir.glob("*.md"))
        if any(word in sentence for word in _skill_words(path))
    ]


def _load_rules(rules_dir: Path) -> list[str]:
    if not rules_dir.is_dir():
        return []
    return [path.read_text(encoding="utf-8") for path in sorted(rules_dir.glob("*.md"))]


def build_system_prompt(
    settings: Settings,
    prompt: str | None = None,
    today: date | None = None,
    base: str = DEFAULT_SYSTEM_PROMPT,
) -> str:
    parts = [base]

    rules = _load_rules(settings.rules_dir)
    parts.extend(rules)

    skills = load_matching_skills(settings.skills_dir, prompt) if prompt else []
    parts.extend(skills)
    logger.debug("Loaded %d rule(s) and %d skill(s)", len(rules), len(skills))

    parts.append(week_context(today))
    system_prompt = "\n\n".join(parts)

    if settings.user_name:
        system_prompt += f"\nThe current user's name is {settings.user_name}."
    return system_prompt
