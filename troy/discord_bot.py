"""Discord front end for Troy.

Answers direct messages and channel messages that mention the bot, from
allow-listed users only. Each channel keeps its own short history
(source "discord:<channel id>"). Turns are serialised with one lock so
NOTES.md and the history store see a single writer per process.

Usage:
    DISCORD_BOT_TOKEN=... DISCORD_ALLOWLIST=1234,5678 troy discord
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import discord

from troy.agent.runner import AgentRunner

logger = logging.getLogger(__name__)

# Max Discord message length
DISCORD_MAX_LEN = 2000

_MENTION_RE = re.compile(r"<@!?\d+>")


def split_message(text: str, limit: int = DISCORD_MAX_LEN) -> list[str]:
    """Split a reply into chunks of at most `limit` characters.

    Prefers the last newline before the limit, then the last space, and
    cuts hard only when neither exists.
    """
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break
        split_at = remaining.rfind("\n", 0, limit + 1)
        if split_at <= 0:
            split_at = remaining.rfind(" ", 0, limit + 1)
        if split_at <= 0:
            split_at = limit
        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()
    return chunks


class TroyDiscordBot:
    """Routes Discord messages to the AgentRunner and relays replies."""

    def __init__(
        self,
        runner: AgentRunner,
        allowed_users: set[str],
        client: discord.Client | None = None,
    ) -> None:
        self.runner = runner
        self.allowed_users = allowed_users
        self._lock = asyncio.Lock()

        if client is None:
            intents = discord.Intents.default()
            intents.message_content = True
            intents.dm_messages = True
            client = discord.Client(intents=intents)
        self._client = client
        self._client.event(self.on_ready)
        self._client.event(self.on_message)

    async def start(self, token: str) -> None:
        await self._client.start(token)

    async def close(self) -> None:
        """Cleanup."""
        if not self._client.is_closed():
            await self._client.close()

    async def on_ready(self) -> None:
        logger.info("Logged in as %s", self._client.user)

    def _should_handle(self, message: Any) -> bool:
        if message.author.bot:
            return False
        if str(message.author.id) not in self.allowed_users:
            return False
        if message.guild is None:
            return True
        me = self._client.user
        return me is not None and any(user.id == me.id for user in message.mentions)

    async def on_message(self, message: Any) -> None:
        try:
            if not self._should_handle(message):
                return
            await self.handle_message(message)
        except Exception:
            logger.exception("Unhandled error in message handler")

    async def handle_message(self, message: Any) -> None:
        """Run one turn for an accepted message and reply in its channel."""
        prompt = _MENTION_RE.sub("", message.content).strip()
        if not prompt:
            return

        if prompt.lower() == "ping":
            await message.reply("pong")
            return

        logger.info("Discord message from user %s", message.author.id)
        source = f"discord:{message.channel.id}"

        try:
            async with self._lock:
                result = await self.runner.run_turn(prompt, source)
            reply = result.reply if result.text else "Sorry, I didn't get a response."
        except Exception as e:
            logger.exception("Error handling Discord message")
            reply = f"Sorry, something went wrong: {type(e).__name__}: {e}"

        await self._send_long(message, reply)

    async def _send_long(self, message: Any, text: str) -> None:
        for chunk in split_message(text):
            await message.reply(chunk)
