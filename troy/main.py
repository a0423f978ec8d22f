"""Troy entry point.

Initializes all components and runs one command:
  Settings -> Database -> ChatClient -> ToolRegistries -> AgentRunner

Commands:
  troy run -p PROMPT     one turn, reply printed with its [C<id>] reference
  troy show ID           print a stored conversation log verbatim
  troy replay ID         regenerate a stored conversation's answer
  troy discord           run the Discord bot
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys

import httpx

from troy.agent.dispatch import ToolRegistry, Trust
from troy.agent.loop import ModelUnavailableError
from troy.agent.runner import AgentRunner, ConversationNotFound
from troy.agent.transport import ChatClient, TransportError
from troy.config import Settings
from troy.storage.database import Database
from troy.storage.history import DEFAULT_SOURCE, HistoryStore
from troy.tools.calendar import GoogleCalendar, register_calendar_tools
from troy.tools.dates import register_date_tools
from troy.tools.notes import register_note_tools
from troy.tools.weather import register_weather_tools
from troy.tools.web import register_web_tools

logger = logging.getLogger(__name__)

_CONVERSATION_ID_RE = re.compile(r"^[Cc]?(\d+)$")
# Largest value a SQLite INTEGER primary key can hold
_MAX_CONVERSATION_ID = 2**63 - 1


def parse_conversation_id(value: str) -> int:
    """Accept "C12" or "12"; raise ValueError otherwise."""
    match = _CONVERSATION_ID_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid conversation id: {value!r} (expected e.g. C12)")
    conversation_id = int(match.group(1))
    if conversation_id > _MAX_CONVERSATION_ID:
        raise ValueError(f"Invalid conversation id: {value!r} (out of range)")
    return conversation_id


def ensure_data_dir(settings: Settings) -> None:
    settings.rules_dir.mkdir(parents=True, exist_ok=True)
    settings.skills_dir.mkdir(parents=True, exist_ok=True)


def build_registries(
    settings: Settings,
    http_client: httpx.AsyncClient,
    calendar: GoogleCalendar,
) -> tuple[ToolRegistry, ToolRegistry]:
    """Create the trusted and untrusted registries; get_weather is in both."""
    trusted = ToolRegistry(Trust.TRUSTED)
    register_note_tools(trusted, settings)
    register_weather_tools(trusted, http_client)
    register_calendar_tools(trusted, calendar)
    register_date_tools(trusted)

    untrusted = ToolRegistry(Trust.UNTRUSTED)
    register_weather_tools(untrusted, http_client)
    register_web_tools(untrusted, settings, http_client)

    return trusted, untrusted


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    1. Data directory (rules/, skills/)
    2. Database - tables created on connect
    3. ChatClient - model transport with API credentials
    4. Tool httpx client - separate, no credentials
    5. Registries and AgentRunner
    """
    ensure_data_dir(settings)

    database = Database(settings)
    await database.connect()
    store = HistoryStore(database)

    client = ChatClient(settings)
    await client.start()

    tool_http = httpx.AsyncClient(
        timeout=httpx.Timeout(connect=10, read=30, write=10, pool=10),
        limits=httpx.Limits(max_connections=5, max_keepalive_connections=2),
    )
    calendar = GoogleCalendar(settings)
    trusted, untrusted = build_registries(settings, tool_http, calendar)

    runner = AgentRunner(settings, client, store, trusted, untrusted)

    return {
        "database": database,
        "store": store,
        "client": client,
        "tool_http": tool_http,
        "trusted_registry": trusted,
        "untrusted_registry": untrusted,
        "runner": runner,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    tool_http = components.get("tool_http")
    if tool_http:
        await tool_http.aclose()

    client = components.get("client")
    if client:
        await client.close()

    database = components.get("database")
    if database:
        await database.disconnect()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(settings: Settings, prompt: str) -> int:
    components = await create_components(settings)
    try:
        result = await components["runner"].run_turn(prompt, DEFAULT_SOURCE)
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await shutdown_components(components)

    if not result.ok or not result.text:
        print(result.text or "No response content from model.", file=sys.stderr)
        return 1
    print(result.reply)
    return 0


async def _show(settings: Settings, raw_id: str) -> int:
    try:
        conversation_id = parse_conversation_id(raw_id)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    database = Database(settings)
    await database.connect()
    try:
        record = await HistoryStore(database).get(conversation_id)
    finally:
        await database.disconnect()

    if record is None:
        print(f"Conversation C{conversation_id} not found", file=sys.stderr)
        return 1
    sys.stdout.write(record.content)
    return 0


async def _replay(settings: Settings, raw_id: str) -> int:
    try:
        conversation_id = parse_conversation_id(raw_id)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    components = await create_components(settings)
    try:
        text = await components["runner"].replay(conversation_id)
    except (ConversationNotFound, ModelUnavailableError, TransportError) as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        await shutdown_components(components)

    print(text)
    return 0


async def _discord(settings: Settings) -> int:
    if not settings.discord_bot_token:
        print("Error: DISCORD_BOT_TOKEN not set", file=sys.stderr)
        return 1
    if not settings.allowed_discord_users:
        print("Error: DISCORD_ALLOWLIST not set", file=sys.stderr)
        return 1

    from troy.discord_bot import TroyDiscordBot

    components = await create_components(settings)
    bot = TroyDiscordBot(components["runner"], settings.allowed_discord_users)
    try:
        logger.info("Starting Discord bot")
        await bot.start(settings.discord_bot_token)
    finally:
        await bot.close()
        await shutdown_components(components)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="troy", description="Agentic helper bot powered by OpenRouter")
    parser.add_argument(
        "-d", "--data-dir",
        help="data directory for rules, skills and history (default: ~/troy_data)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Send a prompt to the model")
    run.add_argument("-p", "--prompt", required=True, help="the prompt to send to the model")

    show = subparsers.add_parser("show", help="Print a stored conversation log")
    show.add_argument("conversation_id", help="conversation reference, e.g. C12")

    replay = subparsers.add_parser("replay", help="Regenerate a stored conversation's answer")
    replay.add_argument("conversation_id", help="conversation reference, e.g. C12")

    subparsers.add_parser("discord", help="Run Troy as a Discord bot")
    return parser


def cli(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    """Parse arguments, configure logging and run the command. Returns the exit code."""
    args = build_parser().parse_args(argv)

    settings = settings or Settings()
    if args.data_dir:
        settings = settings.model_copy(update={"data_dir": args.data_dir})

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "run":
        return asyncio.run(_run(settings, args.prompt))
    if args.command == "show":
        return asyncio.run(_show(settings, args.conversation_id))
    if args.command == "replay":
        return asyncio.run(_replay(settings, args.conversation_id))
    return asyncio.run(_discord(settings))


def main() -> None:
    """Entry point."""
    sys.exit(cli())


if __name__ == "__main__":
    main()
