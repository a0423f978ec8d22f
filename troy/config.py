"""Settings via pydantic-settings with TROY_ env prefix.

Third-party credentials use validation_alias to read the same unprefixed
env vars the upstream services document (OPENROUTER_API_KEY,
GOOGLE_CLIENT_ID, DISCORD_BOT_TOKEN, ...), so one .env file drives both
the CLI and the Discord bot.
"""

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TROY_", env_file=".env", populate_by_name=True)

    # LLM (OpenRouter chat completions)
    openrouter_api_key: str = Field("", validation_alias="OPENROUTER_API_KEY")
    model: str = Field("anthropic/claude-opus-4.6", validation_alias="OPENROUTER_MODEL")
    api_base_url: str = "https://openrouter.ai/api/v1"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Agent loop
    max_turns: int = 20  # Max model calls per loop before the turn is stopped
    history_exchanges: int = 2  # Exchanges replayed into the next turn

    # Storage
    data_dir: str = str(Path.home() / "troy_data")
    database_url: str = ""
    log_level: str = "info"

    # Web tools
    brave_search_api_key: str = Field("", validation_alias="BRAVE_SEARCH_API_KEY")
    web_fetch_max_chars: int = 10000
    web_search_daily_limit: int = 100

    # Google Calendar
    google_client_id: str = Field("", validation_alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field("", validation_alias="GOOGLE_CLIENT_SECRET")
    google_refresh_token: str = Field("", validation_alias="GOOGLE_REFRESH_TOKEN")
    google_calendar_id: str = Field("primary", validation_alias="GOOGLE_CALENDAR_ID")
    calendar_allow_writes: bool = Field(False, validation_alias="GOOGLE_CALENDAR_ALLOW_WRITES")
    display_timezone: str = "Europe/London"

    # Discord
    discord_bot_token: str = Field("", validation_alias="DISCORD_BOT_TOKEN")
    discord_allowlist: str = Field("", validation_alias="DISCORD_ALLOWLIST")

    # Shown to the model as the current user's name
    user_name: str = Field("", validation_alias="USER")

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.history_exchanges < 0:
            raise ValueError("history_exchanges must be >= 0")
        return self

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{Path(self.data_dir) / 'troy.db'}"

    @property
    def rules_dir(self) -> Path:
        return Path(self.data_dir) / "rules"

    @property
    def skills_dir(self) -> Path:
        return Path(self.data_dir) / "skills"

    @property
    def notes_path(self) -> Path:
        return self.rules_dir / "NOTES.md"

    @property
    def allowed_discord_users(self) -> set[str]:
        return {uid.strip() for uid in self.discord_allowlist.split(",") if uid.strip()}
