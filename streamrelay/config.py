"""Settings via pydantic-settings with RELAY_ env prefix.

Credentials and the database URL use validation_alias to read the same
unprefixed env vars the webhook deployment already sets (TELEGRAM_BOT_TOKEN,
ANTHROPIC_API_KEY, ...), so one .env file drives every process.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_", env_file=".env", extra="ignore")

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"

    # Telegram: unprefixed aliases match the existing deployment
    telegram_bot_token: str = Field("", validation_alias="TELEGRAM_BOT_TOKEN")
    telegram_notify_token: str = Field("", validation_alias="TELEGRAM_NOTIFY_TOKEN")
    telegram_notify_chat_id: str = Field("", validation_alias="TELEGRAM_NOTIFY_CHAT_ID")
    telegram_api_base: str = "https://api.telegram.org"
    telegram_timeout: float = 15.0
    message_max_length: int = 4096

    # Persistence
    db_url: str = Field("sqlite+aiosqlite:///chat_history.sqlite", validation_alias="DB_URL")
    db_pool_size: int = 10
    db_max_overflow: int = 5
    history_limit: int = 3

    # LLM
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    api_base_url: str = "https://api.anthropic.com"
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds
    model: str = "claude-sonnet-4-5-20250514"
    max_tokens: int = 2048
    system_prompt: str = "You are a helpful assistant chatting in Telegram. Answer concisely."

    # Flush policy
    flush_debounce_ms: int = 500
    flush_length_every: int = 50
    flush_natural_breaks: bool = True
    completion_marker: str = "✅"

    # Turn lifecycle
    shutdown_grace_seconds: float = 10.0

    @model_validator(mode="after")
    def _validate_flush(self) -> "Settings":
        if self.flush_debounce_ms < 0:
            raise ValueError("flush_debounce_ms must be >= 0")
        if self.flush_length_every <= 0:
            raise ValueError("flush_length_every must be > 0")
        if self.message_max_length <= 0:
            raise ValueError("message_max_length must be > 0")
        return self

    @property
    def uses_sqlite(self) -> bool:
        return self.db_url.startswith("sqlite")
