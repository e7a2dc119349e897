"""Application settings loaded from environment variables."""

import os
import shlex
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Doris configuration. All values come from environment variables."""

    # Anthropic
    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-5-20250929")
    max_tokens: int = Field(default=1024)
    model_timeout_seconds: float = Field(default=60.0)
    model_max_attempts: int = Field(default=3)
    model_backoff_base: float = Field(default=0.5)

    # Orchestration
    max_tool_rounds: int = Field(default=5)
    assistant_name: str = Field(default="Doris")
    persona_path: Path | None = Field(default=None)
    timezone: str = Field(default="America/New_York")

    # Conversation
    conversation_window_size: int = Field(default=40)
    conversation_max_chars: int = Field(default=60000)
    session_summary_chars: int = Field(default=2000)
    session_persistence: bool = Field(default=True)
    default_session_id: str = Field(default="default")

    # Memory
    memory_prompt_limit: int = Field(default=50)

    # Database
    database_path: Path = Field(default=Path("data/doris.db"))

    # Speech synthesis (ElevenLabs, with optional local fallback)
    elevenlabs_api_key: str = Field(default="")
    elevenlabs_voice_id: str = Field(default="kdmDKE6EkgrWrrykO9Qt")
    elevenlabs_model_id: str = Field(default="eleven_turbo_v2_5")
    tts_timeout_seconds: float = Field(default=15.0)
    local_tts_command: str = Field(default="")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_local_tts_command(self) -> list[str]:
        """Split LOCAL_TTS_COMMAND into an argv list, honouring shell quoting."""
        if not self.local_tts_command.strip():
            return []
        return shlex.split(self.local_tts_command)


settings = Settings()
