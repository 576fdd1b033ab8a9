# config.py
# Runtime settings for the agent. Values come from keyword arguments in code
# and tests, or from BUILDLOOP_* environment variables (and a .env file) via
# AgentSettings.from_env().
#
# Every pacing delay lives here. The loop never sleeps for a literal duration.

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from buildloop.models import ConfigError

DEFAULT_MODEL = "anthropic/claude-sonnet-4.5"
DEFAULT_API_BASE_URL = "https://openrouter.ai/api/v1"

# Hard upper bound on model round-trips per request. Reaching it ends the
# request with whatever text exists; it is a safety valve, not an error.
MAX_AGENT_TURNS = 20

REASONING_STREAM_CHUNK_SIZE = 10
REASONING_STREAM_DELAY_S = 0.02
THINKING_COMPLETE_PAUSE_S = 0.8
CODE_WRITING_PAUSE_S = 0.6
FILE_OP_START_PAUSE_S = 0.2
FILE_OP_DONE_PAUSE_S = 0.3


class WebSearchConfig(BaseModel):
    """Provider-side web search, forwarded to the model client untouched."""

    enabled: bool = False
    max_uses: int | None = None
    allowed_domains: list[str] = Field(default_factory=list)
    blocked_domains: list[str] = Field(default_factory=list)


class AgentSettings(BaseModel):
    """All tunables of one agent instance."""

    model: str = DEFAULT_MODEL
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str | None = None
    max_tokens: int = 8192
    temperature: float = 0.2

    max_turns: int = Field(default=MAX_AGENT_TURNS, ge=1)

    reasoning_chunk_size: int = Field(default=REASONING_STREAM_CHUNK_SIZE, ge=1)
    reasoning_chunk_delay: float = Field(default=REASONING_STREAM_DELAY_S, ge=0)
    thinking_complete_pause: float = Field(default=THINKING_COMPLETE_PAUSE_S, ge=0)
    code_writing_pause: float = Field(default=CODE_WRITING_PAUSE_S, ge=0)
    file_op_start_pause: float = Field(default=FILE_OP_START_PAUSE_S, ge=0)
    file_op_done_pause: float = Field(default=FILE_OP_DONE_PAUSE_S, ge=0)

    workspace: Path = Field(default_factory=Path.cwd)
    allowed_paths: list[str] = Field(default_factory=lambda: ["**"])
    denied_paths: list[str] = Field(
        default_factory=lambda: [".git/**", ".env", "node_modules/**"]
    )

    dry_run: bool = False
    web_search: WebSearchConfig = Field(default_factory=WebSearchConfig)
    transcript_dir: Path | None = None
    log_level: str = "INFO"

    def without_pacing(self) -> "AgentSettings":
        """Copy with every UI pacing delay set to zero."""
        return self.model_copy(
            update={
                "reasoning_chunk_delay": 0.0,
                "thinking_complete_pause": 0.0,
                "code_writing_pause": 0.0,
                "file_op_start_pause": 0.0,
                "file_op_done_pause": 0.0,
            }
        )

    @classmethod
    def from_env(cls, **overrides) -> "AgentSettings":
        load_dotenv()

        values: dict = {}
        _set_str(values, "model", "BUILDLOOP_MODEL")
        _set_str(values, "api_base_url", "BUILDLOOP_API_BASE_URL")
        api_key = os.getenv("BUILDLOOP_API_KEY") or os.getenv("OPENROUTER_API_KEY")
        if api_key:
            values["api_key"] = api_key
        _set_number(values, "max_tokens", "BUILDLOOP_MAX_TOKENS", int)
        _set_number(values, "temperature", "BUILDLOOP_TEMPERATURE", float)
        _set_number(values, "max_turns", "BUILDLOOP_MAX_TURNS", int)
        _set_number(values, "reasoning_chunk_size", "BUILDLOOP_REASONING_CHUNK_SIZE", int)
        _set_number(values, "reasoning_chunk_delay", "BUILDLOOP_REASONING_CHUNK_DELAY", float)
        _set_str(values, "workspace", "BUILDLOOP_WORKSPACE")
        _set_list(values, "allowed_paths", "BUILDLOOP_ALLOWED_PATHS")
        _set_list(values, "denied_paths", "BUILDLOOP_DENIED_PATHS")
        _set_str(values, "transcript_dir", "BUILDLOOP_TRANSCRIPT_DIR")
        _set_str(values, "log_level", "BUILDLOOP_LOG_LEVEL")

        dry_run = os.getenv("BUILDLOOP_DRY_RUN")
        if dry_run is not None:
            values["dry_run"] = _to_bool(dry_run)

        if os.getenv("BUILDLOOP_WEB_SEARCH") is not None:
            web_search = {"enabled": _to_bool(os.environ["BUILDLOOP_WEB_SEARCH"])}
            _set_number(web_search, "max_uses", "BUILDLOOP_WEB_SEARCH_MAX_USES", int)
            values["web_search"] = WebSearchConfig(**web_search)

        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def _to_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _set_str(values: dict, key: str, env_name: str) -> None:
    raw = os.getenv(env_name)
    if raw:
        values[key] = raw.strip()


def _set_list(values: dict, key: str, env_name: str) -> None:
    raw = os.getenv(env_name)
    if raw is not None:
        values[key] = [item.strip() for item in raw.split(",") if item.strip()]


def _set_number(values: dict, key: str, env_name: str, cast: type) -> None:
    raw = os.getenv(env_name)
    if raw is None or not raw.strip():
        return
    try:
        values[key] = cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{env_name} must be a {cast.__name__}, got {raw!r}") from exc
