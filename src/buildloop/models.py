# models.py
# Data contracts for the agent turn loop.
# Pure schema and validation, no business logic.

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BuildloopError(Exception):
    """Base class for every error raised by this package."""


class HistoryValidationError(BuildloopError):
    """Raised when conversation history violates the chat API's shape rules. Always fatal."""

    def __init__(self, message: str, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class ConfigError(BuildloopError):
    """Raised when settings cannot be parsed from the environment."""


class PathNotAllowedError(BuildloopError):
    """Raised by the sandbox guard when a tool targets a path outside the workspace rules."""


class ToolInputError(BuildloopError):
    """Raised by an executor when its input is missing or malformed."""


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A model-issued request to run a client-side tool."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """Outcome of a tool invocation, correlated by tool_use_id."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str = ""
    is_error: bool = False
    metadata: dict[str, Any] | None = Field(
        default=None, description="Structured side data (e.g. path written). Never sent to the model."
    )


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    thinking: str
    signature: str | None = None


class RedactedThinkingBlock(BaseModel):
    type: Literal["redacted_thinking"] = "redacted_thinking"
    data: str


class ServerToolUseBlock(BaseModel):
    """A tool invocation the model provider executed on its own side (web search)."""

    type: Literal["server_tool_use"] = "server_tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class WebSearchToolResultBlock(BaseModel):
    type: Literal["web_search_tool_result"] = "web_search_tool_result"
    tool_use_id: str
    content: Any = None


ContentBlock = Annotated[
    Union[
        TextBlock,
        ToolUseBlock,
        ToolResultBlock,
        ThinkingBlock,
        RedactedThinkingBlock,
        ServerToolUseBlock,
        WebSearchToolResultBlock,
    ],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """One entry of the conversation history."""

    role: Literal["user", "assistant"]
    content: list[ContentBlock] = Field(default_factory=list)

    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


# ---------------------------------------------------------------------------
# Model client contract
# ---------------------------------------------------------------------------


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ModelResponse(BaseModel):
    """What one model round-trip hands back to the loop."""

    content: list[ContentBlock] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    stop_reason: str | None = None


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------


class ToolOutcome(BaseModel):
    """Return value of a single executor call."""

    content: str = ""
    is_error: bool = False
    metadata: dict[str, Any] | None = None


class ExecutionContext(BaseModel):
    """Sandboxing and service-handle state shared by every executor in a session."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    workspace_root: Path
    allowed_paths: list[str] = Field(default_factory=lambda: ["**"])
    denied_paths: list[str] = Field(default_factory=list)
    db: Any = None
    file_store: Any = None
    app_id: str | None = None
    session_id: str | None = None


# ---------------------------------------------------------------------------
# Phases and transcripts
# ---------------------------------------------------------------------------


class Phase(str, Enum):
    THINKING = "thinking"
    REASONING = "reasoning"
    CODE_WRITING = "code-writing"
    BUILDING = "building"
    COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    role: Literal["user", "assistant"]
    content: Any
    metadata: dict[str, Any] | None = None


class Transcript(BaseModel):
    """Append-only audit record of one user request."""

    id: str
    started_at: datetime = Field(default_factory=_utcnow)
    entries: list[TranscriptEntry] = Field(default_factory=list)
    final_response: str | None = None
    ended_at: datetime | None = None
