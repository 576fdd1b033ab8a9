# events.py
# Progress events the turn loop emits for a streaming observer.
#
# The loop only ever calls a single sink with one of the event models below.
# Sinks are fire-and-forget: their return value is ignored, and the loop
# behaves identically when no sink is supplied.

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal, Union

from pydantic import BaseModel

from buildloop.models import Phase

FileOperationState = Literal["creating", "editing", "created", "edited"]


class TextDelta(BaseModel):
    kind: Literal["text_delta"] = "text_delta"
    text: str


class ReasoningDelta(BaseModel):
    kind: Literal["reasoning_delta"] = "reasoning_delta"
    text: str


class PhaseChanged(BaseModel):
    kind: Literal["phase"] = "phase"
    phase: Phase


class ThinkingComplete(BaseModel):
    kind: Literal["thinking_complete"] = "thinking_complete"
    duration_seconds: int


class FileOperation(BaseModel):
    kind: Literal["file_operation"] = "file_operation"
    state: FileOperationState
    path: str


class ToolStarted(BaseModel):
    kind: Literal["tool_start"] = "tool_start"
    name: str
    tool_use_id: str
    path: str | None = None


class ToolFinished(BaseModel):
    kind: Literal["tool_end"] = "tool_end"
    name: str
    tool_use_id: str
    path: str | None = None
    is_error: bool = False


class RequestComplete(BaseModel):
    kind: Literal["complete"] = "complete"
    input_tokens: int
    output_tokens: int


class MessagePersisted(BaseModel):
    kind: Literal["message_persisted"] = "message_persisted"
    message_id: str


AgentEvent = Union[
    TextDelta,
    ReasoningDelta,
    PhaseChanged,
    ThinkingComplete,
    FileOperation,
    ToolStarted,
    ToolFinished,
    RequestComplete,
    MessagePersisted,
]

EventSink = Callable[[AgentEvent], None]


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@dataclass
class EventRecorder:
    """Collects every event in order. Handy for tests and replay."""

    events: list[AgentEvent] = field(default_factory=list)

    def __call__(self, event: AgentEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[AgentEvent]:
        return [e for e in self.events if e.kind == kind]

    def phases(self) -> list[Phase]:
        return [e.phase for e in self.events if isinstance(e, PhaseChanged)]

    def text(self) -> str:
        return "".join(e.text for e in self.events if isinstance(e, TextDelta))

    def reasoning(self) -> str:
        return "".join(e.text for e in self.events if isinstance(e, ReasoningDelta))


@dataclass
class CallbackObserver:
    """
    Adapts the event stream onto individual optional handlers.

    Any handler may be left as None; the matching events are dropped.
    """

    on_delta: Callable[[str], None] | None = None
    on_reasoning: Callable[[str], None] | None = None
    on_phase: Callable[[Phase], None] | None = None
    on_thinking_complete: Callable[[int], None] | None = None
    on_file_operation: Callable[[FileOperationState, str], None] | None = None
    on_tool_start: Callable[[ToolStarted], None] | None = None
    on_tool_end: Callable[[ToolFinished], None] | None = None
    on_complete: Callable[[int, int], None] | None = None
    on_message_persisted: Callable[[str], None] | None = None

    def __call__(self, event: AgentEvent) -> None:
        if isinstance(event, TextDelta) and self.on_delta:
            self.on_delta(event.text)
        elif isinstance(event, ReasoningDelta) and self.on_reasoning:
            self.on_reasoning(event.text)
        elif isinstance(event, PhaseChanged) and self.on_phase:
            self.on_phase(event.phase)
        elif isinstance(event, ThinkingComplete) and self.on_thinking_complete:
            self.on_thinking_complete(event.duration_seconds)
        elif isinstance(event, FileOperation) and self.on_file_operation:
            self.on_file_operation(event.state, event.path)
        elif isinstance(event, ToolStarted) and self.on_tool_start:
            self.on_tool_start(event)
        elif isinstance(event, ToolFinished) and self.on_tool_end:
            self.on_tool_end(event)
        elif isinstance(event, RequestComplete) and self.on_complete:
            self.on_complete(event.input_tokens, event.output_tokens)
        elif isinstance(event, MessagePersisted) and self.on_message_persisted:
            self.on_message_persisted(event.message_id)
