# streaming.py
# Phase state machine for one request of the turn loop.
#
# The agent reports what happened (text arrived, a turn finished with or
# without tools, tools started/finished); TurnStream decides which events the
# observer sees and when. Transitions outside TRANSITIONS raise RuntimeError.
#
#   awaiting_model --text--> thinking --tools--> reasoning --> executing_tools
#        |                      |                                 |     ^
#        |                      +--no tools--> done               v     |
#        +--no text, no tools--> done                        summarizing
#                                                                 |
#                                                   no tools --> done

import logging
import time
from enum import Enum

from buildloop.config import AgentSettings
from buildloop.events import (
    EventSink,
    PhaseChanged,
    ReasoningDelta,
    RequestComplete,
    TextDelta,
    ThinkingComplete,
)
from buildloop.models import Phase, Usage

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    THINKING = "thinking"
    REASONING = "reasoning"
    EXECUTING_TOOLS = "executing_tools"
    SUMMARIZING = "summarizing"
    DONE = "done"


TRANSITIONS: dict[LoopState, frozenset[LoopState]] = {
    LoopState.AWAITING_MODEL: frozenset({LoopState.THINKING, LoopState.EXECUTING_TOOLS, LoopState.DONE}),
    LoopState.THINKING: frozenset({LoopState.REASONING, LoopState.DONE}),
    LoopState.REASONING: frozenset({LoopState.EXECUTING_TOOLS}),
    LoopState.EXECUTING_TOOLS: frozenset({LoopState.SUMMARIZING, LoopState.DONE}),
    LoopState.SUMMARIZING: frozenset({LoopState.EXECUTING_TOOLS, LoopState.DONE}),
    LoopState.DONE: frozenset(),
}


def _null_sink(event) -> None:
    return None


class TurnStream:
    """
    Buffers model text per phase and paces it out to the sink.

    One instance per request. Never shared between requests.
    """

    def __init__(self, settings: AgentSettings, sink: EventSink | None = None) -> None:
        self._settings = settings
        self._sink: EventSink = sink or _null_sink
        self._state = LoopState.AWAITING_MODEL
        self._buffer = ""
        self._thinking_started: float | None = None

    @property
    def state(self) -> LoopState:
        return self._state

    def emit(self, event) -> None:
        self._sink(event)

    def _move(self, target: LoopState) -> None:
        if target not in TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal loop transition {self._state.value} -> {target.value}")
        logger.debug("Loop state %s -> %s", self._state.value, target.value)
        self._state = target

    def _phase(self, phase: Phase) -> None:
        self.emit(PhaseChanged(phase=phase))

    def pause(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def _chunked(self, text: str, event_type) -> None:
        size = self._settings.reasoning_chunk_size
        for i in range(0, len(text), size):
            self.emit(event_type(text=text[i : i + size]))
            self.pause(self._settings.reasoning_chunk_delay)

    # -- model turn ---------------------------------------------------------

    def on_text(self, text: str) -> None:
        """Delta callback handed to the model client."""
        if not text:
            return
        if self._state is LoopState.AWAITING_MODEL:
            self._move(LoopState.THINKING)
            self._phase(Phase.THINKING)
            self._thinking_started = time.monotonic()
            self._buffer += text
        elif self._state in (LoopState.THINKING, LoopState.SUMMARIZING):
            self._buffer += text
        else:
            self.emit(TextDelta(text=text))

    def finish_turn(self, has_tools: bool) -> None:
        """Called once the model's response for this turn is complete."""
        buffered, self._buffer = self._buffer, ""

        if self._state is LoopState.THINKING:
            if has_tools:
                elapsed = time.monotonic() - (self._thinking_started or time.monotonic())
                self.emit(ThinkingComplete(duration_seconds=round(elapsed)))
                self.pause(self._settings.thinking_complete_pause)
                self._move(LoopState.REASONING)
                self._phase(Phase.REASONING)
                self._chunked(buffered, ReasoningDelta)
            else:
                if buffered:
                    self.emit(TextDelta(text=buffered))
                self._move(LoopState.DONE)
            return

        if self._state is LoopState.SUMMARIZING:
            if has_tools:
                if buffered:
                    logger.debug("Dropping %d chars of narration from a tool-using summary turn", len(buffered))
                return
            if buffered:
                self._phase(Phase.BUILDING)
                self._chunked(buffered, TextDelta)
            self._move(LoopState.DONE)
            return

        if self._state is LoopState.AWAITING_MODEL and not has_tools:
            self._move(LoopState.DONE)

    # -- tools --------------------------------------------------------------

    def start_tools(self) -> None:
        self.pause(self._settings.code_writing_pause)
        self._phase(Phase.CODE_WRITING)
        self._move(LoopState.EXECUTING_TOOLS)

    def tools_done(self) -> None:
        self._move(LoopState.SUMMARIZING)

    # -- end of request -----------------------------------------------------

    def complete(self, usage: Usage) -> None:
        self._phase(Phase.COMPLETED)
        self.emit(RequestComplete(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens))
