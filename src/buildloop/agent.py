# agent.py
# The turn loop.
#
# One call to process_request() drives model round-trips until a turn comes
# back without client-side tool calls, or until settings.max_turns is hit.
# Each turn:
#
#   validate history -> model -> enforce read-before-write -> store turn
#   -> run tools one by one -> missing-reference check -> store results
#
# Which events the observer sees, and when, is decided by TurnStream.
# Model errors and history violations propagate; tool failures never do.

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from buildloop.config import AgentSettings
from buildloop.enforcer import enforce_read_before_write
from buildloop.events import EventSink, FileOperation, ToolFinished, ToolStarted
from buildloop.file_tools import CREATE_TOOL, WRITE_TOOLS, default_executors
from buildloop.llm import EMPTY_TURN_PLACEHOLDER, ModelClient, OpenAIModelClient
from buildloop.models import (
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from buildloop.references import find_missing_references, format_warning
from buildloop.streaming import TurnStream
from buildloop.tools import ToolExecutor, ToolRunner
from buildloop.transcript import TranscriptRecorder
from buildloop.validation import validate_history
from buildloop.verifier import StaticVerifier, Verifier, change_summary

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a coding agent working inside a project workspace. You change the
project only through the tools you are given.

Tools:
- either-view: read a file before you change it.
- either-write: create a NEW file. It fails if the file already exists.
- either-line-replace: edit lines of an EXISTING file. Pass a `needle` with
  the exact text you expect in that range.
- either-search-files: find usages before you rename or remove anything.

Rules:
- Read before you edit. Edits to files you have not read this turn get a read
  injected in front of them.
- Every file you reference (scripts, stylesheets, imports) must exist or be
  created in the same request.
- Tool results may carry warnings. Act on them in your next response.
- When the work is done, reply with a short summary and no tool calls.
"""


def _path_of(tool_use: ToolUseBlock) -> str | None:
    path = tool_use.input.get("path")
    return path if isinstance(path, str) and path else None


class Agent:
    """
    Coding agent for a single session.

    Owns the conversation history, the tool runner (sandbox context and
    metrics) and the transcript recorder. Never share one instance between
    concurrent requests.

    Example:
        agent = Agent(AgentSettings.from_env())
        answer = agent.process_request("Build a todo app", on_event=ConsoleObserver())
    """

    def __init__(
        self,
        settings: AgentSettings,
        executors: Iterable[ToolExecutor] | None = None,
        model_client: ModelClient | None = None,
        verifier: Verifier | None = None,
        recorder: TranscriptRecorder | None = None,
        system_prompt_prefix: str = "",
    ) -> None:
        self._settings = settings
        self._runner = ToolRunner(
            executors if executors is not None else default_executors(),
            settings.workspace,
            allowed_paths=settings.allowed_paths,
            denied_paths=settings.denied_paths,
        )
        self._model = model_client or OpenAIModelClient.from_settings(settings)
        self._verifier = verifier or StaticVerifier(settings.workspace)
        self._recorder = recorder or TranscriptRecorder(settings.transcript_dir)
        self._system_prompt_prefix = system_prompt_prefix
        self._history: list[Message] = []

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def settings(self) -> AgentSettings:
        return self._settings

    @property
    def runner(self) -> ToolRunner:
        return self._runner

    @property
    def history(self) -> list[Message]:
        return list(self._history)

    @property
    def system_prompt(self) -> str:
        if self._system_prompt_prefix:
            return f"{self._system_prompt_prefix}\n\n---\n\n{SYSTEM_PROMPT}"
        return SYSTEM_PROMPT

    def set_system_prompt_prefix(self, prefix: str) -> None:
        self._system_prompt_prefix = prefix

    def load_conversation_history(self, messages: Sequence[Message | Mapping[str, Any]]) -> None:
        """Replace the history. Shape violations raise HistoryValidationError."""
        validate_history(messages)
        self._history = [m if isinstance(m, Message) else Message.model_validate(m) for m in messages]

    def reset(self) -> None:
        self._history = []
        self._runner.clear_cache()

    def set_context(
        self,
        *,
        file_store: Any = None,
        app_id: str | None = None,
        session_id: str | None = None,
        db: Any = None,
    ) -> None:
        self._runner.set_context(file_store=file_store, app_id=app_id, session_id=session_id, db=db)

    def metrics_summary(self) -> str:
        return self._runner.metrics.summary()

    def save_transcript(self) -> Path | None:
        return self._recorder.save_current()

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    def process_request(self, user_message: str, on_event: EventSink | None = None) -> str:
        """
        Run one user request to completion and return the final response text.

        Hitting max_turns is not an error: the loop stops and returns the text
        of the last assistant turn, which may be empty or incomplete.
        """
        settings = self._settings
        stream = TurnStream(settings, on_event)
        transcript_id = self._recorder.start(user_message)
        self._history.append(Message(role="user", content=[TextBlock(text=user_message)]))

        totals = Usage()
        created: set[str] = set()
        changed: set[str] = set()
        executed_tools = False
        final_response = ""
        turn = 0
        finished = False

        while turn < settings.max_turns:
            turn += 1
            validate_history(self._history)

            response = self._model.send_message(
                self._history,
                self.system_prompt,
                self._runner.definitions(),
                on_delta=stream.on_text,
                web_search=settings.web_search,
            )
            totals = Usage(
                input_tokens=totals.input_tokens + response.usage.input_tokens,
                output_tokens=totals.output_tokens + response.usage.output_tokens,
            )
            self._recorder.add_entry(
                "assistant",
                [b.model_dump() for b in response.content],
                {
                    "model": settings.model,
                    "turn": turn,
                    "stop_reason": response.stop_reason,
                    "usage": response.usage.model_dump(),
                },
            )

            turn_text = "\n".join(b.text for b in response.content if isinstance(b, TextBlock))
            enforced = enforce_read_before_write(response.content)
            stream.finish_turn(has_tools=bool(enforced.tool_uses))

            blocks = enforced.content_blocks
            if not any(isinstance(b, (TextBlock, ToolUseBlock)) for b in blocks):
                logger.warning("Assistant turn %d had no text or tool calls; storing a placeholder", turn)
                blocks = [*blocks, TextBlock(text=EMPTY_TURN_PLACEHOLDER)]
            self._history.append(Message(role="assistant", content=blocks))
            final_response = turn_text

            if not enforced.tool_uses:
                if executed_tools and not settings.dry_run:
                    final_response += self._verification(changed)
                finished = True
                break

            stream.start_tools()
            executed_tools = True
            if settings.dry_run:
                results = [self._dry_run_result(tool_use) for tool_use in enforced.tool_uses]
            else:
                results = self._execute_tools(enforced.tool_uses, stream, created)
                self._check_references(enforced.tool_uses, results, changed)

            self._recorder.add_entry("user", [r.model_dump() for r in results])
            self._history.append(Message(role="user", content=results))
            stream.tools_done()

        if not finished:
            logger.warning(
                "Stopped after %d turns without a final answer; returning the last assistant text",
                settings.max_turns,
            )

        self._recorder.end(transcript_id, final_response)
        stream.complete(totals)
        return final_response

    def _dry_run_result(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=tool_use.id,
            content=f"[DRY RUN] Would execute: {tool_use.name} with input: {json.dumps(tool_use.input, indent=2)}",
        )

    def _execute_tools(
        self,
        tool_uses: list[ToolUseBlock],
        stream: TurnStream,
        created: set[str],
    ) -> list[ToolResultBlock]:
        """
        Run tools strictly in order; `created` tracks paths created earlier in this request.

        Write tools with a path report FileOperation events. Every other call,
        reads with a path included, reports ToolStarted/ToolFinished so the
        observer sees each tool the model ran.
        """
        settings = self._settings
        results: list[ToolResultBlock] = []

        for tool_use in tool_uses:
            path = _path_of(tool_use)

            if path and tool_use.name in WRITE_TOOLS:
                creating = tool_use.name == CREATE_TOOL and path not in created
                if tool_use.name == CREATE_TOOL:
                    created.add(path)
                stream.pause(settings.file_op_start_pause)
                stream.emit(FileOperation(state="creating" if creating else "editing", path=path))
                result = self._runner.execute_one(tool_use)
                stream.pause(settings.file_op_done_pause)
                stream.emit(FileOperation(state="created" if creating else "edited", path=path))
            else:
                stream.emit(ToolStarted(name=tool_use.name, tool_use_id=tool_use.id, path=path))
                result = self._runner.execute_one(tool_use)
                stream.emit(
                    ToolFinished(name=tool_use.name, tool_use_id=tool_use.id, path=path, is_error=result.is_error)
                )

            results.append(result)

        return results

    def _check_references(
        self,
        tool_uses: list[ToolUseBlock],
        results: list[ToolResultBlock],
        changed: set[str],
    ) -> None:
        for result in results:
            path = (result.metadata or {}).get("path")
            if path and not result.is_error:
                changed.add(path)

        missing = find_missing_references(tool_uses, results, changed)
        if missing and results:
            warning = format_warning(missing)
            logger.warning("Missing file references: %s", ", ".join(ref.target for ref in missing))
            results[-1] = results[-1].model_copy(update={"content": results[-1].content + warning})

    def _verification(self, changed: set[str]) -> str:
        return (
            f"\n\n---\n{change_summary(changed)}{self._verifier.verify(changed)}"
            f"\n\n**Metrics:**\n{self._runner.metrics.summary()}"
        )
