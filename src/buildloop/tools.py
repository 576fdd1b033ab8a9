# tools.py
# Tool runner: looks up executors by name, runs them one at a time inside the
# session's ExecutionContext, and turns every failure into an error result.
#
# The agent never calls an executor directly. It goes through the runner,
# which owns the sandbox context and the metrics accumulator.

import fnmatch
import json
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from buildloop.models import (
    ExecutionContext,
    PathNotAllowedError,
    ToolOutcome,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)


class ToolExecutor(Protocol):
    """One named capability the model can call."""

    name: str
    definition: dict[str, Any]

    def execute(self, input: dict[str, Any], context: ExecutionContext) -> ToolOutcome: ...


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------


def _matches(rel: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        if fnmatch.fnmatch(rel, pattern):
            return True
        # "dir/**" should also cover "dir" itself
        if pattern.endswith("/**") and rel == pattern[:-3]:
            return True
    return False


def resolve_workspace_path(context: ExecutionContext, path: str) -> Path:
    """
    Map a model-supplied relative path onto the workspace.

    Raises PathNotAllowedError for absolute paths, traversal outside the
    workspace, denied globs, and paths matching no allowed glob.
    """
    if not isinstance(path, str) or not path.strip():
        raise PathNotAllowedError("SECURITY BLOCK: empty path.")

    cleaned = path.strip().replace("\\", "/")
    if cleaned.startswith("/") or PurePosixPath(cleaned).is_absolute() or ":" in cleaned.split("/")[0]:
        raise PathNotAllowedError(f"SECURITY BLOCK: absolute path {path!r} is not allowed.")

    root = context.workspace_root.resolve()
    target = (root / cleaned).resolve()
    if target != root and root not in target.parents:
        raise PathNotAllowedError(f"SECURITY BLOCK: {path!r} escapes the workspace.")

    rel = target.relative_to(root).as_posix()
    if _matches(rel, context.denied_paths):
        raise PathNotAllowedError(f"SECURITY BLOCK: {rel!r} matches a denied path.")
    if not _matches(rel, context.allowed_paths):
        raise PathNotAllowedError(f"SECURITY BLOCK: {rel!r} is outside the allowed paths.")
    return target


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass
class ToolStats:
    calls: int = 0
    errors: int = 0
    input_bytes: int = 0
    output_bytes: int = 0
    total_latency: float = 0.0


@dataclass
class ToolMetrics:
    """Per-tool counters accumulated for the lifetime of a runner."""

    by_tool: dict[str, ToolStats] = field(default_factory=dict)

    def record(self, name: str, *, is_error: bool, input_bytes: int, output_bytes: int, latency: float) -> None:
        stats = self.by_tool.setdefault(name, ToolStats())
        stats.calls += 1
        stats.errors += int(is_error)
        stats.input_bytes += input_bytes
        stats.output_bytes += output_bytes
        stats.total_latency += latency

    @property
    def total_calls(self) -> int:
        return sum(s.calls for s in self.by_tool.values())

    @property
    def total_errors(self) -> int:
        return sum(s.errors for s in self.by_tool.values())

    def summary(self) -> str:
        if not self.by_tool:
            return "No tool calls recorded."
        lines = [f"Tool calls: {self.total_calls} ({self.total_errors} failed)"]
        for name in sorted(self.by_tool):
            s = self.by_tool[name]
            avg_ms = (s.total_latency / s.calls) * 1000 if s.calls else 0.0
            lines.append(
                f"  - {name}: {s.calls} call(s), {s.errors} error(s), "
                f"in {s.input_bytes}B / out {s.output_bytes}B, avg {avg_ms:.1f}ms"
            )
        return "\n".join(lines)

    def reset(self) -> None:
        self.by_tool.clear()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ToolRunner:
    """
    Executes tool invocations strictly in order against registered executors.

    Unknown tools and executor exceptions become is_error results; nothing
    raised by an executor propagates past execute().
    """

    def __init__(
        self,
        executors: Iterable[ToolExecutor],
        workspace_root: str | Path,
        *,
        allowed_paths: list[str] | None = None,
        denied_paths: list[str] | None = None,
    ) -> None:
        self._executors: dict[str, ToolExecutor] = {e.name: e for e in executors}
        self._context = ExecutionContext(
            workspace_root=Path(workspace_root),
            allowed_paths=list(allowed_paths) if allowed_paths is not None else ["**"],
            denied_paths=list(denied_paths or []),
        )
        self._metrics = ToolMetrics()

    @property
    def context(self) -> ExecutionContext:
        return self._context

    @property
    def metrics(self) -> ToolMetrics:
        return self._metrics

    def definitions(self) -> list[dict[str, Any]]:
        return [e.definition for e in self._executors.values()]

    def set_context(
        self,
        *,
        file_store: Any = None,
        app_id: str | None = None,
        session_id: str | None = None,
        db: Any = None,
    ) -> None:
        """One-shot update of the service handles. Call before the tools that need them run."""
        self._context = self._context.model_copy(
            update={"file_store": file_store, "app_id": app_id, "session_id": session_id, "db": db}
        )

    def clear_cache(self) -> None:
        self._metrics.reset()

    def execute(self, tool_uses: Iterable[ToolUseBlock]) -> list[ToolResultBlock]:
        return [self.execute_one(tool_use) for tool_use in tool_uses]

    def execute_one(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        executor = self._executors.get(tool_use.name)
        if executor is None:
            logger.warning("Model requested unknown tool %r", tool_use.name)
            return ToolResultBlock(
                tool_use_id=tool_use.id,
                content=f"Error: Unknown tool '{tool_use.name}'.",
                is_error=True,
            )

        started = time.perf_counter()
        try:
            outcome = executor.execute(dict(tool_use.input), self._context)
        except Exception as exc:
            logger.info("Tool %s (%s) failed: %s", tool_use.name, tool_use.id, exc)
            outcome = ToolOutcome(content=f"Error: {exc}", is_error=True)
        latency = time.perf_counter() - started

        self._metrics.record(
            tool_use.name,
            is_error=outcome.is_error,
            input_bytes=len(json.dumps(tool_use.input, default=str).encode("utf-8")),
            output_bytes=len(outcome.content.encode("utf-8")),
            latency=latency,
        )
        return ToolResultBlock(
            tool_use_id=tool_use.id,
            content=outcome.content,
            is_error=outcome.is_error,
            metadata=outcome.metadata,
        )
