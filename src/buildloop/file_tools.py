# file_tools.py
# Sandboxed workspace executors: view, write, line-replace and search.
#
# Every path goes through resolve_workspace_path(). Executors raise
# PathNotAllowedError / ToolInputError freely; the runner turns them into
# error results.

import difflib
import hashlib
import re
from pathlib import Path
from typing import Any

from buildloop.models import ExecutionContext, PathNotAllowedError, ToolInputError, ToolOutcome
from buildloop.tools import resolve_workspace_path

READ_TOOL = "either-view"
CREATE_TOOL = "either-write"
EDIT_TOOL = "either-line-replace"
SEARCH_TOOL = "either-search-files"

# Tools that change files and therefore produce file-operation events.
WRITE_TOOLS = frozenset({CREATE_TOOL, EDIT_TOOL})

DEFAULT_MAX_BYTES = 1_048_576


def _require_str(input: dict[str, Any], key: str, *, allow_empty: bool = False) -> str:
    value = input.get(key)
    if not isinstance(value, str) or (not allow_empty and not value.strip()):
        raise ToolInputError(f"'{key}' is required and must be a string.")
    return value


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _rel(context: ExecutionContext, target: Path) -> str:
    return target.relative_to(context.workspace_root.resolve()).as_posix()


# ---------------------------------------------------------------------------
# either-view
# ---------------------------------------------------------------------------


class ViewFile:
    name = READ_TOOL
    definition = {
        "name": READ_TOOL,
        "description": "Read a file to understand current code before changing it.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path to a file."},
                "max_bytes": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": DEFAULT_MAX_BYTES,
                    "description": "Maximum bytes to read (default: 1MB)",
                },
                "encoding": {"type": "string", "default": "utf-8"},
            },
            "required": ["path"],
            "additionalProperties": False,
        },
    }

    def execute(self, input: dict[str, Any], context: ExecutionContext) -> ToolOutcome:
        path = _require_str(input, "path")
        max_bytes = int(input.get("max_bytes") or DEFAULT_MAX_BYTES)
        encoding = input.get("encoding") or "utf-8"

        target = resolve_workspace_path(context, path)
        if not target.is_file():
            return ToolOutcome(content=f"Error: file not found: {path}", is_error=True)

        raw = target.read_bytes()
        truncated = len(raw) > max_bytes
        text = raw[:max_bytes].decode(encoding, errors="replace")
        line_count = text.count("\n") + (0 if text.endswith("\n") or not text else 1)

        header = f"File: {_rel(context, target)} (sha256={_sha256(raw)}, lines={line_count}, encoding={encoding})"
        if truncated:
            header += f"\n[truncated to {max_bytes} of {len(raw)} bytes]"
        numbered = "\n".join(f"{i + 1:>5}  {line}" for i, line in enumerate(text.splitlines()))
        return ToolOutcome(
            content=f"{header}\n{numbered}",
            metadata={"sha256": _sha256(raw), "line_count": line_count, "truncated": truncated},
        )


# ---------------------------------------------------------------------------
# either-write
# ---------------------------------------------------------------------------


class WriteFile:
    name = CREATE_TOOL
    definition = {
        "name": CREATE_TOOL,
        "description": "Create a NEW file with provided content. Fails if file exists unless overwrite=true.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative path for the new file"},
                "content": {"type": "string", "description": "Content to write to the file"},
                "overwrite": {"type": "boolean", "default": False},
                "create_dirs": {"type": "boolean", "default": True},
            },
            "required": ["path", "content"],
            "additionalProperties": False,
        },
    }

    def execute(self, input: dict[str, Any], context: ExecutionContext) -> ToolOutcome:
        path = _require_str(input, "path")
        content = _require_str(input, "content", allow_empty=True)
        overwrite = bool(input.get("overwrite", False))
        create_dirs = bool(input.get("create_dirs", True))

        target = resolve_workspace_path(context, path)
        rel = _rel(context, target)
        existed = target.exists()
        if existed and not overwrite:
            return ToolOutcome(
                content=f"Error: {rel} already exists. Use {EDIT_TOOL} to change it, or pass overwrite=true.",
                is_error=True,
            )
        if not target.parent.exists():
            if not create_dirs:
                return ToolOutcome(content=f"Error: parent directory of {rel} does not exist.", is_error=True)
            target.parent.mkdir(parents=True, exist_ok=True)

        data = content.encode("utf-8")
        target.write_bytes(data)
        verb = "Overwrote" if existed else "Created"
        line_count = len(content.splitlines())
        return ToolOutcome(
            content=f"{verb} {rel} ({len(data)} bytes, {line_count} lines, sha256={_sha256(data)[:12]})",
            metadata={"path": rel, "sha256": _sha256(data), "overwritten": existed},
        )


# ---------------------------------------------------------------------------
# either-line-replace
# ---------------------------------------------------------------------------


class ReplaceLines:
    name = EDIT_TOOL
    definition = {
        "name": EDIT_TOOL,
        "description": "Targeted edits in EXISTING files. Prefer this over rewriting entire files.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path to the file to edit"},
                "locator": {
                    "type": "object",
                    "properties": {
                        "start_line": {"type": "integer", "minimum": 1},
                        "end_line": {"type": "integer", "minimum": 1},
                        "needle": {
                            "type": "string",
                            "description": "Optional exact text to verify you are editing the intended block",
                        },
                    },
                    "required": ["start_line", "end_line"],
                    "additionalProperties": False,
                },
                "replacement": {"type": "string"},
                "verify_after": {"type": "boolean", "default": True},
            },
            "required": ["path", "locator", "replacement"],
            "additionalProperties": False,
        },
    }

    def execute(self, input: dict[str, Any], context: ExecutionContext) -> ToolOutcome:
        path = _require_str(input, "path")
        replacement = _require_str(input, "replacement", allow_empty=True)
        locator = input.get("locator")
        if not isinstance(locator, dict):
            raise ToolInputError("'locator' with start_line and end_line is required.")
        try:
            start = int(locator["start_line"])
            end = int(locator["end_line"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ToolInputError("locator.start_line and locator.end_line must be integers.") from exc
        needle = locator.get("needle") or input.get("needle")

        target = resolve_workspace_path(context, path)
        rel = _rel(context, target)
        if not target.is_file():
            return ToolOutcome(content=f"Error: file not found: {rel}. Use {CREATE_TOOL} for new files.", is_error=True)

        original = target.read_text(encoding="utf-8")
        lines = original.splitlines(keepends=True)
        if start < 1 or end < start or end > len(lines):
            return ToolOutcome(
                content=f"Error: invalid line range {start}-{end} for {rel} ({len(lines)} lines).",
                is_error=True,
            )

        block = "".join(lines[start - 1 : end])
        if needle and needle not in block:
            return ToolOutcome(
                content=f"Error: needle not found in lines {start}-{end} of {rel}. Re-read the file and retry.",
                is_error=True,
            )

        new_block = replacement
        if new_block and not new_block.endswith("\n") and block.endswith("\n"):
            new_block += "\n"
        updated = "".join(lines[: start - 1]) + new_block + "".join(lines[end:])
        target.write_text(updated, encoding="utf-8")

        if input.get("verify_after", True) and target.read_text(encoding="utf-8") != updated:
            return ToolOutcome(content=f"Error: verification failed after editing {rel}.", is_error=True)

        diff = "".join(
            difflib.unified_diff(
                original.splitlines(keepends=True),
                updated.splitlines(keepends=True),
                fromfile=f"a/{rel}",
                tofile=f"b/{rel}",
            )
        )
        return ToolOutcome(
            content=f"Edited {rel} (lines {start}-{end}).\n{diff}",
            metadata={"path": rel, "sha256": _sha256(updated.encode("utf-8"))},
        )


# ---------------------------------------------------------------------------
# either-search-files
# ---------------------------------------------------------------------------


class SearchFiles:
    name = SEARCH_TOOL
    definition = {
        "name": SEARCH_TOOL,
        "description": "Search code for patterns to understand usage and dependencies.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "glob": {"type": "string", "default": "src/**/*"},
                "max_results": {"type": "integer", "minimum": 1, "maximum": 1000, "default": 100},
                "regex": {"type": "boolean", "default": False},
                "context_lines": {"type": "integer", "minimum": 0, "default": 0},
            },
            "required": ["query"],
            "additionalProperties": False,
        },
    }

    def execute(self, input: dict[str, Any], context: ExecutionContext) -> ToolOutcome:
        query = _require_str(input, "query")
        pattern_glob = input.get("glob") or "src/**/*"
        max_results = int(input.get("max_results") or 100)
        context_lines = int(input.get("context_lines") or 0)

        if input.get("regex"):
            try:
                matcher = re.compile(query)
            except re.error as exc:
                raise ToolInputError(f"invalid regex: {exc}") from exc
        else:
            matcher = re.compile(re.escape(query))

        root = context.workspace_root.resolve()
        hits: list[str] = []
        for candidate in sorted(root.glob(pattern_glob)):
            if not candidate.is_file():
                continue
            try:
                resolve_workspace_path(context, _rel(context, candidate))
                lines = candidate.read_text(encoding="utf-8").splitlines()
            except (PathNotAllowedError, UnicodeDecodeError, OSError):
                continue
            for i, line in enumerate(lines):
                if not matcher.search(line):
                    continue
                lo, hi = max(0, i - context_lines), min(len(lines), i + context_lines + 1)
                snippet = "\n".join(f"    {n + 1}: {lines[n]}" for n in range(lo, hi))
                hits.append(f"{_rel(context, candidate)}:{i + 1}\n{snippet}")
                if len(hits) >= max_results:
                    break
            if len(hits) >= max_results:
                break

        if not hits:
            return ToolOutcome(content=f"No matches for {query!r} in {pattern_glob}.", metadata={"matches": 0})
        return ToolOutcome(
            content=f"{len(hits)} match(es) for {query!r}:\n\n" + "\n".join(hits),
            metadata={"matches": len(hits)},
        )


def default_executors() -> list:
    return [ViewFile(), SearchFiles(), WriteFile(), ReplaceLines()]
