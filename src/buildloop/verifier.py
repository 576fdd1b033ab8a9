# verifier.py
# Post-hoc static checks over the files a request changed.
#
# Runs once at loop termination. Each check is cheap and local: the file
# exists, is not empty, parses (JSON) or has balanced brackets (JS/TS/CSS).

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

BRACKET_CHECKED = (".js", ".jsx", ".ts", ".tsx", ".css", ".mjs", ".cjs")
_PAIRS = {")": "(", "]": "[", "}": "{"}


class Verifier(Protocol):
    def verify(self, changed_files: Iterable[str]) -> str: ...


@dataclass
class FileCheck:
    path: str
    ok: bool
    problems: list[str] = field(default_factory=list)


def change_summary(changed_files: Iterable[str]) -> str:
    files = sorted(set(changed_files))
    if not files:
        return ""
    if len(files) == 1:
        return f"**Changed:** {files[0]}\n"
    listing = "\n".join(f"  - {f}" for f in files)
    return f"**Changed ({len(files)} files):**\n{listing}\n"


def _strip_strings_and_comments(source: str, *, line_comments: bool = True, jsx: bool = False) -> str:
    """
    Blank out quoted strings and comments so their brackets don't count.

    CSS has no `//` comments (`url(https://...)` is common). In JSX an
    apostrophe after a letter is text, as in `<p>Don't</p>`. Quote strings
    end at a newline; only template literals span lines.
    """
    out: list[str] = []
    i, n = 0, len(source)
    while i < n:
        ch = source[i]
        if line_comments and source.startswith("//", i):
            end = source.find("\n", i)
            i = n if end == -1 else end
            continue
        if source.startswith("/*", i):
            end = source.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue
        if jsx and ch == "'" and i and source[i - 1].isalnum():
            i += 1
            continue
        if ch in "\"'`":
            i += 1
            while i < n and source[i] != ch:
                if source[i] == "\n" and ch != "`":
                    break
                i += 2 if source[i] == "\\" else 1
            i += 1
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def bracket_problem(source: str, suffix: str = ".js") -> str | None:
    stripped = _strip_strings_and_comments(
        source,
        line_comments=suffix != ".css",
        jsx=suffix in (".jsx", ".tsx"),
    )
    stack: list[tuple[str, int]] = []
    for offset, ch in enumerate(stripped):
        if ch in "([{":
            stack.append((ch, offset))
        elif ch in _PAIRS:
            if not stack or stack[-1][0] != _PAIRS[ch]:
                return f"unexpected '{ch}'"
            stack.pop()
    if stack:
        return f"unclosed '{stack[-1][0]}'"
    return None


class StaticVerifier:
    def __init__(self, workspace_root: str | Path) -> None:
        self._root = Path(workspace_root)

    def check(self, rel_path: str) -> FileCheck:
        target = self._root / rel_path
        if not target.is_file():
            return FileCheck(rel_path, False, ["missing"])

        try:
            text = target.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            # binary assets (images etc.) only need to exist
            return FileCheck(rel_path, target.stat().st_size > 0, [] if target.stat().st_size else ["empty"])

        problems: list[str] = []
        if not text.strip():
            problems.append("empty")
        elif rel_path.endswith(".json"):
            try:
                json.loads(text)
            except json.JSONDecodeError as exc:
                problems.append(f"invalid JSON: {exc.msg} (line {exc.lineno})")
        elif rel_path.endswith(BRACKET_CHECKED):
            problem = bracket_problem(text, Path(rel_path).suffix)
            if problem:
                problems.append(problem)
        return FileCheck(rel_path, not problems, problems)

    def verify(self, changed_files: Iterable[str]) -> str:
        checks = [self.check(path) for path in sorted(set(changed_files))]
        if not checks:
            return "**Verification:** nothing to check."

        failed = [c for c in checks if not c.ok]
        for c in failed:
            logger.info("Verification failed for %s: %s", c.path, ", ".join(c.problems))

        header = (
            f"**Verification:** all {len(checks)} file(s) passed"
            if not failed
            else f"**Verification:** {len(failed)} of {len(checks)} file(s) failed"
        )
        lines = [header]
        for c in checks:
            mark = "✓" if c.ok else "✗"
            detail = "" if c.ok else f" ({', '.join(c.problems)})"
            lines.append(f"  {mark} {c.path}{detail}")
        return "\n".join(lines)
