# references.py
# Advisory check for dangling file references in freshly written files.
#
# HTML: <script src> and stylesheet <link href>.
# JS/TS/JSX/TSX: relative import specifiers.
# A reference is missing when no file created so far in the request resolves
# it. The result only feeds a warning appended to a tool result; it never
# fails a turn.

import posixpath
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from buildloop.file_tools import CREATE_TOOL, WRITE_TOOLS
from buildloop.models import ToolResultBlock, ToolUseBlock

SOURCE_EXTENSIONS = (".jsx", ".tsx", ".js", ".ts")
SCRIPT_FILE_EXTENSIONS = (".js", ".jsx", ".ts", ".tsx")
SOURCE_ROOT = "src"

_SCRIPT_SRC = re.compile(r"<script[^>]+src=[\"']([^\"']+)[\"']", re.IGNORECASE)
_LINK_TAG = re.compile(r"<link[^>]+href=[\"']([^\"']+)[\"'][^>]*>", re.IGNORECASE)
_IMPORT_FROM = re.compile(r"""^\s*import\s+(?:[\w*{}\s,]+?)\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE)
_IMPORT_BARE = re.compile(r"""^\s*import\s+['"]([^'"]+)['"]""", re.MULTILINE)
_EXTERNAL = re.compile(r"^(?:[a-z][a-z0-9+.-]*:|//)", re.IGNORECASE)


@dataclass(frozen=True)
class MissingReference:
    source_file: str
    tag: str
    attr: str
    target: str

    def describe(self) -> str:
        if self.tag == "import":
            return f"{self.source_file} imports '{self.target}' but no such file was created"
        return f'{self.source_file} references <{self.tag} {self.attr}="{self.target}"> but {self.target} was not created'


def _normalize(path: str) -> str:
    path = path.split("?", 1)[0].split("#", 1)[0]
    return posixpath.normpath(path.lstrip("/")) if path.strip("./") else path


def _candidates(base: str) -> list[str]:
    paths = [base]
    paths += [f"{base}{ext}" for ext in SOURCE_EXTENSIONS]
    paths += [f"{base}/index{ext}" for ext in SOURCE_EXTENSIONS]
    return paths


def resolves(reference: str, importer: str, known_files: set[str]) -> bool:
    """
    True when the reference maps onto a known file.

    Tries the path as written, relative to the importing file, and under the
    conventional source root, each with the usual extensions and index files.
    """
    known = {_normalize(p) for p in known_files}
    target = reference.split("?", 1)[0]
    importer_dir = posixpath.dirname(_normalize(importer))

    bases = {_normalize(target)}
    if importer_dir:
        bases.add(_normalize(posixpath.join(importer_dir, target)))
    bases |= {_normalize(posixpath.join(SOURCE_ROOT, b)) for b in list(bases)}

    return any(candidate in known for base in bases for candidate in _candidates(base))


def _html_references(path: str, content: str) -> Iterable[MissingReference]:
    for match in _SCRIPT_SRC.finditer(content):
        yield MissingReference(path, "script", "src", match.group(1))
    for match in _LINK_TAG.finditer(content):
        if "stylesheet" in match.group(0).lower():
            yield MissingReference(path, "link", "href", match.group(1))


def _import_references(path: str, content: str) -> Iterable[MissingReference]:
    for pattern in (_IMPORT_FROM, _IMPORT_BARE):
        for match in pattern.finditer(content):
            target = match.group(1)
            if target.startswith("."):
                yield MissingReference(path, "import", "from", target)


def find_missing_references(
    tool_uses: Sequence[ToolUseBlock],
    results: Sequence[ToolResultBlock],
    created_files: set[str],
) -> list[MissingReference]:
    """
    Scan this turn's successful create calls for references nobody created.

    `results` must be index-aligned with `tool_uses`. `created_files` is every
    path created so far in the request, not just this turn.
    """
    missing: list[MissingReference] = []

    for tool_use, result in zip(tool_uses, results):
        if tool_use.name not in WRITE_TOOLS or result.is_error:
            continue
        path = tool_use.input.get("path")
        content = tool_use.input.get("content") if tool_use.name == CREATE_TOOL else None
        if not isinstance(path, str) or not isinstance(content, str):
            continue

        lowered = path.lower()
        if lowered.endswith(".html"):
            refs = _html_references(path, content)
        elif lowered.endswith(SCRIPT_FILE_EXTENSIONS):
            refs = _import_references(path, content)
        else:
            continue

        for ref in refs:
            if _EXTERNAL.match(ref.target):
                continue
            if not resolves(ref.target, path, created_files):
                missing.append(ref)

    return missing


def format_warning(missing: Sequence[MissingReference]) -> str:
    lines = "\n".join(f"  - {ref.describe()}" for ref in missing)
    return (
        "\n\n⚠️ WARNING: Missing file references detected:\n"
        f"{lines}\n\n"
        "You MUST create these files in your next response to make the app functional."
    )
