# enforcer.py
# Read-before-write enforcement over one assistant turn.
#
# Pure transformation: takes the raw content blocks the model produced and
# returns the blocks to store in history plus the tool calls to execute.
# Any edit to a path not yet read in the same turn gets a synthetic read
# inserted directly in front of it. The read is only *requested*; whether it
# succeeded is the model's business.

from collections.abc import Sequence
from dataclasses import dataclass, field
from uuid import uuid4

from buildloop.file_tools import EDIT_TOOL, READ_TOOL
from buildloop.models import ContentBlock, ToolUseBlock

INJECTED_ID_PREFIX = "enforcer-view-"
MISSING_NEEDLE_WARNING = "No `needle` provided; injected a read to reduce risk."


@dataclass
class EnforcedTurn:
    content_blocks: list[ContentBlock] = field(default_factory=list)
    tool_uses: list[ToolUseBlock] = field(default_factory=list)


def injected_read_id() -> str:
    return f"{INJECTED_ID_PREFIX}{uuid4().hex[:16]}"


def is_injected(tool_use: ToolUseBlock) -> bool:
    return tool_use.id.startswith(INJECTED_ID_PREFIX)


def _path_of(block: ToolUseBlock) -> str | None:
    path = block.input.get("path")
    if isinstance(path, str) and path:
        return path
    return None


def _has_needle(block: ToolUseBlock) -> bool:
    if block.input.get("needle"):
        return True
    locator = block.input.get("locator")
    return isinstance(locator, dict) and bool(locator.get("needle"))


def enforce_read_before_write(blocks: Sequence[ContentBlock]) -> EnforcedTurn:
    """
    Insert a read before every edit whose path was not read earlier in the turn.

    - explicit reads mark their path as seen and pass through
    - an edit on an unseen path is preceded by an injected read
    - an edit without a needle gets `_enforcer_warning` added to a copy of its input
    - creates and every other block pass through unchanged
    """
    turn = EnforcedTurn()
    seen: set[str] = set()

    def emit(block: ContentBlock) -> None:
        turn.content_blocks.append(block)
        if isinstance(block, ToolUseBlock):
            turn.tool_uses.append(block)

    for block in blocks:
        if not isinstance(block, ToolUseBlock):
            emit(block)
            continue

        path = _path_of(block)

        if block.name == READ_TOOL:
            if path:
                seen.add(path)
            emit(block)
            continue

        if block.name == EDIT_TOOL:
            if path and path not in seen:
                emit(ToolUseBlock(id=injected_read_id(), name=READ_TOOL, input={"path": path}))
                seen.add(path)
            if not _has_needle(block):
                block = block.model_copy(
                    update={"input": {**block.input, "_enforcer_warning": MISSING_NEEDLE_WARNING}}
                )
            emit(block)
            continue

        emit(block)

    return turn
