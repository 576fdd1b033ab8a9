# validation.py
# Conversation history checks, run before every outbound model call.
#
# The chat API rejects malformed histories with opaque errors deep inside the
# HTTP layer. These checks fail fast instead, naming the offending message.

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from buildloop.models import HistoryValidationError, Message

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def validate_history(history: Sequence[Message | Mapping[str, Any]], *, strict: bool = False) -> None:
    """
    Raise HistoryValidationError on the first shape violation.

    Accepts Message models or raw role/content mappings, so stored data can be
    checked before it is parsed.

    Rules:
      - content must be a list of blocks, for every role
      - content may be empty only for a trailing assistant message
      - every server_tool_use in an assistant message needs a
        web_search_tool_result with the same id in that message. Logged as a
        warning unless strict=True, in which case it is fatal.
    """
    last = len(history) - 1

    for idx, msg in enumerate(history):
        role = _field(msg, "role")
        content = _field(msg, "content")

        if not isinstance(content, list):
            raise HistoryValidationError(
                f"Conversation history validation failed: message {idx} (role: {role}) "
                f"has invalid content format (expected list, got {_type_name(content)}).",
                index=idx,
            )

        if not content:
            if not (idx == last and role == "assistant"):
                raise HistoryValidationError(
                    f"Conversation history validation failed: message {idx} (role: {role}) "
                    "has empty content. Only a trailing assistant message may be empty.",
                    index=idx,
                )
            continue

        if role == "assistant":
            _check_server_tool_pairs(idx, content, strict)


def _check_server_tool_pairs(idx: int, content: list, strict: bool) -> None:
    server_uses = [b for b in content if _field(b, "type") == "server_tool_use"]
    if not server_uses:
        return

    result_ids = {
        _field(b, "tool_use_id") for b in content if _field(b, "type") == "web_search_tool_result"
    }
    for use in server_uses:
        use_id = _field(use, "id")
        if use_id in result_ids:
            continue
        message = (
            f"message {idx} has server_tool_use {_field(use, 'name')!r} ({use_id}) "
            "without a matching web_search_tool_result"
        )
        if strict:
            raise HistoryValidationError(
                f"Conversation history validation failed: {message}.", index=idx
            )
        logger.warning("History check: %s; continuing.", message)
