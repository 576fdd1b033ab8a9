# history.py
# Normalization of conversation messages loaded from storage.
#
# Older rows may hold content as a bare string, a {"text": ...} object, or a
# list containing fake redacted_thinking blocks written by earlier code.
# Everything that comes out of here is safe to hand to validate_history().

import json
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_BASE64 = re.compile(r"^[A-Za-z0-9+/]+=*$")
MIN_REDACTED_DATA = 50
MIN_ENCRYPTED_DATA = 100


def looks_encrypted(data: str) -> bool:
    """Real redacted_thinking payloads are long base64 blobs."""
    return len(data) >= MIN_ENCRYPTED_DATA and bool(_BASE64.match(data))


def _clean_blocks(blocks: list[Any]) -> list[Any]:
    cleaned = []
    for block in blocks:
        if isinstance(block, Mapping) and block.get("type") == "redacted_thinking" and block.get("data"):
            data = str(block["data"])
            if len(data) < MIN_REDACTED_DATA or not looks_encrypted(data):
                logger.info("Removing invalid redacted_thinking block (%d chars)", len(data))
                thinking = block.get("thinking") or block.get("text")
                if thinking:
                    cleaned.append({"type": "thinking", "thinking": thinking})
                continue
        cleaned.append(block)
    return cleaned


def normalize_content(content: Any) -> list[Any]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, list):
        return _clean_blocks(content)
    if isinstance(content, Mapping):
        if content.get("text"):
            return [{"type": "text", "text": content["text"]}]
        return [{"type": "text", "text": json.dumps(content)}]
    return [{"type": "text", "text": str(content)}]


def normalize_stored_messages(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Keep user/assistant rows and coerce their content into block lists."""
    return [
        {"role": row["role"], "content": normalize_content(row.get("content"))}
        for row in rows
        if row.get("role") in ("user", "assistant")
    ]
