# transcript.py
# Append-only audit log of one request: user message, every model turn,
# every batch of tool results, and the final response.
#
# Without a transcript directory the recorder keeps everything in memory and
# save_current() does nothing.

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from buildloop.models import Transcript, TranscriptEntry

logger = logging.getLogger(__name__)


class TranscriptRecorder:
    def __init__(self, transcript_dir: str | Path | None = None) -> None:
        self._dir = Path(transcript_dir) if transcript_dir else None
        self._current: Transcript | None = None

    @property
    def current(self) -> Transcript | None:
        return self._current

    def start(self, user_message: str) -> str:
        transcript = Transcript(id=f"tr-{uuid4().hex[:12]}")
        transcript.entries.append(TranscriptEntry(role="user", content=user_message))
        self._current = transcript
        logger.debug("Transcript %s started", transcript.id)
        return transcript.id

    def add_entry(self, role: str, content: Any, metadata: dict[str, Any] | None = None) -> None:
        if self._current is None:
            raise RuntimeError("add_entry() called before start()")
        self._current.entries.append(TranscriptEntry(role=role, content=content, metadata=metadata))

    def end(self, transcript_id: str, final_response: str) -> None:
        if self._current is None or self._current.id != transcript_id:
            raise RuntimeError(f"Transcript {transcript_id} is not the active transcript")
        self._current.final_response = final_response
        self._current.ended_at = datetime.now(timezone.utc)

    def save_current(self) -> Path | None:
        if self._current is None or self._dir is None:
            return None
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self._dir / f"{self._current.id}.json"
        path.write_text(self._current.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Transcript saved to %s", path)
        return path
