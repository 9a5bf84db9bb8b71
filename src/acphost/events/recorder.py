"""Event recorder — append-only JSONL log of observer events."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Any


class EventRecorder:
    """Observer that appends every event to a JSONL file.

    Thread-safe: all writes are serialized through a ``threading.Lock``.
    Crash-safe: the file is flushed after every event.

    Usable directly as an observer: ``emitter.subscribe(recorder)``.
    """

    def __init__(self, events_dir: Path | None = None) -> None:
        self._lock = threading.Lock()
        self._seq = 0
        self._closed = False
        self._run_id = uuid.uuid4().hex[:12]

        if events_dir is None:
            events_dir = Path("events")
        events_dir.mkdir(parents=True, exist_ok=True)

        date_str = datetime.now(tz=UTC).strftime("%Y-%m-%d")
        self._events_file = events_dir / f"{date_str}_{self._run_id}.jsonl"
        self._fh: IO[str] | None = self._events_file.open("a", encoding="utf-8")

    @property
    def run_id(self) -> str:
        """Unique identifier of this recording (12-char hex)."""
        return self._run_id

    @property
    def events_file(self) -> Path:
        """Path to the JSONL file."""
        return self._events_file

    @property
    def event_count(self) -> int:
        """Number of events recorded so far."""
        return self._seq

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        self.record(name, payload)

    def record(self, name: str, payload: dict[str, Any]) -> None:
        """Write one event line stamped with ``seq`` and ``ts``.

        Silently drops events after the recorder has been closed.
        """
        with self._lock:
            if self._closed or self._fh is None:
                return
            line = json.dumps(
                {"seq": self._seq, "ts": _iso_now(), "event": name, "payload": payload},
                default=str,
                ensure_ascii=False,
            )
            self._seq += 1
            self._fh.write(line + "\n")
            self._fh.flush()

    def close(self) -> None:
        """Close the file handle.  Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._fh is not None and not self._fh.closed:
                self._fh.close()


def _iso_now() -> str:
    """Return the current UTC time as ISO 8601 with milliseconds."""
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
