"""Daily JSONL journal of cycle events."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

EVENT_TYPES = frozenset(
    {
        "cycle_start",
        "regime",
        "signal",
        "skip",
        "order",
        "close",
        "position_update",
        "cycle_end",
        "error",
    }
)


class JournalStore:
    """Append-only event journal, one ``events-<day>.jsonl`` file per UTC day."""

    def __init__(self, journal_dir: Path) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = datetime.now(timezone.utc)
        record = {
            "timestamp": now.isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
        with self._file_path_for_day(now.date()).open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")

    def load_recent(self, limit: int, event_type: str | None = None) -> list[dict[str, Any]]:
        """Newest ``limit`` events in chronological order, optionally of one type."""
        if limit <= 0:
            return []

        rows: list[dict[str, Any]] = []
        for file in sorted(self._journal_dir.glob("events-*.jsonl"), reverse=True):
            for line in reversed(file.read_text(encoding="utf-8").splitlines()):
                if not line.strip():
                    continue
                record = json.loads(line)
                if event_type is not None and record.get("event_type") != event_type:
                    continue
                rows.append(record)
                if len(rows) >= limit:
                    return list(reversed(rows))
        return list(reversed(rows))

    def _file_path_for_day(self, day: date) -> Path:
        return self._journal_dir / f"events-{day.isoformat()}.jsonl"
