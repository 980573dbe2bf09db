"""Structured event log for conversations, stored as JSONL.

One JSON object per line. Engine-level fields (contact, mode, model,
duration, error) are top-level keys; anything else an event carries goes
under ``extra``.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """One line of the event log."""

    timestamp: str
    event: str
    contact_id: str | None = None
    mode: str | None = None
    model: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, leaving out unset fields and an empty ``extra``."""
        return {key: value for key, value in asdict(self).items() if value not in (None, {})}


class JSONLLogger:
    """Append-only JSONL event log with size-based rotation.

    When the active file reaches ``max_size_mb`` it is renamed with a UTC
    timestamp suffix and a fresh file is started. Only the newest
    ``keep_rotated`` rotated files are kept.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        keep_rotated: int = 5,
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else Path.home() / ".kindred" / "logs"
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.keep_rotated = keep_rotated
        self.contact_id: str | None = None

    @property
    def log_path(self) -> Path:
        """Active log file."""
        return self.log_dir / self.filename

    def bind(self, contact_id: str | None) -> None:
        """Default ``contact_id`` for events that don't name one."""
        self.contact_id = contact_id

    def rotated_files(self) -> list[Path]:
        """Rotated files, oldest first."""
        stem = Path(self.filename).stem
        return sorted(self.log_dir.glob(f"{stem}_*.jsonl"))

    def _rotate(self) -> None:
        path = self.log_path
        if not path.exists() or path.stat().st_size < self.max_size_bytes:
            return

        suffix = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path.rename(self.log_dir / f"{path.stem}_{suffix}.jsonl")

        stale = self.rotated_files()[:-self.keep_rotated] if self.keep_rotated > 0 else []
        for old in stale:
            old.unlink(missing_ok=True)

    def log(
        self,
        event: str,
        *,
        contact_id: str | None = None,
        mode: str | None = None,
        model: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Append one event. ``None`` values in ``extra`` are dropped."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            contact_id=contact_id or self.contact_id,
            mode=mode,
            model=model,
            duration_ms=duration_ms,
            error=error,
            extra={k: v for k, v in extra.items() if v is not None},
        )

        self._rotate()
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log_llm_request(
        self,
        contact_id: str,
        *,
        model: str,
        mode: str,
        messages_count: int,
        pending: str | None = None,
    ) -> None:
        """An outbound chat-completion request."""
        self.log(
            "llm_request",
            contact_id=contact_id,
            model=model,
            mode=mode,
            messages_count=messages_count,
            pending=pending,
        )

    def log_llm_response(
        self,
        contact_id: str,
        *,
        duration_ms: float,
        segments: int,
        has_thought: bool,
    ) -> None:
        """A decoded reply."""
        self.log(
            "llm_response",
            contact_id=contact_id,
            duration_ms=duration_ms,
            segments=segments,
            has_thought=has_thought,
        )

    def log_event_resolved(self, contact_id: str, kind: str, outcome: str) -> None:
        """A pending transfer or invite reaching its terminal state."""
        self.log("event_resolved", contact_id=contact_id, kind=kind, outcome=outcome)

    def log_summary(
        self,
        contact_id: str,
        *,
        success: bool,
        trigger: str,
        error: str | None = None,
        consumed: int | None = None,
        promoted: int | None = None,
    ) -> None:
        """A compaction run, successful or not."""
        self.log(
            "summary_run" if success else "summary_failed",
            contact_id=contact_id,
            error=error,
            trigger=trigger,
            consumed=consumed,
            promoted=promoted,
        )


_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Process-wide event log, created on first use."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Replace the process-wide event log."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
