"""Structured JSONL event log, one file per generation."""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

EVENT_TYPE_ALLOWLIST = frozenset(
    [
        "generation_started",
        "state_transition",
        "budget_rejected",
        "llm_call",
        "llm_retry",
        "output_repaired",
        "enrichment_degraded",
        "artifact_written",
        "error",
        "generation_completed",
        "generation_failed",
    ]
)

# Module-level registry for loggers
_loggers: dict[str, "StructuredLogger"] = {}

DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MAX_RESULT_LENGTH = 200

_std_logger = logging.getLogger(__name__)


class StructuredLogger:
    """Generation-scoped structured JSONL logger.

    Every event is also emitted on the standard logging tree at DEBUG, so a
    logger without a file still leaves a trace when verbose logging is on.
    """

    def __init__(self, generation_id: str, log_path: Path | None = None) -> None:
        self.generation_id = generation_id
        self._log_path = log_path
        self._log_level = self._get_log_level()
        if self._log_path is not None:
            self._ensure_log_dir()

    def _get_log_level(self) -> int:
        level_map = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
        }
        return level_map.get(DEFAULT_LOG_LEVEL, logging.INFO)

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _ensure_log_dir(self) -> None:
        if self._log_path is not None:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write_line(self, event: dict[str, Any]) -> None:
        _std_logger.debug(event["event_type"], extra={"event": event})
        if self._log_path is None:
            return
        self._ensure_log_dir()
        with open(self._log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")
            f.flush()

    def log_event(self, event_type: str, **kwargs: Any) -> None:
        """Log a structured event.

        Args:
            event_type: Must be in EVENT_TYPE_ALLOWLIST.
            **kwargs: Event-specific fields.
        """
        if event_type not in EVENT_TYPE_ALLOWLIST:
            raise ValueError(
                f"Invalid event_type: {event_type}. Must be in {EVENT_TYPE_ALLOWLIST}"
            )

        event = {
            "timestamp": datetime.now().isoformat(),
            "generation_id": self.generation_id,
            "event_type": event_type,
            **kwargs,
        }
        self._write_line(event)

    def log_state_transition(
        self, from_state: str, to_state: str, **kwargs: Any
    ) -> None:
        self.log_event(
            "state_transition",
            from_state=from_state,
            to_state=to_state,
            **kwargs,
        )

    def log_llm_call(self, stage: str, attempt: int, result: Any, **kwargs: Any) -> None:
        """Log an LLM call outcome with the result truncated to 200 chars."""
        self.log_event(
            "llm_call",
            stage=stage,
            attempt=attempt,
            result=str(result)[:MAX_RESULT_LENGTH],
            **kwargs,
        )

    def log_error(self, error_type: str, message: str, **kwargs: Any) -> None:
        self.log_event(
            "error",
            error_type=error_type,
            message=message,
            **kwargs,
        )


def get_logger(generation_id: str, log_dir: Path | None = None) -> StructuredLogger:
    """Get or create the event logger for a generation.

    Args:
        generation_id: Id of the generation (the HistoryEntry id).
        log_dir: Directory for {generation_id}.jsonl. None keeps events in
            the standard logging tree only.
    """
    if generation_id not in _loggers:
        log_path = log_dir / f"{generation_id}.jsonl" if log_dir is not None else None
        _loggers[generation_id] = StructuredLogger(generation_id, log_path)
    return _loggers[generation_id]


def release_logger(generation_id: str) -> None:
    """Drop a finished generation's logger from the registry."""
    _loggers.pop(generation_id, None)


def clear_loggers() -> None:
    """Clear the logger registry. Useful for testing."""
    global _loggers
    _loggers = {}


def configure_logging(level: str = "INFO") -> None:
    """Root stream handler for the CLI."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
