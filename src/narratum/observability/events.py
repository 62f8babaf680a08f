"""In-memory history of technical pipeline events.

Unlike the audit trail, which records decisions, the event log mirrors what
the structured log says about a run (stage boundaries, role calls, retries)
and keeps it queryable by run id so callers can inspect a run's history
after the fact. Every event is also emitted through structlog.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from narratum.observability.logging import get_logger

log = get_logger(__name__)

DEFAULT_MAX_EVENTS = 10_000


class PipelineEventType(StrEnum):
    RUN_STARTED = "run_started"
    RUN_SUCCEEDED = "run_succeeded"
    RUN_FAILED = "run_failed"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    ROLE_CALLED = "role_called"
    RETRY = "retry"


_FAILURE_EVENTS = frozenset(
    {PipelineEventType.RUN_FAILED, PipelineEventType.STAGE_FAILED, PipelineEventType.RETRY}
)


@dataclass(frozen=True)
class PipelineEvent:
    run_id: str
    event_type: PipelineEventType
    message: str
    stage: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class PipelineEventLog:
    """Bounded per-run event history, safe to share across concurrent runs."""

    def __init__(self, max_events: int = DEFAULT_MAX_EVENTS) -> None:
        self._events: deque[PipelineEvent] = deque(maxlen=max_events or None)
        self._lock = threading.Lock()

    def record(self, event: PipelineEvent) -> PipelineEvent:
        with self._lock:
            self._events.append(event)
        emit = log.warning if event.event_type in _FAILURE_EVENTS else log.info
        emit(event.event_type.value, stage=event.stage, detail=event.message, **event.data)
        return event

    def run_started(self, run_id: str, intent: str) -> PipelineEvent:
        return self.record(
            PipelineEvent(
                run_id, PipelineEventType.RUN_STARTED, f"Run started for {intent}", data={"intent": intent}
            )
        )

    def run_finished(self, run_id: str, *, success: bool, reason: str | None = None) -> PipelineEvent:
        if success:
            return self.record(PipelineEvent(run_id, PipelineEventType.RUN_SUCCEEDED, "Run succeeded"))
        return self.record(
            PipelineEvent(run_id, PipelineEventType.RUN_FAILED, reason or "Run failed")
        )

    def stage_started(self, run_id: str, stage: str) -> PipelineEvent:
        return self.record(
            PipelineEvent(run_id, PipelineEventType.STAGE_STARTED, f"{stage} started", stage=stage)
        )

    def stage_completed(self, run_id: str, stage: str, duration: float) -> PipelineEvent:
        return self.record(
            PipelineEvent(
                run_id,
                PipelineEventType.STAGE_COMPLETED,
                f"{stage} completed",
                stage=stage,
                data={"duration": round(duration, 4)},
            )
        )

    def stage_failed(self, run_id: str, stage: str, error: str, duration: float) -> PipelineEvent:
        return self.record(
            PipelineEvent(
                run_id,
                PipelineEventType.STAGE_FAILED,
                error,
                stage=stage,
                data={"duration": round(duration, 4)},
            )
        )

    def role_called(
        self, run_id: str, role: str, duration: float, *, success: bool, error: str | None = None
    ) -> PipelineEvent:
        data: dict[str, Any] = {"role": role, "success": success, "duration": round(duration, 4)}
        if error:
            data["error"] = error
        return self.record(
            PipelineEvent(run_id, PipelineEventType.ROLE_CALLED, f"{role} responded", data=data)
        )

    def retry(self, run_id: str, attempt: int, reason: str) -> PipelineEvent:
        return self.record(
            PipelineEvent(
                run_id, PipelineEventType.RETRY, reason, data={"attempt": attempt}
            )
        )

    def history(self, run_id: str) -> list[PipelineEvent]:
        """All retained events of one run, oldest first."""
        with self._lock:
            return [e for e in self._events if e.run_id == run_id]

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
