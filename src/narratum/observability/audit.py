"""Audit trail of pipeline decisions.

The audit trail records business decisions ("validation failed", "retry
scheduled", "run failed"), not technical events; technical events go to the
structured log and the pipeline event log. Entries are kept in memory in a
bounded buffer that evicts the oldest entry first.
"""

from __future__ import annotations

import threading
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING, Any

from narratum.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

log = get_logger(__name__)

DEFAULT_MAX_ENTRIES = 50_000


class AuditSeverity(IntEnum):
    """Severity of an audit entry, ordered so ``>=`` comparisons work."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4


class AuditCategory(StrEnum):
    """Area of the system an audit entry belongs to."""

    PIPELINE = "pipeline"
    AGENT = "agent"
    VALIDATION = "validation"
    STATE = "state"
    MEMORY = "memory"
    SECURITY = "security"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditEntry:
    """One recorded decision.

    Attributes:
        run_id: Pipeline run the decision belongs to.
        action: Short machine-friendly action name (e.g. ``retry_scheduled``).
        actor: Component that made the decision.
        description: Human-readable description.
        severity: How important the entry is.
        category: Area of the system.
        details: Optional structured details.
        entry_id: Unique entry identifier.
        timestamp: When the entry was created (UTC).
    """

    run_id: str
    action: str
    actor: str
    description: str
    severity: AuditSeverity = AuditSeverity.INFO
    category: AuditCategory = AuditCategory.PIPELINE
    details: dict[str, Any] = field(default_factory=dict)
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def decision(
        cls,
        run_id: str,
        action: str,
        description: str,
        *,
        actor: str = "orchestrator",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Create an informational pipeline decision entry."""
        return cls(
            run_id=run_id,
            action=action,
            actor=actor,
            description=description,
            details=details or {},
        )

    @classmethod
    def agent_action(
        cls,
        run_id: str,
        role: str,
        action: str,
        description: str,
        *,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Create an entry describing something a generation role did."""
        return cls(
            run_id=run_id,
            action=action,
            actor=role,
            description=description,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
            category=AuditCategory.AGENT,
            details=details or {},
        )

    @classmethod
    def validation_failure(
        cls,
        run_id: str,
        errors: Iterable[str],
        *,
        actor: str = "validator",
        attempt: int = 1,
    ) -> AuditEntry:
        """Create an entry for a failed validation attempt."""
        error_list = list(errors)
        return cls(
            run_id=run_id,
            action="validation_failed",
            actor=actor,
            description=f"Validation failed with {len(error_list)} error(s)",
            severity=AuditSeverity.WARNING,
            category=AuditCategory.VALIDATION,
            details={"errors": error_list, "attempt": attempt},
        )

    @classmethod
    def state_change(
        cls,
        run_id: str,
        from_state: str,
        to_state: str,
        *,
        actor: str = "orchestrator",
    ) -> AuditEntry:
        """Create an entry for a pipeline state transition."""
        return cls(
            run_id=run_id,
            action="state_changed",
            actor=actor,
            description=f"{from_state} -> {to_state}",
            severity=AuditSeverity.DEBUG,
            category=AuditCategory.STATE,
            details={"from": from_state, "to": to_state},
        )

    @classmethod
    def critical_error(
        cls,
        run_id: str,
        description: str,
        *,
        actor: str = "orchestrator",
        error: BaseException | None = None,
    ) -> AuditEntry:
        """Create an entry for an error that ended a run."""
        details: dict[str, Any] = {}
        if error is not None:
            details["error_type"] = type(error).__name__
            details["error"] = str(error)
        return cls(
            run_id=run_id,
            action="critical_error",
            actor=actor,
            description=description,
            severity=AuditSeverity.CRITICAL,
            category=AuditCategory.SYSTEM,
            details=details,
        )

    def to_line(self) -> str:
        """Render the entry as a single text line."""
        ts = self.timestamp.strftime("%H:%M:%S.%f")[:-3]
        return (
            f"[{ts}] {self.severity.name:<8} {self.category.value:<10} "
            f"{self.actor}: {self.action} - {self.description}"
        )


@dataclass(frozen=True)
class AuditReport:
    """Aggregated view over a set of audit entries."""

    run_id: str | None
    entries: tuple[AuditEntry, ...]
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def total(self) -> int:
        return len(self.entries)

    @property
    def counts_by_severity(self) -> dict[AuditSeverity, int]:
        return dict(Counter(e.severity for e in self.entries))

    @property
    def counts_by_category(self) -> dict[AuditCategory, int]:
        return dict(Counter(e.category for e in self.entries))

    @property
    def counts_by_actor(self) -> dict[str, int]:
        return dict(Counter(e.actor for e in self.entries))

    @property
    def problems(self) -> tuple[AuditEntry, ...]:
        return tuple(e for e in self.entries if e.severity >= AuditSeverity.WARNING)

    @property
    def has_problems(self) -> bool:
        return bool(self.problems)

    def to_text(self) -> str:
        """Render the report as plain text."""
        scope = f"run {self.run_id}" if self.run_id else "all runs"
        lines = [f"Audit report for {scope}: {self.total} entries"]
        for severity in AuditSeverity:
            count = self.counts_by_severity.get(severity, 0)
            if count:
                lines.append(f"  {severity.name.lower()}: {count}")
        if self.has_problems:
            lines.append("Problems:")
            lines.extend(f"  {entry.to_line()}" for entry in self.problems)
        lines.append("Timeline:")
        lines.extend(f"  {entry.to_line()}" for entry in self.entries)
        return "\n".join(lines)


class AuditTrail:
    """Bounded, thread-safe, append-only record of pipeline decisions.

    Instances are created by the caller and injected into each orchestrator,
    so tests get a fresh trail per case.

    Args:
        max_entries: Maximum entries retained; the oldest entry is evicted
            first once the cap is reached. ``0`` disables the cap.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries < 0:
            raise ValueError(f"max_entries must be >= 0, got {max_entries}")
        self._max_entries = max_entries
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries or None)
        self._lock = threading.Lock()
        self._evicted = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def evicted_count(self) -> int:
        """Number of entries dropped by the retention cap so far."""
        return self._evicted

    def record(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry, evicting the oldest one when full."""
        with self._lock:
            if self._max_entries and len(self._entries) == self._max_entries:
                self._evicted += 1
            self._entries.append(entry)
        log.debug(
            "audit_recorded",
            action=entry.action,
            actor=entry.actor,
            severity=entry.severity.name.lower(),
            audit_run_id=entry.run_id,
        )
        return entry

    def record_decision(
        self,
        run_id: str,
        action: str,
        description: str,
        *,
        actor: str = "orchestrator",
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditEntry.decision(run_id, action, description, actor=actor, details=details)
        )

    def record_agent_action(
        self,
        run_id: str,
        role: str,
        action: str,
        description: str,
        *,
        success: bool = True,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(
            AuditEntry.agent_action(
                run_id, role, action, description, success=success, details=details
            )
        )

    def record_validation_failure(
        self, run_id: str, errors: Iterable[str], *, attempt: int = 1
    ) -> AuditEntry:
        return self.record(AuditEntry.validation_failure(run_id, errors, attempt=attempt))

    def record_retry(self, run_id: str, attempt: int, reason: str, delay: float) -> AuditEntry:
        return self.record(
            AuditEntry(
                run_id=run_id,
                action="retry_scheduled",
                actor="orchestrator",
                description=f"Retry #{attempt} scheduled: {reason}",
                severity=AuditSeverity.WARNING,
                category=AuditCategory.PIPELINE,
                details={"attempt": attempt, "delay_seconds": delay},
            )
        )

    def record_critical_error(
        self, run_id: str, description: str, error: BaseException | None = None
    ) -> AuditEntry:
        return self.record(AuditEntry.critical_error(run_id, description, error=error))

    def get_entries(
        self,
        *,
        run_id: str | None = None,
        min_severity: AuditSeverity | None = None,
        category: AuditCategory | None = None,
        action: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AuditEntry]:
        """Return entries matching every given filter, oldest first.

        Args:
            run_id: Only entries for this run.
            min_severity: Only entries at or above this severity.
            category: Only entries in this category.
            action: Only entries with this action name.
            since: Only entries at or after this time (inclusive).
            until: Only entries at or before this time (inclusive).
        """
        with self._lock:
            snapshot = list(self._entries)
        return [
            e
            for e in snapshot
            if (run_id is None or e.run_id == run_id)
            and (min_severity is None or e.severity >= min_severity)
            and (category is None or e.category == category)
            and (action is None or e.action == action)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]

    def get_problems(self, run_id: str | None = None) -> list[AuditEntry]:
        """Entries with severity warning or above."""
        return self.get_entries(run_id=run_id, min_severity=AuditSeverity.WARNING)

    def generate_report(self, run_id: str | None = None) -> AuditReport:
        """Build a report for one run, or for every retained entry."""
        return AuditReport(run_id=run_id, entries=tuple(self.get_entries(run_id=run_id)))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._evicted = 0

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.count
