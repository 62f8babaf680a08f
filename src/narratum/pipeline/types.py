"""Stage and run result types of the pipeline orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from narratum.models.narrative import NarrativeOutput
    from narratum.observability.metrics import PipelineMetricsSummary
    from narratum.validation.types import ValidationReport

TIMEOUT_REASON = "Pipeline timed out"


class StageKind(StrEnum):
    CONTEXT_BUILDING = "context_building"
    PROMPT_BUILDING = "prompt_building"
    GENERATION = "generation"
    VALIDATION = "validation"
    INTEGRATION = "integration"


def stage_name(kind: StageKind, attempt: int = 1) -> str:
    """Timeline name of a stage; retried stages get a ``_retry<N>`` suffix."""
    return kind.value if attempt <= 1 else f"{kind.value}_retry{attempt - 1}"


class StageStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class StageOutcome:
    """One entry of a run's stage timeline."""

    name: str
    kind: StageKind
    status: StageStatus
    duration_seconds: float
    attempt: int = 1
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.COMPLETED


class RunState(StrEnum):
    PENDING = "pending"
    CONTEXT_BUILDING = "context_building"
    PROMPT_BUILDING = "prompt_building"
    GENERATING = "generating"
    VALIDATING = "validating"
    INTEGRATING = "integrating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RunState.SUCCEEDED, RunState.FAILED})

ALLOWED_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.CONTEXT_BUILDING, RunState.FAILED}),
    RunState.CONTEXT_BUILDING: frozenset({RunState.PROMPT_BUILDING, RunState.FAILED}),
    RunState.PROMPT_BUILDING: frozenset({RunState.GENERATING, RunState.FAILED}),
    RunState.GENERATING: frozenset({RunState.VALIDATING, RunState.GENERATING, RunState.FAILED}),
    RunState.VALIDATING: frozenset({RunState.GENERATING, RunState.INTEGRATING, RunState.FAILED}),
    RunState.INTEGRATING: frozenset({RunState.SUCCEEDED, RunState.FAILED}),
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one run. Always returned, never raised.

    Attributes:
        run_id: Identifier of the run.
        status: ``SUCCEEDED`` or ``FAILED``.
        output: The narrative, when the run succeeded.
        failure_reason: Short human-readable reason, when the run failed.
        stages: Stage timeline in logical order.
        retry_count: Retries consumed.
        duration_seconds: Wall-clock duration of the run.
        validation: Report of the last validation that ran, if any.
        metrics: Metrics summary of the run, if the collector produced one.
    """

    run_id: str
    status: RunState
    output: NarrativeOutput | None = None
    failure_reason: str | None = None
    stages: tuple[StageOutcome, ...] = ()
    retry_count: int = 0
    duration_seconds: float = 0.0
    validation: ValidationReport | None = None
    metrics: PipelineMetricsSummary | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunState.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status == RunState.FAILED

    @property
    def timed_out(self) -> bool:
        return self.failure_reason == TIMEOUT_REASON

    @property
    def text(self) -> str:
        return self.output.text if self.output else ""

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages)

    def stages_of(self, kind: StageKind) -> tuple[StageOutcome, ...]:
        return tuple(s for s in self.stages if s.kind == kind)
