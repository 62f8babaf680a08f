"""Timing and counter metrics for pipeline runs.

Samples are kept in a bounded in-memory buffer (oldest evicted first) and
aggregated on demand into per-name statistics. Each pipeline run is also
tracked by a start/end pair keyed by run id, producing a
:class:`PipelineMetricsSummary` when the run ends.
"""

from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from narratum.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

log = get_logger(__name__)

DEFAULT_MAX_SAMPLES = 100_000
_MAX_RETAINED_SUMMARIES = 1_000

PIPELINE_DURATION = "pipeline.duration"
STAGE_DURATION = "stage.duration"
ROLE_DURATION = "role.duration"
ROLE_CALLS = "role.calls"
RETRIES = "pipeline.retries"


class MetricsUsageError(RuntimeError):
    """Raised when the collector is driven incorrectly.

    Starting a run twice, or ending a run or stage that was never started,
    indicates a programming defect and is never silently ignored.
    """


class MetricType(StrEnum):
    DURATION = "duration"
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricSample:
    """One recorded value. Durations are in seconds."""

    name: str
    metric_type: MetricType
    value: float
    tags: dict[str, str] = field(default_factory=dict)
    run_id: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile of an already sorted sequence.

    Args:
        sorted_values: Values in ascending order. Must not be empty.
        pct: Percentile in [0, 100].

    Returns:
        The value at rank ``ceil(pct / 100 * n)``, clamped to the sequence.
    """
    if not sorted_values:
        raise ValueError("percentile of empty sequence")
    index = math.ceil(pct / 100 * len(sorted_values)) - 1
    index = max(0, min(index, len(sorted_values) - 1))
    return sorted_values[index]


@dataclass(frozen=True)
class MetricStatistics:
    """Aggregate statistics for one metric name."""

    name: str
    count: int
    total: float
    minimum: float
    maximum: float
    mean: float
    p50: float
    p95: float
    p99: float

    @classmethod
    def from_values(cls, name: str, values: Sequence[float]) -> MetricStatistics:
        if not values:
            raise ValueError(f"no samples recorded for {name!r}")
        ordered = sorted(values)
        total = sum(ordered)
        return cls(
            name=name,
            count=len(ordered),
            total=total,
            minimum=ordered[0],
            maximum=ordered[-1],
            mean=total / len(ordered),
            p50=percentile(ordered, 50),
            p95=percentile(ordered, 95),
            p99=percentile(ordered, 99),
        )

    def to_line(self) -> str:
        return (
            f"{self.name}: n={self.count} min={self.minimum:.4f} max={self.maximum:.4f} "
            f"mean={self.mean:.4f} p50={self.p50:.4f} p95={self.p95:.4f} p99={self.p99:.4f}"
        )


@dataclass(frozen=True)
class PipelineMetricsSummary:
    """Metrics for one completed run.

    Attributes:
        run_id: The run these metrics belong to.
        total_duration: Wall-clock duration of the run in seconds.
        stage_durations: Seconds spent per stage name, in stage order.
        role_durations: Seconds spent in generator calls per role.
        total_role_calls: Number of generator calls made.
        failed_role_calls: Number of generator calls that failed.
        retry_count: Number of retries consumed.
        success: Whether the run succeeded.
    """

    run_id: str
    total_duration: float
    stage_durations: dict[str, float]
    role_durations: dict[str, float]
    total_role_calls: int
    failed_role_calls: int
    retry_count: int
    success: bool

    @property
    def average_stage_duration(self) -> float:
        if not self.stage_durations:
            return 0.0
        return sum(self.stage_durations.values()) / len(self.stage_durations)

    @property
    def slowest_stage(self) -> tuple[str, float] | None:
        if not self.stage_durations:
            return None
        return max(self.stage_durations.items(), key=lambda item: item[1])

    @property
    def slowest_role(self) -> tuple[str, float] | None:
        if not self.role_durations:
            return None
        return max(self.role_durations.items(), key=lambda item: item[1])


@dataclass
class _RunAggregate:
    """Mutable per-run accumulator, owned by the collector under its lock."""

    started: float
    stage_starts: dict[str, float] = field(default_factory=dict)
    stage_durations: dict[str, float] = field(default_factory=dict)
    role_durations: dict[str, float] = field(default_factory=lambda: defaultdict(float))
    role_calls: int = 0
    failed_role_calls: int = 0
    retries: int = 0


@dataclass(frozen=True)
class MetricsReport:
    """Snapshot of all statistics plus the retained run summaries."""

    statistics: dict[str, MetricStatistics]
    summaries: tuple[PipelineMetricsSummary, ...]
    active_runs: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success_rate(self) -> float | None:
        if not self.summaries:
            return None
        return sum(1 for s in self.summaries if s.success) / len(self.summaries)

    def to_text(self) -> str:
        lines = [f"Metrics report ({len(self.summaries)} completed runs, {self.active_runs} active)"]
        if self.success_rate is not None:
            lines.append(f"  success rate: {self.success_rate:.0%}")
        for name in sorted(self.statistics):
            lines.append(f"  {self.statistics[name].to_line()}")
        return "\n".join(lines)


class MetricsCollector:
    """Thread-safe collector of samples and per-run aggregates.

    Args:
        max_samples: Maximum samples retained (oldest evicted first).
            ``0`` disables the cap.
    """

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES) -> None:
        if max_samples < 0:
            raise ValueError(f"max_samples must be >= 0, got {max_samples}")
        self._samples: deque[MetricSample] = deque(maxlen=max_samples or None)
        self._runs: dict[str, _RunAggregate] = {}
        self._summaries: deque[PipelineMetricsSummary] = deque(maxlen=_MAX_RETAINED_SUMMARIES)
        self._lock = threading.Lock()

    # --- Run lifecycle ---

    def start_run(self, run_id: str) -> None:
        """Begin aggregating a run.

        Raises:
            MetricsUsageError: If the run is already active.
        """
        with self._lock:
            if run_id in self._runs:
                raise MetricsUsageError(f"run {run_id!r} already started")
            self._runs[run_id] = _RunAggregate(started=time.perf_counter())

    def end_run(self, run_id: str, *, success: bool) -> PipelineMetricsSummary:
        """Finish a run and return its summary.

        Raises:
            MetricsUsageError: If the run was never started or already ended.
        """
        with self._lock:
            aggregate = self._runs.pop(run_id, None)
            if aggregate is None:
                raise MetricsUsageError(f"run {run_id!r} was never started")
            summary = PipelineMetricsSummary(
                run_id=run_id,
                total_duration=time.perf_counter() - aggregate.started,
                stage_durations=dict(aggregate.stage_durations),
                role_durations=dict(aggregate.role_durations),
                total_role_calls=aggregate.role_calls,
                failed_role_calls=aggregate.failed_role_calls,
                retry_count=aggregate.retries,
                success=success,
            )
            self._summaries.append(summary)
            self._samples.append(
                MetricSample(
                    PIPELINE_DURATION,
                    MetricType.DURATION,
                    summary.total_duration,
                    {"success": str(success).lower()},
                    run_id,
                )
            )
        log.debug(
            "metrics_run_ended",
            metrics_run_id=run_id,
            duration=round(summary.total_duration, 4),
            success=success,
        )
        return summary

    def start_stage(self, run_id: str, stage: str) -> None:
        with self._lock:
            self._require_run(run_id).stage_starts[stage] = time.perf_counter()

    def end_stage(self, run_id: str, stage: str) -> float:
        """Close a stage opened with :meth:`start_stage` and return its duration.

        Raises:
            MetricsUsageError: If the run or the stage was never started.
        """
        with self._lock:
            aggregate = self._require_run(run_id)
            started = aggregate.stage_starts.pop(stage, None)
            if started is None:
                raise MetricsUsageError(f"stage {stage!r} of run {run_id!r} was never started")
            duration = time.perf_counter() - started
            aggregate.stage_durations[stage] = duration
            self._samples.append(
                MetricSample(STAGE_DURATION, MetricType.DURATION, duration, {"stage": stage}, run_id)
            )
        return duration

    def record_role_call(
        self, run_id: str, role: str, duration: float, *, success: bool = True
    ) -> None:
        with self._lock:
            aggregate = self._require_run(run_id)
            aggregate.role_durations[role] += duration
            aggregate.role_calls += 1
            if not success:
                aggregate.failed_role_calls += 1
            tags = {"role": role, "success": str(success).lower()}
            self._samples.append(MetricSample(ROLE_DURATION, MetricType.DURATION, duration, tags, run_id))
            self._samples.append(MetricSample(ROLE_CALLS, MetricType.COUNTER, 1.0, tags, run_id))

    def record_retry(self, run_id: str) -> int:
        """Count a consumed retry and return the run's retry total."""
        with self._lock:
            aggregate = self._require_run(run_id)
            aggregate.retries += 1
            self._samples.append(MetricSample(RETRIES, MetricType.COUNTER, 1.0, {}, run_id))
            return aggregate.retries

    def is_active(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._runs

    def _require_run(self, run_id: str) -> _RunAggregate:
        aggregate = self._runs.get(run_id)
        if aggregate is None:
            raise MetricsUsageError(f"run {run_id!r} is not active")
        return aggregate

    # --- Free-form samples ---

    def record_sample(self, sample: MetricSample) -> None:
        with self._lock:
            self._samples.append(sample)

    def increment_counter(
        self, name: str, amount: float = 1.0, tags: dict[str, str] | None = None
    ) -> None:
        self.record_sample(MetricSample(name, MetricType.COUNTER, amount, tags or {}))

    def record_duration(
        self, name: str, seconds: float, tags: dict[str, str] | None = None
    ) -> None:
        self.record_sample(MetricSample(name, MetricType.DURATION, seconds, tags or {}))

    def record_gauge(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.record_sample(MetricSample(name, MetricType.GAUGE, value, tags or {}))

    @contextmanager
    def measure(self, name: str, tags: dict[str, str] | None = None) -> Iterator[None]:
        """Record the duration of the enclosed block, even if it raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_duration(name, time.perf_counter() - started, tags)

    # --- Queries ---

    def get_samples(self, name: str | None = None, *, run_id: str | None = None) -> list[MetricSample]:
        with self._lock:
            snapshot = list(self._samples)
        return [
            s
            for s in snapshot
            if (name is None or s.name == name) and (run_id is None or s.run_id == run_id)
        ]

    def get_statistics(self, name: str) -> MetricStatistics | None:
        values = [s.value for s in self.get_samples(name)]
        if not values:
            return None
        return MetricStatistics.from_values(name, values)

    def get_all_statistics(self) -> dict[str, MetricStatistics]:
        grouped: dict[str, list[float]] = defaultdict(list)
        for sample in self.get_samples():
            grouped[sample.name].append(sample.value)
        return {name: MetricStatistics.from_values(name, values) for name, values in grouped.items()}

    def get_summary(self, run_id: str) -> PipelineMetricsSummary | None:
        """Summary of a completed run, if still retained."""
        with self._lock:
            for summary in reversed(self._summaries):
                if summary.run_id == run_id:
                    return summary
        return None

    def generate_report(self) -> MetricsReport:
        statistics = self.get_all_statistics()
        with self._lock:
            summaries = tuple(self._summaries)
            active = len(self._runs)
        return MetricsReport(statistics=statistics, summaries=summaries, active_runs=active)

    @property
    def sample_count(self) -> int:
        with self._lock:
            return len(self._samples)

    def clear(self) -> None:
        """Drop all samples and completed summaries. Active runs are kept."""
        with self._lock:
            self._samples.clear()
            self._summaries.clear()
