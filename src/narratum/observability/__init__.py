"""Observability for Narratum.

Provides structured logging, run id propagation, the audit trail of pipeline
decisions, the metrics collector and the per-run event log.
"""

from narratum.observability.audit import (
    AuditCategory,
    AuditEntry,
    AuditReport,
    AuditSeverity,
    AuditTrail,
)
from narratum.observability.events import PipelineEvent, PipelineEventLog, PipelineEventType
from narratum.observability.logging import (
    close_file_logging,
    configure_logging,
    get_log_path,
    get_logger,
)
from narratum.observability.metrics import (
    MetricsCollector,
    MetricSample,
    MetricsReport,
    MetricStatistics,
    MetricsUsageError,
    MetricType,
    PipelineMetricsSummary,
)
from narratum.observability.tracing import (
    generate_run_id,
    get_current_run_id,
    run_context,
    set_current_run_id,
)

__all__ = [
    "AuditCategory",
    "AuditEntry",
    "AuditReport",
    "AuditSeverity",
    "AuditTrail",
    "MetricSample",
    "MetricStatistics",
    "MetricType",
    "MetricsCollector",
    "MetricsReport",
    "MetricsUsageError",
    "PipelineEvent",
    "PipelineEventLog",
    "PipelineEventType",
    "PipelineMetricsSummary",
    "close_file_logging",
    "configure_logging",
    "generate_run_id",
    "get_current_run_id",
    "get_log_path",
    "get_logger",
    "run_context",
    "set_current_run_id",
]
