"""Tests for the per-run pipeline event log."""

from __future__ import annotations

from narratum.observability import PipelineEvent, PipelineEventLog, PipelineEventType


class TestPipelineEventLog:
    def test_history_is_per_run_and_ordered(self) -> None:
        events = PipelineEventLog()
        events.run_started("r1", "dialogue")
        events.run_started("r2", "summarize")
        events.stage_started("r1", "context_building")
        events.stage_completed("r1", "context_building", 0.01)
        events.run_finished("r1", success=True)

        history = events.history("r1")

        assert [e.event_type for e in history] == [
            PipelineEventType.RUN_STARTED,
            PipelineEventType.STAGE_STARTED,
            PipelineEventType.STAGE_COMPLETED,
            PipelineEventType.RUN_SUCCEEDED,
        ]
        assert history[0].data == {"intent": "dialogue"}

    def test_failed_run_uses_reason(self) -> None:
        events = PipelineEventLog()

        event = events.run_finished("r1", success=False, reason="Pipeline timed out")

        assert event.event_type == PipelineEventType.RUN_FAILED
        assert event.message == "Pipeline timed out"

    def test_failed_run_without_reason(self) -> None:
        event = PipelineEventLog().run_finished("r1", success=False)

        assert event.message == "Run failed"

    def test_stage_failed_carries_duration(self) -> None:
        event = PipelineEventLog().stage_failed("r1", "generation", "boom", 0.123456)

        assert event.stage == "generation"
        assert event.message == "boom"
        assert event.data == {"duration": 0.1235}

    def test_role_called_includes_error_only_on_failure(self) -> None:
        events = PipelineEventLog()

        ok = events.role_called("r1", "narrator", 0.2, success=True)
        failed = events.role_called("r1", "narrator", 0.2, success=False, error="down")

        assert "error" not in ok.data
        assert failed.data["error"] == "down"
        assert failed.data["success"] is False

    def test_retry_event(self) -> None:
        event = PipelineEventLog().retry("r1", 1, "content too short")

        assert event.event_type == PipelineEventType.RETRY
        assert event.data == {"attempt": 1}

    def test_bounded(self) -> None:
        events = PipelineEventLog(max_events=2)
        for i in range(3):
            events.record(PipelineEvent("r1", PipelineEventType.RETRY, f"retry {i}"))

        assert events.count == 2
        assert [e.message for e in events.history("r1")] == ["retry 1", "retry 2"]

    def test_clear(self) -> None:
        events = PipelineEventLog()
        events.run_started("r1", "dialogue")

        events.clear()

        assert events.count == 0
        assert events.history("r1") == []
