"""Tests for the pipeline orchestrator."""

from __future__ import annotations

import asyncio
import dataclasses
import time
from unittest.mock import MagicMock

import pytest

from narratum.llm import (
    GeneratorError,
    MockGeneratorConfig,
    MockTextGenerator,
    ScriptedTextGenerator,
    StaticTextGenerator,
)
from narratum.models import IntentType, NarrativeIntent, Role, WorldSnapshot
from narratum.observability import (
    AuditTrail,
    MetricsCollector,
    MetricsUsageError,
    PipelineEventLog,
    PipelineEventType,
)
from narratum.pipeline import (
    TIMEOUT_REASON,
    DefaultPromptComposer,
    PipelineConfig,
    PipelineOrchestrator,
    RunState,
    StageKind,
    StageStatus,
)
from narratum.validation import (
    ExponentialBackoffRetryPolicy,
    FixedRetryPolicy,
    NoRetryPolicy,
    RetryContext,
)

GOOD = "The wind rose over the hills and the travellers pressed on toward the distant keep."


class BrokenAudit(AuditTrail):
    def record(self, entry):  # type: ignore[override]
        raise RuntimeError("audit storage unavailable")


class BrokenMetrics(MetricsCollector):
    def record_role_call(self, *args, **kwargs):  # type: ignore[override]
        raise OSError("metrics sink unavailable")

    def record_retry(self, run_id: str) -> int:
        raise OSError("metrics sink unavailable")


class FeedbackCrashComposer(DefaultPromptComposer):
    def with_feedback(self, prompts, feedback):  # type: ignore[override]
        raise RuntimeError("feedback template missing")


def _orchestrator(generator, config: PipelineConfig | None = None, **kwargs) -> PipelineOrchestrator:
    return PipelineOrchestrator(generator, config=config or PipelineConfig.for_testing(), **kwargs)


# --- Happy Path Tests ---


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_healthy_generator_succeeds(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        result = await _orchestrator(MockTextGenerator()).run(world, intent)

        assert result.succeeded
        assert result.status == RunState.SUCCEEDED
        assert result.text
        assert result.failure_reason is None
        assert result.retry_count == 0
        assert result.stage_names == (
            "context_building",
            "prompt_building",
            "generation",
            "validation",
            "integration",
        )
        assert all(s.status == StageStatus.COMPLETED for s in result.stages)
        assert result.validation is not None and result.validation.is_valid

    @pytest.mark.asyncio
    async def test_metrics_summary_attached(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        result = await _orchestrator(MockTextGenerator()).run(world, intent)

        assert result.metrics is not None
        assert result.metrics.success is True
        assert result.metrics.total_role_calls == 1
        assert set(result.metrics.stage_durations) == set(result.stage_names)

    @pytest.mark.asyncio
    async def test_dialogue_prefers_narrator_text(self, world: WorldSnapshot) -> None:
        generator = MockTextGenerator(
            MockGeneratorConfig(role_responses={"narrator": GOOD, "character": "Tomas said: we ride."})
        )
        intent = NarrativeIntent(IntentType.GENERATE_DIALOGUE)

        result = await _orchestrator(generator).run(world, intent)

        assert result.text == GOOD
        assert set(result.output.role_texts) == {Role.NARRATOR, Role.CHARACTER}
        assert result.output.total_tokens > 0

    @pytest.mark.asyncio
    async def test_summary_intent_uses_summary_text(self, world: WorldSnapshot) -> None:
        result = await _orchestrator(StaticTextGenerator(GOOD)).run(
            world, NarrativeIntent(IntentType.SUMMARIZE)
        )

        assert result.output.role_texts == {Role.SUMMARY: GOOD}
        assert result.text == GOOD

    @pytest.mark.asyncio
    async def test_warnings_do_not_block(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        config = PipelineConfig.for_testing()
        config.structure.default_max_length = 20

        result = await _orchestrator(StaticTextGenerator(GOOD), config).run(world, intent)

        assert result.succeeded
        assert result.output.warnings
        assert "too long" in result.output.warnings[0]

    @pytest.mark.asyncio
    async def test_parallel_roles(self, world: WorldSnapshot) -> None:
        config = dataclasses.replace(PipelineConfig.for_testing(), parallel_roles=True)

        result = await _orchestrator(StaticTextGenerator(GOOD), config).run(
            world, NarrativeIntent(IntentType.RESOLVE_CONFLICT)
        )

        assert result.succeeded
        assert set(result.output.role_texts) == {Role.NARRATOR, Role.CONSISTENCY}


# --- Retry Tests ---


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_then_succeed(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        generator = ScriptedTextGenerator(["short", GOOD])

        result = await _orchestrator(generator).run(world, intent)

        assert result.succeeded
        assert result.retry_count == 1
        assert result.stage_names == (
            "context_building",
            "prompt_building",
            "generation",
            "validation",
            "generation_retry1",
            "validation_retry1",
            "integration",
        )
        assert [s.attempt for s in result.stages_of(StageKind.GENERATION)] == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_prompt_carries_feedback(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        generator = ScriptedTextGenerator(["short", GOOD])

        await _orchestrator(generator).run(world, intent)

        assert "PREVIOUS ATTEMPT REJECTED" not in generator.calls[0].user_prompt
        assert "PREVIOUS ATTEMPT REJECTED. Write longer passages." in generator.calls[1].user_prompt

    @pytest.mark.asyncio
    async def test_feedback_can_be_disabled(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        config = dataclasses.replace(PipelineConfig.for_testing(), include_feedback_on_retry=False)
        generator = ScriptedTextGenerator(["short", GOOD])

        await _orchestrator(generator, config).run(world, intent)

        assert generator.calls[1].user_prompt == generator.calls[0].user_prompt

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_with_summary(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        result = await _orchestrator(StaticTextGenerator("tiny")).run(world, intent)

        assert result.failed
        assert result.retry_count == 1
        assert result.failure_reason == (
            "Validation failed after 1 retries: narrator content too short (4 chars, min 10)"
        )
        assert result.output is None
        assert not result.validation.is_valid

    @pytest.mark.asyncio
    async def test_reason_quotes_at_most_three_errors(self, world: WorldSnapshot) -> None:
        config = dataclasses.replace(PipelineConfig.for_testing(), max_retries=0)
        config.structure.forbidden_patterns = ("a", "b", "c", "d")
        config.structure.treat_forbidden_patterns_as_error = True

        result = await _orchestrator(StaticTextGenerator("abcd abcd abcd"), config).run(
            world, NarrativeIntent(IntentType.CONTINUE_NARRATIVE)
        )

        assert result.failure_reason.count("forbidden text") == 3

    @pytest.mark.asyncio
    async def test_generation_failures_consume_retries(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        generator = MockTextGenerator(MockGeneratorConfig(failure_rate=1.0))

        result = await _orchestrator(generator).run(world, intent)

        assert result.failed
        assert result.retry_count == 1
        assert result.failure_reason.startswith("Generation failed after 1 retries:")
        assert generator.request_count == 2
        generation = result.stages_of(StageKind.GENERATION)
        assert [s.status for s in generation] == [StageStatus.FAILED, StageStatus.FAILED]
        assert not result.stages_of(StageKind.VALIDATION)

    @pytest.mark.asyncio
    async def test_max_retries_caps_permissive_policy(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        orchestrator = _orchestrator(
            StaticTextGenerator("tiny"), retry_policy=FixedRetryPolicy(max_retries=10, delay=0)
        )

        result = await orchestrator.run(world, intent)

        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_no_retry_policy(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        generator = ScriptedTextGenerator(["short", GOOD])

        result = await _orchestrator(generator, retry_policy=NoRetryPolicy()).run(world, intent)

        assert result.failed
        assert result.retry_count == 0
        assert len(generator.calls) == 1

    @pytest.mark.asyncio
    async def test_on_retry_hook_receives_failed_attempt(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        calls: list[tuple[int, RetryContext]] = []
        policy = FixedRetryPolicy(max_retries=1, delay=0, on_retry=lambda a, c: calls.append((a, c)))

        await _orchestrator(ScriptedTextGenerator(["short", GOOD]), retry_policy=policy).run(
            world, intent
        )

        assert [attempt for attempt, _ in calls] == [1]
        context = calls[0][1]
        assert context.last_errors == ("narrator content too short (5 chars, min 10)",)
        assert context.has_errors

    @pytest.mark.asyncio
    async def test_failing_hook_does_not_fail_run(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        def hook(attempt: int, context: RetryContext) -> None:
            raise RuntimeError("hook broke")

        policy = FixedRetryPolicy(max_retries=1, delay=0, on_retry=hook)

        result = await _orchestrator(ScriptedTextGenerator(["short", GOOD]), retry_policy=policy).run(
            world, intent
        )

        assert result.succeeded

    @pytest.mark.asyncio
    async def test_policy_delay_is_awaited(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        policy = ExponentialBackoffRetryPolicy(max_retries=1, initial_delay=0.05)
        started = time.perf_counter()

        await _orchestrator(ScriptedTextGenerator(["short", GOOD]), retry_policy=policy).run(
            world, intent
        )

        assert time.perf_counter() - started >= 0.05


# --- Failure Tests ---


class TestFailures:
    @pytest.mark.asyncio
    async def test_context_failure(self, intent: NarrativeIntent) -> None:
        result = await _orchestrator(MockTextGenerator()).run(WorldSnapshot(" "), intent)

        assert result.failed
        assert result.failure_reason == "Context building failed: world name is empty"
        assert result.stage_names == ("context_building",)
        assert result.stages[0].status == StageStatus.FAILED

    @pytest.mark.asyncio
    async def test_coherence_failure(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        generator = StaticTextGenerator("Mara walked into the hall and nobody spoke.")

        result = await _orchestrator(generator).run(world, intent)

        assert result.failed
        assert "Dead entity Mara appears to act" in result.failure_reason

    @pytest.mark.asyncio
    async def test_coherence_can_be_disabled(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        config = dataclasses.replace(PipelineConfig.for_testing(), enable_coherence_validation=False)
        generator = StaticTextGenerator("Mara walked into the hall and nobody spoke.")

        result = await _orchestrator(generator, config).run(world, intent)

        assert result.succeeded

    @pytest.mark.asyncio
    async def test_stage_timeout(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        config = PipelineConfig(max_retries=0, stage_timeout=0.05, global_timeout=5.0, retry_delay=0)
        generator = MockTextGenerator(MockGeneratorConfig(simulated_delay=2.0))

        result = await _orchestrator(generator, config).run(world, intent)

        assert result.failed
        assert result.failure_reason == "Generation failed after 0 retries: stage timed out after 0.05s"
        assert result.stages_of(StageKind.GENERATION)[0].status == StageStatus.TIMED_OUT

    @pytest.mark.asyncio
    async def test_global_timeout(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        config = PipelineConfig(max_retries=3, stage_timeout=5.0, global_timeout=0.05, retry_delay=0)
        generator = MockTextGenerator(MockGeneratorConfig(simulated_delay=2.0))

        result = await _orchestrator(generator, config).run(world, intent)

        assert result.failed
        assert result.timed_out
        assert result.failure_reason == TIMEOUT_REASON
        last = result.stages[-1]
        assert last.kind == StageKind.GENERATION
        assert last.status == StageStatus.TIMED_OUT
        assert result.duration_seconds < 1.0

    @pytest.mark.asyncio
    async def test_caller_cancellation_closes_run_records(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        audit, metrics, events = AuditTrail(), MetricsCollector(), PipelineEventLog()
        generator = MockTextGenerator(MockGeneratorConfig(simulated_delay=5.0))
        orchestrator = _orchestrator(generator, audit=audit, metrics=metrics, events=events)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(orchestrator.run(world, intent), 0.05)

        report = metrics.generate_report()
        assert report.active_runs == 0
        assert len(report.summaries) == 1
        assert report.summaries[0].success is False
        cancelled = audit.get_entries(action="run_cancelled")
        assert len(cancelled) == 1
        run_id = cancelled[0].run_id
        assert events.history(run_id)[-1].event_type == PipelineEventType.RUN_FAILED

    @pytest.mark.asyncio
    async def test_validation_stage_error(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        validator = MagicMock()
        validator.validate.side_effect = RuntimeError("validator crashed")
        config = dataclasses.replace(PipelineConfig.for_testing(), max_retries=0)

        result = await _orchestrator(MockTextGenerator(), config, validator=validator).run(world, intent)

        assert result.failed
        assert result.failure_reason == "Validation failed after 0 retries: validator crashed"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_a_failed_result(
        self, world: WorldSnapshot, intent: NarrativeIntent, audit: AuditTrail
    ) -> None:
        orchestrator = _orchestrator(
            ScriptedTextGenerator(["short", GOOD]), prompt_composer=FeedbackCrashComposer(), audit=audit
        )

        result = await orchestrator.run(world, intent)

        assert result.failed
        assert result.failure_reason == "Unexpected error: RuntimeError: feedback template missing"
        assert audit.get_entries(run_id=result.run_id, action="critical_error")


# --- Instrumentation Tests ---


class TestInstrumentation:
    @pytest.mark.asyncio
    async def test_audit_records_decisions(
        self, world: WorldSnapshot, intent: NarrativeIntent, audit: AuditTrail
    ) -> None:
        orchestrator = _orchestrator(ScriptedTextGenerator(["short", GOOD]), audit=audit)

        result = await orchestrator.run(world, intent)

        actions = [e.action for e in audit.get_entries(run_id=result.run_id)]
        assert actions[0] == "run_started"
        assert "context_built" in actions
        assert "validation_failed" in actions
        assert "retry_scheduled" in actions
        assert "validation_passed" in actions
        assert actions[-1] == "run_completed"
        transitions = [
            e.details["to"] for e in audit.get_entries(run_id=result.run_id, action="state_changed")
        ]
        assert transitions == [
            "context_building",
            "prompt_building",
            "generating",
            "validating",
            "generating",
            "validating",
            "integrating",
            "succeeded",
        ]

    @pytest.mark.asyncio
    async def test_failed_run_audited_as_error(
        self, world: WorldSnapshot, intent: NarrativeIntent, audit: AuditTrail
    ) -> None:
        result = await _orchestrator(StaticTextGenerator("tiny"), audit=audit).run(world, intent)

        report = audit.generate_report(result.run_id)
        assert report.has_problems
        assert any(e.action == "run_failed" for e in report.problems)

    @pytest.mark.asyncio
    async def test_broken_audit_never_fails_run(self, world: WorldSnapshot, intent: NarrativeIntent) -> None:
        result = await _orchestrator(MockTextGenerator(), audit=BrokenAudit()).run(world, intent)

        assert result.succeeded

    @pytest.mark.asyncio
    async def test_broken_metrics_sink_never_fails_run(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        orchestrator = _orchestrator(ScriptedTextGenerator(["short", GOOD]), metrics=BrokenMetrics())

        result = await orchestrator.run(world, intent)

        assert result.succeeded
        assert result.retry_count == 1

    @pytest.mark.asyncio
    async def test_metrics_usage_error_propagates(
        self, world: WorldSnapshot, intent: NarrativeIntent
    ) -> None:
        metrics = MagicMock(spec=MetricsCollector)
        metrics.start_run.side_effect = MetricsUsageError("run already started")

        with pytest.raises(MetricsUsageError):
            await _orchestrator(MockTextGenerator(), metrics=metrics).run(world, intent)

    @pytest.mark.asyncio
    async def test_run_history(
        self, world: WorldSnapshot, intent: NarrativeIntent, events: PipelineEventLog
    ) -> None:
        orchestrator = _orchestrator(MockTextGenerator(), events=events)

        result = await orchestrator.run(world, intent)
        history = orchestrator.get_run_history(result.run_id)

        assert history[0].event_type == PipelineEventType.RUN_STARTED
        assert history[-1].event_type == PipelineEventType.RUN_SUCCEEDED
        assert any(e.event_type == PipelineEventType.ROLE_CALLED for e in history)

    @pytest.mark.asyncio
    async def test_reports(
        self, world: WorldSnapshot, intent: NarrativeIntent, metrics: MetricsCollector
    ) -> None:
        orchestrator = _orchestrator(MockTextGenerator(), metrics=metrics)

        result = await orchestrator.run(world, intent)

        assert orchestrator.get_audit_report(result.run_id).total > 0
        metrics_report = orchestrator.get_metrics_report()
        assert metrics_report.success_rate == 1.0
        assert metrics_report.active_runs == 0


# --- Health Probe Tests ---


class TestIsReady:
    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        assert await _orchestrator(MockTextGenerator()).is_ready()

    @pytest.mark.asyncio
    async def test_unhealthy(self) -> None:
        generator = MockTextGenerator()
        generator.set_healthy(False)

        assert not await _orchestrator(generator).is_ready()

    @pytest.mark.asyncio
    async def test_probe_error_is_not_ready(self) -> None:
        generator = MagicMock()
        generator.name = "flaky"
        generator.is_healthy.side_effect = GeneratorError("flaky", "probe failed")

        assert not await _orchestrator(generator).is_ready()
