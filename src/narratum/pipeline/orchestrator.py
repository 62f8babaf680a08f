"""Pipeline orchestrator: generate, validate, retry, assemble.

A run moves through context building, prompt building, one or more
generate/validate attempts, and integration. Every stage goes through the
same wrapper, which enforces the stage deadline and appends the outcome to
the run's timeline. A run-wide deadline bounds the whole sequence.

:meth:`PipelineOrchestrator.run` never raises for operational failures
(bad input, generator errors, timeouts, exhausted retries); it returns a
failed :class:`PipelineResult` instead.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

from narratum.models.narrative import NarrativeOutput
from narratum.models.roles import Role
from narratum.observability.audit import AuditCategory, AuditEntry, AuditSeverity, AuditTrail
from narratum.observability.events import PipelineEventLog
from narratum.observability.logging import get_logger
from narratum.observability.metrics import MetricsCollector, MetricsUsageError
from narratum.observability.tracing import generate_run_id, run_context
from narratum.pipeline.config import PipelineConfig
from narratum.pipeline.context import DefaultContextAssembler
from narratum.pipeline.errors import (
    IntegrationError,
    InvalidTransitionError,
    PipelineError,
    StageFailedError,
)
from narratum.pipeline.executor import AgentExecutionCoordinator
from narratum.pipeline.instrumentation import instrument
from narratum.pipeline.prompts import DefaultPromptComposer
from narratum.pipeline.run import PipelineRun
from narratum.pipeline.types import (
    TIMEOUT_REASON,
    PipelineResult,
    RunState,
    StageKind,
    StageOutcome,
    StageStatus,
    stage_name,
)
from narratum.validation.coherence import CoherenceValidator
from narratum.validation.feedback import RetryFeedback
from narratum.validation.output import OutputValidator
from narratum.validation.retry import FixedRetryPolicy, RetryContext
from narratum.validation.structure import StructureValidator

if TYPE_CHECKING:
    from narratum.llm.base import TextGenerator
    from narratum.models.narrative import (
        NarrativeContext,
        NarrativeIntent,
        PromptSet,
        RawOutput,
        WorldSnapshot,
    )
    from narratum.observability.audit import AuditReport
    from narratum.observability.events import PipelineEvent
    from narratum.observability.metrics import MetricsReport
    from narratum.pipeline.context import ContextAssembler
    from narratum.pipeline.prompts import PromptComposer
    from narratum.validation.retry import RetryPolicy
    from narratum.validation.types import ValidationReport

log = get_logger(__name__)

T = TypeVar("T")

# Errors quoted in a validation failure reason.
MAX_REASON_ERRORS = 3


class RunAborted(PipelineError):
    """Ends a run early with a failure reason. Never leaves the orchestrator."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class PipelineOrchestrator:
    """Runs narrative requests through the generation pipeline.

    The audit trail, metrics collector and event log are injected so that
    several orchestrators (or tests) can share or isolate them; when omitted
    a fresh instance sized by ``config`` is created.

    Args:
        generator: The text generator to call.
        config: Pipeline settings. Defaults to :class:`PipelineConfig`.
        audit: Audit trail receiving pipeline decisions.
        metrics: Metrics collector receiving timings and counters.
        events: Event log receiving the technical history of each run.
        retry_policy: Policy consulted after each failed attempt. Defaults
            to a fixed policy built from ``config``.
        context_assembler: Builds the narrative context.
        prompt_composer: Builds the prompt set and applies retry feedback.
        validator: Validates each attempt. Defaults to the structural and
            coherence validators enabled in ``config``.
    """

    def __init__(
        self,
        generator: TextGenerator,
        *,
        config: PipelineConfig | None = None,
        audit: AuditTrail | None = None,
        metrics: MetricsCollector | None = None,
        events: PipelineEventLog | None = None,
        retry_policy: RetryPolicy | None = None,
        context_assembler: ContextAssembler | None = None,
        prompt_composer: PromptComposer | None = None,
        validator: OutputValidator | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.generator = generator
        self.audit = audit if audit is not None else AuditTrail(self.config.audit_max_entries)
        self.metrics = (
            metrics if metrics is not None else MetricsCollector(self.config.metrics_max_samples)
        )
        self.events = events if events is not None else PipelineEventLog()
        self.retry_policy = retry_policy or FixedRetryPolicy(
            max_retries=self.config.max_retries, delay=self.config.retry_delay
        )
        self.context_assembler = context_assembler or DefaultContextAssembler()
        self.prompt_composer = prompt_composer or DefaultPromptComposer()
        self.validator = validator or self._build_validator()
        self._executor = AgentExecutionCoordinator(generator, self.audit, self.metrics, self.events)

    def _build_validator(self) -> OutputValidator:
        return OutputValidator(
            structure=(
                StructureValidator(self.config.structure)
                if self.config.enable_structure_validation
                else None
            ),
            coherence=(
                CoherenceValidator(self.config.coherence)
                if self.config.enable_coherence_validation
                else None
            ),
        )

    # --- Public API ---

    async def run(self, world: WorldSnapshot, intent: NarrativeIntent) -> PipelineResult:
        """Execute one request end to end.

        Args:
            world: The caller's world state, by value.
            intent: What to generate.

        Returns:
            A succeeded or failed result carrying the stage timeline.

        Raises:
            MetricsUsageError: If the injected metrics collector is misused.
            InvalidTransitionError: On an internal state-machine defect.
            asyncio.CancelledError: If the caller cancelled the run. Metrics,
                audit and event records of the run are closed first.
        """
        run = PipelineRun(run_id=generate_run_id(), intent=intent)
        with run_context(run.run_id):
            instrument(self.metrics.start_run, run.run_id)
            instrument(self.events.run_started, run.run_id, intent.intent_type.value)
            instrument(
                self.audit.record_decision,
                run.run_id,
                "run_started",
                f"Run started for {intent.intent_type.value}",
                details={"intent": intent.intent_type.value, "generator": self.generator.name},
            )
            try:
                async with asyncio.timeout(self.config.global_timeout) as deadline:
                    run.deadline = deadline
                    output = await self._execute(run, world, intent)
            except asyncio.CancelledError:
                self._finish_cancelled(run)
                raise
            except TimeoutError:
                return self._finish_failed(run, TIMEOUT_REASON)
            except RunAborted as e:
                return self._finish_failed(run, e.reason)
            except (MetricsUsageError, InvalidTransitionError):
                raise
            except Exception as e:
                log.exception("pipeline_unexpected_error", error=str(e))
                instrument(
                    self.audit.record_critical_error, run.run_id, "Unexpected pipeline error", e
                )
                return self._finish_failed(run, f"Unexpected error: {type(e).__name__}: {e}")
            return self._finish_succeeded(run, output)

    async def is_ready(self) -> bool:
        """Whether the generator reports itself healthy. Never raises."""
        try:
            async with asyncio.timeout(self.config.stage_timeout):
                return bool(await self.generator.is_healthy())
        except Exception as e:
            log.warning("health_probe_failed", generator=self.generator.name, error=str(e))
            return False

    def get_audit_report(self, run_id: str | None = None) -> AuditReport:
        return self.audit.generate_report(run_id)

    def get_metrics_report(self) -> MetricsReport:
        return self.metrics.generate_report()

    def get_run_history(self, run_id: str) -> list[PipelineEvent]:
        return self.events.history(run_id)

    # --- Run sequence ---

    async def _execute(
        self, run: PipelineRun, world: WorldSnapshot, intent: NarrativeIntent
    ) -> NarrativeOutput:
        self._transition(run, RunState.CONTEXT_BUILDING)
        context = await self._stage_or_abort(
            run,
            StageKind.CONTEXT_BUILDING,
            lambda: self.context_assembler.assemble(world, intent),
            "Context building failed",
        )
        instrument(
            self.audit.record_decision,
            run.run_id,
            "context_built",
            f"Context built for world {context.world_name}",
            details={
                "entities": len(context.entities),
                "facts": context.canonical_state.fact_count if context.canonical_state else None,
            },
        )

        self._transition(run, RunState.PROMPT_BUILDING)
        prompts = await self._stage_or_abort(
            run,
            StageKind.PROMPT_BUILDING,
            lambda: self.prompt_composer.compose(context),
            "Prompt building failed",
        )

        raw = await self._generate_until_valid(run, context, prompts)

        self._transition(run, RunState.INTEGRATING)
        return await self._stage_or_abort(
            run,
            StageKind.INTEGRATION,
            lambda: self._integrate(raw, run),
            "Integration failed",
        )

    async def _generate_until_valid(
        self, run: PipelineRun, context: NarrativeContext, prompts: PromptSet
    ) -> RawOutput:
        """Generate and validate until an attempt passes or retries run out.

        Raises:
            RunAborted: When the final permitted attempt fails.
        """
        attempt = 1
        current = prompts
        while True:
            self._transition(run, RunState.GENERATING)
            report: ValidationReport | None = None
            generation_failed = False
            try:
                raw = await self._run_stage(
                    run,
                    StageKind.GENERATION,
                    lambda p=current: self._executor.execute(
                        run.run_id, p, parallel=self.config.parallel_roles
                    ),
                    attempt,
                )
            except StageFailedError as e:
                errors = [e.reason]
                generation_failed = True
            else:
                self._transition(run, RunState.VALIDATING)
                try:
                    report = await self._run_stage(
                        run,
                        StageKind.VALIDATION,
                        lambda r=raw: self._validate(r, context),
                        attempt,
                    )
                except StageFailedError as e:
                    errors = [e.reason]
                else:
                    run.last_report = report
                    run.warning_messages.extend(report.warning_messages)
                    if report.is_valid:
                        instrument(
                            self.audit.record_decision,
                            run.run_id,
                            "validation_passed",
                            f"Attempt {attempt} passed validation ({report.summary})",
                            actor="validator",
                            details={"attempt": attempt, "warnings": report.warning_messages},
                        )
                        return raw
                    errors = report.error_messages
                    instrument(
                        self.audit.record_validation_failure, run.run_id, errors, attempt=attempt
                    )

            run.error_messages.extend(errors)
            retry_context = RetryContext(
                error_messages=tuple(run.error_messages),
                warning_messages=tuple(run.warning_messages),
                elapsed_seconds=run.elapsed,
                last_errors=tuple(errors),
                metadata={"attempt": attempt, "run_id": run.run_id},
            )
            if run.retry_count >= self.config.max_retries or not self.retry_policy.should_retry(
                attempt, retry_context
            ):
                raise RunAborted(self._failure_reason(run.retry_count, errors, generation_failed))

            delay = max(0.0, float(self.retry_policy.delay(attempt)))
            run.retry_count += 1
            instrument(self.audit.record_retry, run.run_id, run.retry_count, errors[0], delay)
            instrument(self.metrics.record_retry, run.run_id)
            instrument(self.events.retry, run.run_id, run.retry_count, errors[0])
            instrument(self.retry_policy.on_retry, attempt, retry_context)
            if delay:
                await asyncio.sleep(delay)
            if self.config.include_feedback_on_retry and report is not None:
                current = self.prompt_composer.with_feedback(
                    prompts, RetryFeedback.from_report(report)
                )
            attempt += 1

    async def _validate(self, raw: RawOutput, context: NarrativeContext) -> ValidationReport:
        return self.validator.validate(raw, context)

    async def _integrate(self, raw: RawOutput, run: PipelineRun) -> NarrativeOutput:
        usable = [r for r in raw.responses if r.has_content]
        if not usable:
            raise IntegrationError("no role produced usable text")
        narrator = raw.get(Role.NARRATOR)
        text = narrator.content if narrator is not None and narrator.has_content else usable[0].content
        return NarrativeOutput(
            text=text,
            role_texts={r.role: r.content for r in usable},
            warnings=tuple(run.last_report.warning_messages) if run.last_report else (),
            total_tokens=sum(r.prompt_tokens + r.completion_tokens for r in raw.responses),
        )

    @staticmethod
    def _failure_reason(retries: int, errors: list[str], generation_failed: bool) -> str:
        if generation_failed:
            return f"Generation failed after {retries} retries: {errors[0]}"
        return f"Validation failed after {retries} retries: " + "; ".join(
            errors[:MAX_REASON_ERRORS]
        )

    # --- Stage wrapper ---

    async def _stage_or_abort(
        self,
        run: PipelineRun,
        kind: StageKind,
        body: Callable[[], Awaitable[T]],
        failure_prefix: str,
    ) -> T:
        try:
            return await self._run_stage(run, kind, body)
        except StageFailedError as e:
            raise RunAborted(f"{failure_prefix}: {e.reason}") from e

    async def _run_stage(
        self,
        run: PipelineRun,
        kind: StageKind,
        body: Callable[[], Awaitable[T]],
        attempt: int = 1,
    ) -> T:
        """Run one stage body under the stage deadline and record its outcome.

        Raises:
            StageFailedError: If the body raised or hit the stage deadline.
            asyncio.CancelledError: If the run deadline expired or the caller
                cancelled the run; the outcome is recorded first.
        """
        name = stage_name(kind, attempt)
        instrument(self.events.stage_started, run.run_id, name)
        instrument(self.metrics.start_stage, run.run_id, name)
        started = time.perf_counter()
        status = StageStatus.COMPLETED
        error: str | None = None
        try:
            async with asyncio.timeout(self.config.stage_timeout):
                return await body()
        except TimeoutError:
            status = StageStatus.TIMED_OUT
            error = f"stage timed out after {self.config.stage_timeout}s"
            raise StageFailedError(name, error, timed_out=True) from None
        except asyncio.CancelledError:
            if run.deadline_passed():
                status, error = StageStatus.TIMED_OUT, TIMEOUT_REASON
            else:
                status, error = StageStatus.CANCELLED, "cancelled"
            raise
        except (MetricsUsageError, InvalidTransitionError):
            status, error = StageStatus.FAILED, "usage error"
            raise
        except Exception as e:
            status = StageStatus.FAILED
            error = str(e) or type(e).__name__
            raise StageFailedError(name, error) from e
        finally:
            duration = time.perf_counter() - started
            run.record(
                StageOutcome(
                    name=name,
                    kind=kind,
                    status=status,
                    duration_seconds=duration,
                    attempt=attempt,
                    error=error,
                )
            )
            instrument(self.metrics.end_stage, run.run_id, name)
            if status == StageStatus.COMPLETED:
                instrument(self.events.stage_completed, run.run_id, name, duration)
            else:
                instrument(self.events.stage_failed, run.run_id, name, error or status.value, duration)

    # --- Run completion ---

    def _transition(self, run: PipelineRun, state: RunState) -> None:
        previous = run.transition(state)
        instrument(
            self.audit.record,
            AuditEntry.state_change(run.run_id, previous.value, state.value),
        )

    def _finish_failed(self, run: PipelineRun, reason: str) -> PipelineResult:
        self._transition(run, RunState.FAILED)
        instrument(
            self.audit.record,
            AuditEntry(
                run_id=run.run_id,
                action="run_failed",
                actor="orchestrator",
                description=reason,
                severity=AuditSeverity.ERROR,
                category=AuditCategory.PIPELINE,
                details={"retries": run.retry_count, "stages": len(run.timeline())},
            ),
        )
        summary = instrument(self.metrics.end_run, run.run_id, success=False)
        instrument(self.events.run_finished, run.run_id, success=False, reason=reason)
        return PipelineResult(
            run_id=run.run_id,
            status=RunState.FAILED,
            failure_reason=reason,
            stages=run.timeline(),
            retry_count=run.retry_count,
            duration_seconds=run.elapsed,
            validation=run.last_report,
            metrics=summary,
        )

    def _finish_cancelled(self, run: PipelineRun) -> None:
        log.warning("pipeline_cancelled", state=run.state.value, retries=run.retry_count)
        instrument(
            self.audit.record,
            AuditEntry(
                run_id=run.run_id,
                action="run_cancelled",
                actor="orchestrator",
                description=f"Run cancelled by caller during {run.state.value}",
                severity=AuditSeverity.WARNING,
                category=AuditCategory.PIPELINE,
                details={"retries": run.retry_count, "stages": len(run.timeline())},
            ),
        )
        instrument(self.metrics.end_run, run.run_id, success=False)
        instrument(self.events.run_finished, run.run_id, success=False, reason="cancelled")

    def _finish_succeeded(self, run: PipelineRun, output: NarrativeOutput) -> PipelineResult:
        self._transition(run, RunState.SUCCEEDED)
        instrument(
            self.audit.record_decision,
            run.run_id,
            "run_completed",
            f"Run succeeded after {run.retry_count} retries",
            details={"chars": len(output.text), "warnings": len(output.warnings)},
        )
        summary = instrument(self.metrics.end_run, run.run_id, success=True)
        instrument(self.events.run_finished, run.run_id, success=True)
        return PipelineResult(
            run_id=run.run_id,
            status=RunState.SUCCEEDED,
            output=output,
            stages=run.timeline(),
            retry_count=run.retry_count,
            duration_seconds=run.elapsed,
            validation=run.last_report,
            metrics=summary,
        )
