"""Dispatching role prompts to the text generator."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from narratum.llm.base import GenerationRequest, GeneratorError
from narratum.models.narrative import ExecutionOrder, PromptSet, RawOutput, RolePrompt, RoleResponse
from narratum.observability.logging import get_logger
from narratum.pipeline.errors import GenerationAttemptError
from narratum.pipeline.instrumentation import instrument

if TYPE_CHECKING:
    from narratum.llm.base import TextGenerator
    from narratum.observability.audit import AuditTrail
    from narratum.observability.events import PipelineEventLog
    from narratum.observability.metrics import MetricsCollector

log = get_logger(__name__)


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


class AgentExecutionCoordinator:
    """Runs every prompt of a set against the generator.

    A call that raises, or that returns something other than text, becomes
    a failed :class:`RoleResponse`; the attempt as a whole fails only when
    no role got a response.
    """

    def __init__(
        self,
        generator: TextGenerator,
        audit: AuditTrail,
        metrics: MetricsCollector,
        events: PipelineEventLog,
    ) -> None:
        self._generator = generator
        self._audit = audit
        self._metrics = metrics
        self._events = events

    async def execute(self, run_id: str, prompts: PromptSet, *, parallel: bool = False) -> RawOutput:
        """Run all prompts and collect their responses in prompt order.

        Raises:
            GenerationAttemptError: If every call failed.
        """
        started = time.perf_counter()
        if parallel or prompts.order == ExecutionOrder.PARALLEL:
            responses = list(await asyncio.gather(*(self._call(run_id, p) for p in prompts.prompts)))
        else:
            responses = [await self._call(run_id, p) for p in prompts.prompts]

        output = RawOutput(responses=tuple(responses), duration_seconds=time.perf_counter() - started)
        if output.all_failed:
            details = "; ".join(f"{r.role}: {r.error}" for r in responses)
            raise GenerationAttemptError(f"all roles failed ({details})" if details else "no prompts")
        return output

    async def _call(self, run_id: str, prompt: RolePrompt) -> RoleResponse:
        role = prompt.role
        request = GenerationRequest(
            system_prompt=prompt.system_prompt,
            user_prompt=prompt.user_prompt,
            role=role.value,
            parameters=prompt.parameters,
            metadata={**prompt.metadata, "run_id": run_id},
        )
        started = time.perf_counter()
        try:
            response = await self._generator.generate(request)
        except GeneratorError as e:
            result = RoleResponse.failure(role, str(e), time.perf_counter() - started)
        except Exception as e:
            result = RoleResponse.failure(
                role, f"{type(e).__name__}: {e}", time.perf_counter() - started
            )
        else:
            duration = time.perf_counter() - started
            content = getattr(response, "content", None)
            if isinstance(content, str):
                result = RoleResponse(
                    role=role,
                    content=content,
                    duration_seconds=duration,
                    prompt_tokens=_as_count(getattr(response, "prompt_tokens", 0)),
                    completion_tokens=_as_count(getattr(response, "completion_tokens", 0)),
                )
            else:
                result = RoleResponse.failure(
                    role, f"generator returned {type(content).__name__} instead of text", duration
                )

        instrument(
            self._metrics.record_role_call,
            run_id,
            role.value,
            result.duration_seconds,
            success=result.success,
        )
        instrument(
            self._events.role_called,
            run_id,
            role.value,
            result.duration_seconds,
            success=result.success,
            error=result.error,
        )
        instrument(
            self._audit.record_agent_action,
            run_id,
            role.value,
            "generated" if result.success else "generation_failed",
            f"{len(result.content)} chars" if result.success else (result.error or "failed"),
            success=result.success,
        )
        return result
