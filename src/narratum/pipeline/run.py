"""Mutable state of one in-flight pipeline run."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from narratum.pipeline.errors import InvalidTransitionError
from narratum.pipeline.types import ALLOWED_TRANSITIONS, RunState, StageOutcome

if TYPE_CHECKING:
    from narratum.models.narrative import NarrativeIntent
    from narratum.validation.types import ValidationReport


@dataclass
class PipelineRun:
    """State owned exclusively by the orchestrator while a run executes.

    The stage timeline is appended to during the run and handed out only as
    an immutable tuple via :meth:`timeline`.
    """

    run_id: str
    intent: NarrativeIntent
    state: RunState = RunState.PENDING
    retry_count: int = 0
    error_messages: list[str] = field(default_factory=list)
    warning_messages: list[str] = field(default_factory=list)
    last_report: ValidationReport | None = None
    started: float = field(default_factory=time.perf_counter)
    deadline: asyncio.Timeout | None = None
    _timeline: list[StageOutcome] = field(default_factory=list)

    def transition(self, new_state: RunState) -> RunState:
        """Move to ``new_state`` and return the previous state.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state.value, new_state.value)
        previous, self.state = self.state, new_state
        return previous

    def record(self, outcome: StageOutcome) -> None:
        self._timeline.append(outcome)

    def timeline(self) -> tuple[StageOutcome, ...]:
        return tuple(self._timeline)

    def deadline_passed(self) -> bool:
        """Whether the run-wide deadline has fired."""
        return self.deadline is not None and self.deadline.expired()

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started
