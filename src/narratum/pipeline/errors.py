"""Exceptions raised inside the pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base exception for pipeline errors."""


class StageFailedError(PipelineError):
    """Raised by the stage wrapper when a stage body raised or timed out.

    The orchestrator converts it into a failed run or a retry; it never
    leaves :meth:`PipelineOrchestrator.run`.
    """

    def __init__(self, stage: str, reason: str, *, timed_out: bool = False) -> None:
        self.stage = stage
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Stage '{stage}' failed: {reason}")


class InvalidTransitionError(PipelineError):
    """Raised on an illegal run-state transition. Indicates a defect."""

    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid run state transition {from_state} -> {to_state}")


class ContextAssemblyError(PipelineError):
    """Raised when the request cannot be turned into a narrative context."""


class PromptCompositionError(PipelineError):
    """Raised when no prompt set can be built for a context."""


class GenerationAttemptError(PipelineError):
    """Raised when no role of an attempt produced a response."""


class IntegrationError(PipelineError):
    """Raised when validated output cannot be assembled into a result."""
