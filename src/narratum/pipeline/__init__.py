"""Pipeline orchestration: stages, retries and run results."""

from narratum.pipeline.config import PipelineConfig, PipelineConfigError, load_pipeline_config
from narratum.pipeline.context import ContextAssembler, DefaultContextAssembler
from narratum.pipeline.errors import (
    ContextAssemblyError,
    GenerationAttemptError,
    IntegrationError,
    InvalidTransitionError,
    PipelineError,
    PromptCompositionError,
    StageFailedError,
)
from narratum.pipeline.executor import AgentExecutionCoordinator
from narratum.pipeline.orchestrator import PipelineOrchestrator
from narratum.pipeline.prompts import INTENT_ROLES, DefaultPromptComposer, PromptComposer
from narratum.pipeline.types import (
    TIMEOUT_REASON,
    PipelineResult,
    RunState,
    StageKind,
    StageOutcome,
    StageStatus,
)

__all__ = [
    "INTENT_ROLES",
    "TIMEOUT_REASON",
    "AgentExecutionCoordinator",
    "ContextAssembler",
    "ContextAssemblyError",
    "DefaultContextAssembler",
    "DefaultPromptComposer",
    "GenerationAttemptError",
    "IntegrationError",
    "InvalidTransitionError",
    "PipelineConfig",
    "PipelineConfigError",
    "PipelineError",
    "PipelineOrchestrator",
    "PipelineResult",
    "PromptComposer",
    "PromptCompositionError",
    "RunState",
    "StageFailedError",
    "StageKind",
    "StageOutcome",
    "StageStatus",
    "load_pipeline_config",
]
