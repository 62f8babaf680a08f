"""Validation of generated text and retry policies."""

from narratum.validation.coherence import (
    CoherenceCheckConfig,
    CoherenceReport,
    CoherenceValidator,
)
from narratum.validation.feedback import RetryFeedback
from narratum.validation.output import OutputValidator
from narratum.validation.retry import (
    ConditionalRetryPolicy,
    ExponentialBackoffRetryPolicy,
    FixedRetryPolicy,
    NoRetryPolicy,
    RetryContext,
    RetryPolicy,
)
from narratum.validation.structure import StructureValidator, StructureValidatorConfig
from narratum.validation.types import ValidationIssue, ValidationReport

__all__ = [
    "CoherenceCheckConfig",
    "CoherenceReport",
    "CoherenceValidator",
    "ConditionalRetryPolicy",
    "ExponentialBackoffRetryPolicy",
    "FixedRetryPolicy",
    "NoRetryPolicy",
    "OutputValidator",
    "RetryContext",
    "RetryFeedback",
    "RetryPolicy",
    "StructureValidator",
    "StructureValidatorConfig",
    "ValidationIssue",
    "ValidationReport",
]
