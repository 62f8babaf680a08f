"""Structural validation of generated text.

Checks shape only: that every role produced something, that each text is
within its length bounds, and that it contains none of the configured
forbidden substrings. Story content is the coherence validator's concern.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from narratum.models.roles import ROLE_TABLE
from narratum.observability.logging import get_logger
from narratum.validation.types import IssueSeverity, ValidationIssue, ValidationReport

if TYPE_CHECKING:
    from collections.abc import Sequence

    from narratum.models.narrative import RawOutput, RoleResponse

log = get_logger(__name__)

DEFAULT_MIN_LENGTH = 10
DEFAULT_MAX_LENGTH = 10_000

STRICT_FORBIDDEN_PATTERNS = ("[ERROR]", "[TODO]", "PLACEHOLDER", "undefined", "null")


@dataclass
class StructureValidatorConfig:
    """Length bounds and pattern lists for structural validation.

    Per-role overrides take precedence over the global defaults.

    Attributes:
        default_min_length: Minimum characters for roles without an override.
        default_max_length: Maximum characters for roles without an override.
        min_length_per_role: Per-role minimum overrides.
        max_length_per_role: Per-role maximum overrides.
        forbidden_patterns: Substrings that must not appear (case-insensitive).
        required_patterns: Per-role substrings that should appear; a missing
            one is only a warning.
        treat_max_length_as_error: Over-long text is an error instead of a warning.
        treat_forbidden_patterns_as_error: Forbidden text is an error instead
            of a warning.
    """

    default_min_length: int = DEFAULT_MIN_LENGTH
    default_max_length: int = DEFAULT_MAX_LENGTH
    min_length_per_role: dict[str, int] = field(default_factory=dict)
    max_length_per_role: dict[str, int] = field(default_factory=dict)
    forbidden_patterns: tuple[str, ...] = ()
    required_patterns: dict[str, tuple[str, ...]] = field(default_factory=dict)
    treat_max_length_as_error: bool = False
    treat_forbidden_patterns_as_error: bool = False

    def __post_init__(self) -> None:
        if self.default_min_length < 0:
            raise ValueError(f"default_min_length must be >= 0, got {self.default_min_length}")
        if self.default_max_length < self.default_min_length:
            raise ValueError(
                f"default_max_length ({self.default_max_length}) is below "
                f"default_min_length ({self.default_min_length})"
            )

    def min_length_for(self, role: str) -> int:
        return self.min_length_per_role.get(role, self.default_min_length)

    def max_length_for(self, role: str) -> int:
        return self.max_length_per_role.get(role, self.default_max_length)

    @classmethod
    def strict(cls) -> StructureValidatorConfig:
        return cls(
            default_min_length=50,
            default_max_length=5000,
            forbidden_patterns=STRICT_FORBIDDEN_PATTERNS,
            treat_max_length_as_error=True,
            treat_forbidden_patterns_as_error=True,
        )

    @classmethod
    def narrative(cls) -> StructureValidatorConfig:
        """Bounds suited to prose, taken from the role table."""
        return cls(
            default_min_length=100,
            default_max_length=3000,
            min_length_per_role={role.value: spec.min_length for role, spec in ROLE_TABLE.items()},
            max_length_per_role={role.value: spec.max_length for role, spec in ROLE_TABLE.items()},
        )


def _issue(
    code: str,
    message: str,
    severity: IssueSeverity = "error",
    role: str | None = None,
    suggested_fix: str | None = None,
) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        severity=severity,
        source="structure",
        role=role,
        suggested_fix=suggested_fix,
    )


class StructureValidator:
    """Validates the shape of each role's text."""

    def __init__(self, config: StructureValidatorConfig | None = None) -> None:
        self.config = config or StructureValidatorConfig()

    def validate(self, output: RawOutput | Sequence[RoleResponse]) -> ValidationReport:
        responses = tuple(getattr(output, "responses", output))
        report = ValidationReport()

        if not responses:
            report.add(_issue("no_responses", "No responses received"))
            return report
        if not any(r.has_content for r in responses):
            report.add(
                _issue(
                    "no_responses",
                    f"No usable responses received ({len(responses)} role(s) failed or empty)",
                    suggested_fix="Produce non-empty text for every role",
                )
            )
            return report

        for response in responses:
            self._validate_response(response, report)

        log.debug(
            "structure_validated",
            roles=[str(r.role) for r in responses],
            errors=len(report.errors),
            warnings=len(report.warnings),
        )
        return report

    def _validate_response(self, response: RoleResponse, report: ValidationReport) -> None:
        role = str(response.role)
        if not response.success:
            report.add(
                _issue(
                    "generation_failed",
                    f"{role} generation failed: {response.error or 'unknown error'}",
                    role=role,
                )
            )
            return

        content = response.content
        if not content.strip():
            report.add(
                _issue(
                    "empty_content",
                    f"{role} returned empty content",
                    role=role,
                    suggested_fix="Write the requested text",
                )
            )
            return

        length = len(content)
        minimum = self.config.min_length_for(role)
        maximum = self.config.max_length_for(role)
        if length < minimum:
            report.add(
                _issue(
                    "content_too_short",
                    f"{role} content too short ({length} chars, min {minimum})",
                    role=role,
                    suggested_fix=f"Write at least {minimum} characters",
                )
            )
        elif length > maximum:
            report.add(
                _issue(
                    "content_too_long",
                    f"{role} content too long ({length} chars, max {maximum})",
                    "error" if self.config.treat_max_length_as_error else "warning",
                    role=role,
                    suggested_fix=f"Stay under {maximum} characters",
                )
            )

        folded = content.casefold()
        for pattern in self.config.forbidden_patterns:
            if pattern.casefold() in folded:
                report.add(
                    _issue(
                        "forbidden_pattern",
                        f"{role} content contains forbidden text '{pattern}'",
                        "error" if self.config.treat_forbidden_patterns_as_error else "warning",
                        role=role,
                        suggested_fix=f"Remove '{pattern}'",
                    )
                )

        for pattern in self.config.required_patterns.get(role, ()):
            if pattern.casefold() not in folded:
                report.add(
                    _issue(
                        "missing_required_pattern",
                        f"{role} content is missing expected text '{pattern}'",
                        "warning",
                        role=role,
                    )
                )

