"""Shared validation result types used by the structural and coherence validators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

IssueSeverity = Literal["error", "warning"]
IssueSource = Literal["structure", "coherence"]


@dataclass(frozen=True)
class ValidationIssue:
    """One finding of a validator.

    Attributes:
        code: Machine-friendly identifier (e.g. ``content_too_short``).
        message: Human-readable description.
        severity: ``error`` blocks the attempt, ``warning`` never does.
        source: Which validator produced the finding.
        role: Role whose text the finding is about, if any.
        suggested_fix: Optional hint for the next attempt.
    """

    code: str
    message: str
    severity: IssueSeverity
    source: IssueSource
    role: str | None = None
    suggested_fix: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


@dataclass
class ValidationReport:
    """Aggregated findings of one validation pass.

    Attributes:
        issues: Findings in the order they were produced.
    """

    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, issue: ValidationIssue) -> None:
        self.issues.append(issue)

    def merge(self, other: ValidationReport) -> ValidationReport:
        """New report holding this report's issues followed by ``other``'s."""
        return ValidationReport(issues=[*self.issues, *other.issues])

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.is_error]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if not i.is_error]

    @property
    def is_valid(self) -> bool:
        """True if no error was recorded. Warnings never invalidate."""
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def error_messages(self) -> list[str]:
        return [i.message for i in self.errors]

    @property
    def warning_messages(self) -> list[str]:
        return [i.message for i in self.warnings]

    @property
    def summary(self) -> str:
        """Human-readable summary of the findings."""
        if not self.issues:
            return "valid"
        parts: list[str] = []
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        if self.warnings:
            parts.append(f"{len(self.warnings)} warnings")
        return ", ".join(parts)
