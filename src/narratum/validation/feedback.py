"""Action-first retry feedback.

When an attempt fails validation, the next attempt's prompts get a short
feedback block appended. The recovery directive comes first so the model
reads what to do before it reads why.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from narratum.validation.types import ValidationReport

# Directive per issue code, in the order they are listed in the feedback.
RECOVERY_HINTS: dict[str, str] = {
    "no_responses": "produce text for every requested role",
    "generation_failed": "produce text for every requested role",
    "empty_content": "write the requested text instead of leaving it empty",
    "content_too_short": "write longer passages",
    "content_too_long": "write shorter passages",
    "forbidden_pattern": "remove placeholder or forbidden text",
    "entity_inconsistency": "keep dead characters from acting",
    "location_inconsistency": "keep absent characters out of the scene",
    "contradiction": "stay consistent with the established facts",
    "sequence_violation": "respect the order of established events",
}


@dataclass
class RetryFeedback:
    """Structured feedback for a rejected attempt.

    Attributes:
        action_outcome: "accepted" or "rejected".
        rejection_reason: Why the attempt was rejected.
        recovery_action: Directive for the next attempt.
        role_errors: Error messages grouped by role.
        general_errors: Error messages not tied to a role.
        error_count: Total number of errors.
    """

    action_outcome: str
    rejection_reason: str | None = None
    recovery_action: str | None = None
    role_errors: dict[str, list[str]] = field(default_factory=dict)
    general_errors: list[str] = field(default_factory=list)
    error_count: int = 0

    @property
    def is_valid(self) -> bool:
        return self.action_outcome == "accepted"

    @classmethod
    def accepted(cls) -> RetryFeedback:
        return cls(action_outcome="accepted")

    @classmethod
    def from_report(cls, report: ValidationReport) -> RetryFeedback:
        if report.is_valid:
            return cls.accepted()

        role_errors: dict[str, list[str]] = {}
        general_errors: list[str] = []
        hints: list[str] = []
        for issue in report.errors:
            if issue.role:
                role_errors.setdefault(issue.role, []).append(issue.message)
            else:
                general_errors.append(issue.message)
            hint = RECOVERY_HINTS.get(issue.code)
            if hint and hint not in hints:
                hints.append(hint)

        recovery_action = (
            ", then ".join(hints).capitalize() + "." if hints else "Review the errors and try again."
        )
        sources = sorted({issue.source for issue in report.errors})
        return cls(
            action_outcome="rejected",
            rejection_reason=f"{'/'.join(sources)} validation failed",
            recovery_action=recovery_action,
            role_errors=role_errors,
            general_errors=general_errors,
            error_count=len(report.errors),
        )

    def to_dict(self) -> dict[str, Any]:
        """Dictionary form with action_outcome first."""
        result: dict[str, Any] = {"action_outcome": self.action_outcome}
        if self.rejection_reason:
            result["rejection_reason"] = self.rejection_reason
        if self.recovery_action:
            result["recovery_action"] = self.recovery_action
        if self.role_errors:
            result["role_errors"] = self.role_errors
        if self.general_errors:
            result["general_errors"] = self.general_errors
        if self.error_count:
            result["error_count"] = self.error_count
        return result

    def to_prompt_text(self) -> str:
        """Feedback block appended to the next attempt's prompts."""
        if self.is_valid:
            return ""
        lines = [
            f"PREVIOUS ATTEMPT REJECTED. {self.recovery_action}",
            f"Reason: {self.rejection_reason}",
        ]
        for role, messages in sorted(self.role_errors.items()):
            lines.extend(f"- [{role}] {message}" for message in messages)
        lines.extend(f"- {message}" for message in self.general_errors)
        return "\n".join(lines)
