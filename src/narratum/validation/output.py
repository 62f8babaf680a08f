"""Combined structural and coherence validation of one generation attempt."""

from __future__ import annotations

from typing import TYPE_CHECKING

from narratum.validation.types import ValidationReport

if TYPE_CHECKING:
    from narratum.models.narrative import NarrativeContext, RawOutput
    from narratum.validation.coherence import CoherenceValidator
    from narratum.validation.structure import StructureValidator


class OutputValidator:
    """Runs the enabled validators and merges their reports.

    Args:
        structure: Structural validator, or None to skip structural checks.
        coherence: Coherence validator, or None to skip coherence checks.
    """

    def __init__(
        self,
        structure: StructureValidator | None = None,
        coherence: CoherenceValidator | None = None,
    ) -> None:
        self.structure = structure
        self.coherence = coherence

    def validate(self, output: RawOutput, context: NarrativeContext) -> ValidationReport:
        report = ValidationReport()
        if self.structure is not None:
            report = report.merge(self.structure.validate(output))
        text = output.combined_text
        if self.coherence is not None and text:
            coherence = self.coherence.validate_context(text, context)
            report = report.merge(coherence.to_validation_report())
        return report
