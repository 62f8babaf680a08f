"""World-coherence validation of generated text.

Three independent checks:

- dead-entity action: a dead entity's name directly followed by an action
  verb ("Mara walked") is an error;
- location presence: an active entity not present at the current location
  described with presence phrasing ("Mara entered") is a warning;
- fact contradictions: delegated to :class:`FactCoherenceChecker` over the
  canonical state.

These are fixed English phrase heuristics, not a parser. The canonical state
checks fail open: no state, or a checker that raises, means no findings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from narratum.memory.coherence import FactCoherenceChecker, find_dead_entities
from narratum.memory.models import (
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
)
from narratum.observability.logging import get_logger
from narratum.validation.types import ValidationIssue, ValidationReport

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from narratum.memory.models import CanonicalState
    from narratum.models.narrative import EntityContext, LocationContext, NarrativeContext

log = get_logger(__name__)

DEFAULT_ACTION_VERBS = (
    "said",
    "spoke",
    "walked",
    "ran",
    "looked",
    "smiled",
    "nodded",
    "replied",
    "asked",
    "stood",
    "moved",
)
DEFAULT_PRESENCE_PHRASES = ("stood", "was there", "entered", "looked around")


@dataclass
class CoherenceCheckConfig:
    """Phrase lists and switches for coherence validation."""

    action_verbs: tuple[str, ...] = DEFAULT_ACTION_VERBS
    presence_phrases: tuple[str, ...] = DEFAULT_PRESENCE_PHRASES
    check_dead_entities: bool = True
    check_location_presence: bool = True
    check_fact_contradictions: bool = True


def _phrase_regex(name: str, phrases: Iterable[str]) -> re.Pattern[str]:
    alternatives = "|".join(r"\s+".join(map(re.escape, p.split())) for p in phrases)
    return re.compile(rf"\b{re.escape(name)}\s+(?:{alternatives})\b", re.IGNORECASE)


@dataclass(frozen=True)
class CoherenceReport:
    violations: tuple[CoherenceViolation, ...] = ()
    checks_skipped: tuple[str, ...] = field(default=())

    @property
    def errors(self) -> tuple[CoherenceViolation, ...]:
        return tuple(v for v in self.violations if v.is_blocking)

    @property
    def warnings(self) -> tuple[CoherenceViolation, ...]:
        return tuple(v for v in self.violations if not v.is_blocking)

    @property
    def is_coherent(self) -> bool:
        return not self.errors

    def to_validation_report(self) -> ValidationReport:
        return ValidationReport(
            issues=[
                ValidationIssue(
                    code=v.violation_type.value,
                    message=v.description,
                    severity="error" if v.is_blocking else "warning",
                    source="coherence",
                    suggested_fix=v.suggested_resolution,
                )
                for v in self.violations
            ]
        )


class CoherenceValidator:
    """Checks generated text against known entities and the canonical state."""

    def __init__(
        self,
        config: CoherenceCheckConfig | None = None,
        fact_checker: FactCoherenceChecker | None = None,
    ) -> None:
        self.config = config or CoherenceCheckConfig()
        self.fact_checker = fact_checker or FactCoherenceChecker()

    def validate_context(self, text: str, context: NarrativeContext) -> CoherenceReport:
        return self.validate(
            text,
            canonical_state=context.canonical_state,
            entities=context.entities,
            location=context.location,
        )

    def validate(
        self,
        text: str,
        canonical_state: CanonicalState | None = None,
        entities: Sequence[EntityContext] = (),
        location: LocationContext | None = None,
    ) -> CoherenceReport:
        violations: list[CoherenceViolation] = []
        skipped: list[str] = []

        if self.config.check_dead_entities:
            dead = self._dead_entities(canonical_state, entities, skipped)
            violations.extend(self._check_dead_actions(text, dead))
        if self.config.check_location_presence and location is not None:
            violations.extend(self._check_presence(text, entities, location))
        if self.config.check_fact_contradictions:
            violations.extend(self._check_facts(canonical_state, skipped))

        report = CoherenceReport(violations=tuple(violations), checks_skipped=tuple(skipped))
        log.debug(
            "coherence_validated",
            errors=len(report.errors),
            warnings=len(report.warnings),
            skipped=skipped or None,
        )
        return report

    def _dead_entities(
        self,
        state: CanonicalState | None,
        entities: Sequence[EntityContext],
        skipped: list[str],
    ) -> dict[str, tuple[UUID, ...]]:
        dead: dict[str, tuple[UUID, ...]] = {e.name: () for e in entities if e.is_dead}
        if state is None:
            return dead
        try:
            recorded = find_dead_entities(state)
        except Exception as e:
            log.warning("dead_entity_lookup_failed", error=str(e))
            skipped.append("dead_entity_facts")
            return dead
        known = {name.casefold(): name for name in dead}
        for name, fact in recorded.items():
            key = known.get(name.casefold(), name)
            dead[key] = (*dead.get(key, ()), fact.id)
        return dead

    def _check_dead_actions(
        self, text: str, dead: dict[str, tuple[UUID, ...]]
    ) -> list[CoherenceViolation]:
        violations: list[CoherenceViolation] = []
        for name in sorted(dead):
            matches = _phrase_regex(name, self.config.action_verbs).findall(text)
            if not matches:
                continue
            phrases = sorted({" ".join(m.split()) for m in matches})
            violations.append(
                CoherenceViolation.create(
                    CoherenceViolationType.ENTITY_INCONSISTENCY,
                    CoherenceSeverity.ERROR,
                    f"Dead entity {name} appears to act: {', '.join(repr(p) for p in phrases)}",
                    dead[name],
                    suggested_resolution=f"{name} is dead and cannot act",
                )
            )
        return violations

    def _check_presence(
        self, text: str, entities: Sequence[EntityContext], location: LocationContext
    ) -> list[CoherenceViolation]:
        violations: list[CoherenceViolation] = []
        for entity in entities:
            if not entity.is_active or location.is_present(entity.name):
                continue
            matches = _phrase_regex(entity.name, self.config.presence_phrases).findall(text)
            if not matches:
                continue
            violations.append(
                CoherenceViolation.create(
                    CoherenceViolationType.LOCATION_INCONSISTENCY,
                    CoherenceSeverity.WARNING,
                    f"{entity.name} appears at {location.name} but is not listed as present",
                    suggested_resolution=f"Keep {entity.name} away from {location.name}",
                )
            )
        return violations

    def _check_facts(
        self, state: CanonicalState | None, skipped: list[str]
    ) -> list[CoherenceViolation]:
        if state is None:
            skipped.append("fact_contradictions")
            return []
        try:
            return self.fact_checker.validate_state(state)
        except Exception as e:
            log.warning("fact_contradiction_check_failed", error=str(e))
            skipped.append("fact_contradictions")
            return []
