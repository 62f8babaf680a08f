"""Fact-level coherence checking.

Detects contradictions between facts of a canonical state (a character both
dead and alive, a place both destroyed and intact, "is X" next to "is not
X") and impossible transitions between two states (a dead character coming
back to life). The checks are pattern heuristics over fact content, scoped
to facts that share at least one entity.
"""

from __future__ import annotations

import itertools
import re
from typing import TYPE_CHECKING

from narratum.memory.models import (
    CanonicalState,
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
    Fact,
    FactType,
)
from narratum.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

log = get_logger(__name__)

DEAD_PATTERN = re.compile(r"\b(?:dead|died|deceased|death)\b", re.IGNORECASE)
ALIVE_PATTERN = re.compile(r"\b(?:alive|living)\b", re.IGNORECASE)
DESTROYED_PATTERN = re.compile(r"\b(?:destroyed|in ruins|leveled)\b", re.IGNORECASE)
INTACT_PATTERN = re.compile(r"\b(?:intact|standing|safe)\b", re.IGNORECASE)
_NEGATED_IS = re.compile(r"\bis not\s+([^.,;:!?]+)", re.IGNORECASE)
_PLAIN_IS = re.compile(r"\bis\s+(?!not\b)([^.,;:!?]+)", re.IGNORECASE)
_DEATH_OF = r"(?:death|killing|murder) of\s+(?:the\s+)?"
_DIED_AFTER = (
    r"(?:'s death|\s+(?:is\s+|was\s+|lies\s+|has\s+|had\s+)?(?:now\s+|long\s+)?"
    r"(?:been\s+)?(?:dead|died|deceased))"
)


def describes_death(fact: Fact) -> bool:
    """True when a character-state fact says an entity is dead."""
    return (
        fact.fact_type == FactType.CHARACTER_STATE
        and DEAD_PATTERN.search(fact.content) is not None
        and ALIVE_PATTERN.search(fact.content) is None
        and _NEGATED_IS.search(fact.content) is None
    )


def describes_life(fact: Fact) -> bool:
    return (
        fact.fact_type == FactType.CHARACTER_STATE
        and ALIVE_PATTERN.search(fact.content) is not None
        and DEAD_PATTERN.search(fact.content) is None
    )


def dead_entities_of(fact: Fact) -> frozenset[str]:
    """Entities a death fact says are dead.

    An entity counts when it is the subject of the death ("Mara is dead",
    "Mara died", "Mara's death") or its object ("the death of Mara").
    When the content names none of the referenced entities, all of them
    count.
    """
    if not describes_death(fact):
        return frozenset()
    content = fact.content
    named = [
        n
        for n in fact.entity_references
        if re.search(rf"\b{re.escape(n)}\b", content, re.IGNORECASE)
    ]
    if not named:
        return fact.entity_references
    dead: set[str] = set()
    for name in named:
        escaped = re.escape(name)
        if re.search(rf"\b{escaped}{_DIED_AFTER}\b", content, re.IGNORECASE) or re.search(
            rf"{_DEATH_OF}{escaped}\b", content, re.IGNORECASE
        ):
            dead.add(name)
    return frozenset(dead)


def find_dead_entities(state: CanonicalState) -> dict[str, Fact]:
    """Map each entity recorded as dead to the fact saying so.

    When several facts record the same death, the first one wins.
    """
    dead: dict[str, Fact] = {}
    for fact in state.facts:
        if describes_death(fact):
            for name in sorted(dead_entities_of(fact)):
                dead.setdefault(name, fact)
    return dead


def _opposed(a: str, b: str, first: re.Pattern[str], second: re.Pattern[str]) -> bool:
    return bool(
        (first.search(a) and second.search(b)) or (second.search(a) and first.search(b))
    )


def _predicates(pattern: re.Pattern[str], text: str) -> set[str]:
    return {" ".join(m.lower().split()) for m in pattern.findall(text)}


def _negation_conflict(a: str, b: str) -> bool:
    """An "is X" in one fact against an "is not X" in the other, X compared whole."""
    return bool(
        (_predicates(_PLAIN_IS, a) & _predicates(_NEGATED_IS, b))
        or (_predicates(_PLAIN_IS, b) & _predicates(_NEGATED_IS, a))
    )


class FactCoherenceChecker:
    """Pairwise contradiction scan over facts."""

    def validate_fact(self, fact: Fact) -> list[CoherenceViolation]:
        """Check one fact on its own.

        Facts are validated on construction, so this only reports facts
        that explicitly record a contradiction.
        """
        if fact.fact_type == FactType.CONTRADICTION:
            return [
                CoherenceViolation.create(
                    CoherenceViolationType.CONTRADICTION,
                    CoherenceSeverity.WARNING,
                    f"Recorded contradiction: {fact.content}",
                    [fact.id],
                    level=fact.level,
                )
            ]
        return []

    def contains_contradiction(self, first: Fact, second: Fact) -> bool:
        """Whether two facts about a shared entity cannot both hold."""
        if first.id == second.id:
            return False
        if not first.entity_references & second.entity_references:
            return False
        a, b = first.content, second.content
        return (
            _opposed(a, b, DEAD_PATTERN, ALIVE_PATTERN)
            or _opposed(a, b, DESTROYED_PATTERN, INTACT_PATTERN)
            or _negation_conflict(a, b)
        )

    def validate_facts(self, facts: Sequence[Fact]) -> list[CoherenceViolation]:
        violations: list[CoherenceViolation] = []
        for fact in facts:
            violations.extend(self.validate_fact(fact))
        for first, second in itertools.combinations(facts, 2):
            if self.contains_contradiction(first, second):
                shared = sorted(first.entity_references & second.entity_references)
                violations.append(
                    CoherenceViolation.create(
                        CoherenceViolationType.CONTRADICTION,
                        CoherenceSeverity.ERROR,
                        f"'{first.content}' contradicts '{second.content}' "
                        f"(entities: {', '.join(shared)})",
                        [first.id, second.id],
                        level=first.level,
                    )
                )
        if violations:
            log.debug("fact_contradictions_found", count=len(violations), facts=len(facts))
        return violations

    def validate_state(self, state: CanonicalState) -> list[CoherenceViolation]:
        return self.validate_facts(state.facts)

    def validate_transition(
        self, previous: CanonicalState, new: CanonicalState
    ) -> list[CoherenceViolation]:
        """Check that ``new`` can follow ``previous``.

        A character recorded dead in the previous state and alive in the new
        one (same entity set) is reported as a sequence violation.
        """
        violations: list[CoherenceViolation] = []
        dead_facts = [f for f in previous.facts if describes_death(f)]
        alive_facts = [f for f in new.facts if describes_life(f)]
        for dead, alive in itertools.product(dead_facts, alive_facts):
            if dead.entity_references == alive.entity_references:
                names = ", ".join(sorted(dead.entity_references))
                violations.append(
                    CoherenceViolation.create(
                        CoherenceViolationType.SEQUENCE_VIOLATION,
                        CoherenceSeverity.ERROR,
                        f"{names} was dead but is alive again",
                        [dead.id, alive.id],
                        suggested_resolution="Explain the resurrection or drop the new fact",
                        level=new.level,
                    )
                )
        violations.extend(self.validate_state(new))
        return violations
