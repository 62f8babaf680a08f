"""Immutable fact model: facts, canonical states, violations, memoranda.

All models are frozen pydantic models. Every "mutation" returns a new value
built with ``model_copy``; previous values are never changed, so states can
be shared freely between concurrent readers.
"""

from __future__ import annotations

from collections.abc import Iterable  # noqa: TC003 - pydantic resolves annotations at runtime
from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from narratum.memory.errors import (
    UnknownMemoryLevelError,
    ViolationAlreadyResolvedError,
    ViolationNotFoundError,
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryLevel(IntEnum):
    """Granularity a fact is recorded at, finest first."""

    EVENT = 0
    CHAPTER = 1
    ARC = 2
    WORLD = 3


class FactType(StrEnum):
    CHARACTER_STATE = "character_state"
    LOCATION_STATE = "location_state"
    RELATIONSHIP = "relationship"
    KNOWLEDGE = "knowledge"
    EVENT = "event"
    CONTRADICTION = "contradiction"


# Fact types that describe an entity and therefore must name one.
ENTITY_FACT_TYPES = frozenset(
    {
        FactType.CHARACTER_STATE,
        FactType.LOCATION_STATE,
        FactType.RELATIONSHIP,
        FactType.KNOWLEDGE,
    }
)


class CoherenceViolationType(StrEnum):
    CONTRADICTION = "contradiction"
    SEQUENCE_VIOLATION = "sequence_violation"
    ENTITY_INCONSISTENCY = "entity_inconsistency"
    LOCATION_INCONSISTENCY = "location_inconsistency"


class CoherenceSeverity(IntEnum):
    """Severity of a coherence violation. Only ``ERROR`` blocks validation."""

    INFO = 0
    WARNING = 1
    ERROR = 2


FactKey = tuple[str, FactType, frozenset[str]]


class Fact(BaseModel):
    """An atomic, immutable assertion about the story world.

    Content must be non-blank and confidence must lie in [0.0, 1.0]; facts
    describing an entity's state, relationships or knowledge must reference
    at least one entity.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    content: str = Field(min_length=1)
    fact_type: FactType
    level: MemoryLevel = MemoryLevel.EVENT
    entity_references: frozenset[str] = Field(default_factory=frozenset)
    time_context: str | None = None
    source: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "content must not be blank"
            raise ValueError(msg)
        return value

    @field_validator("entity_references")
    @classmethod
    def entity_names_not_blank(cls, value: frozenset[str]) -> frozenset[str]:
        cleaned = frozenset(name.strip() for name in value)
        if "" in cleaned:
            msg = "entity references must not be blank"
            raise ValueError(msg)
        return cleaned

    @model_validator(mode="after")
    def entity_facts_reference_entities(self) -> Fact:
        if self.fact_type in ENTITY_FACT_TYPES and not self.entity_references:
            msg = f"{self.fact_type.value} facts must reference at least one entity"
            raise ValueError(msg)
        return self

    @classmethod
    def create(
        cls,
        content: str,
        fact_type: FactType,
        entities: Iterable[str] = (),
        *,
        level: MemoryLevel = MemoryLevel.EVENT,
        confidence: float = 1.0,
        time_context: str | None = None,
        source: str | None = None,
    ) -> Fact:
        """Convenience constructor taking entity names positionally."""
        return cls(
            content=content,
            fact_type=fact_type,
            level=level,
            entity_references=frozenset(entities),
            confidence=confidence,
            time_context=time_context,
            source=source,
        )

    @property
    def dedup_key(self) -> FactKey:
        """Facts with equal keys are duplicates of each other."""
        return (self.content, self.fact_type, self.entity_references)

    def mentions(self, entity: str) -> bool:
        """Case-insensitive check whether this fact references ``entity``."""
        target = entity.casefold()
        return any(name.casefold() == target for name in self.entity_references)


class CanonicalState(BaseModel):
    """The deduplicated set of facts for one world at one level."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    world_id: str = Field(min_length=1)
    level: MemoryLevel
    facts: tuple[Fact, ...] = ()
    version: int = Field(default=1, ge=1)
    last_updated: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create_empty(cls, world_id: str, level: MemoryLevel = MemoryLevel.EVENT) -> CanonicalState:
        return cls(world_id=world_id, level=level)

    def add_fact(self, fact: Fact) -> CanonicalState:
        """Return a state that also contains ``fact``.

        Adding a duplicate (same content, type and entities) returns this
        state unchanged.
        """
        return self.add_facts([fact])

    def add_facts(self, facts: Iterable[Fact]) -> CanonicalState:
        """Return a state with every non-duplicate fact of ``facts`` appended.

        Duplicates within the batch are merged too; the first occurrence
        wins. The version is bumped once per call that adds anything.
        """
        known = {fact.dedup_key for fact in self.facts}
        added: list[Fact] = []
        for fact in facts:
            if fact.dedup_key in known:
                continue
            known.add(fact.dedup_key)
            added.append(fact)
        if not added:
            return self
        return self.model_copy(
            update={
                "facts": self.facts + tuple(added),
                "version": self.version + 1,
                "last_updated": _utcnow(),
            }
        )

    def remove_fact(self, fact_id: UUID) -> CanonicalState:
        remaining = tuple(f for f in self.facts if f.id != fact_id)
        if len(remaining) == len(self.facts):
            return self
        return self.model_copy(
            update={"facts": remaining, "version": self.version + 1, "last_updated": _utcnow()}
        )

    def contains(self, fact: Fact) -> bool:
        return any(f.dedup_key == fact.dedup_key for f in self.facts)

    def get_fact(self, fact_id: UUID) -> Fact | None:
        return next((f for f in self.facts if f.id == fact_id), None)

    def facts_for_entity(self, entity: str) -> list[Fact]:
        return [f for f in self.facts if f.mentions(entity)]

    def facts_by_type(self, fact_type: FactType) -> list[Fact]:
        return [f for f in self.facts if f.fact_type == fact_type]

    @property
    def entities(self) -> frozenset[str]:
        return frozenset(name for fact in self.facts for name in fact.entity_references)

    @property
    def fact_count(self) -> int:
        return len(self.facts)

    @property
    def is_empty(self) -> bool:
        return not self.facts


class CoherenceViolation(BaseModel):
    """A detected inconsistency between facts, or between text and facts.

    A violation is resolved at most once; see :meth:`mark_resolved`.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    violation_type: CoherenceViolationType
    severity: CoherenceSeverity = CoherenceSeverity.ERROR
    description: str = Field(min_length=1)
    involved_fact_ids: frozenset[UUID] = Field(default_factory=frozenset)
    suggested_resolution: str | None = None
    level: MemoryLevel | None = None
    detected_at: datetime = Field(default_factory=_utcnow)
    resolved_at: datetime | None = None
    resolution: str | None = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "description must not be blank"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def resolved_after_detection(self) -> CoherenceViolation:
        if self.resolved_at is not None and self.resolved_at < self.detected_at:
            msg = "resolved_at must not precede detected_at"
            raise ValueError(msg)
        return self

    @classmethod
    def create(
        cls,
        violation_type: CoherenceViolationType,
        severity: CoherenceSeverity,
        description: str,
        involved_fact_ids: Iterable[UUID] = (),
        *,
        suggested_resolution: str | None = None,
        level: MemoryLevel | None = None,
    ) -> CoherenceViolation:
        return cls(
            violation_type=violation_type,
            severity=severity,
            description=description,
            involved_fact_ids=frozenset(involved_fact_ids),
            suggested_resolution=suggested_resolution,
            level=level,
        )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    @property
    def is_blocking(self) -> bool:
        return self.severity >= CoherenceSeverity.ERROR

    def mark_resolved(self, resolution: str | None = None) -> CoherenceViolation:
        """Return the resolved version of this violation.

        Raises:
            ViolationAlreadyResolvedError: If it is already resolved.
        """
        if self.is_resolved:
            raise ViolationAlreadyResolvedError(self.id)
        return self.model_copy(update={"resolved_at": _utcnow(), "resolution": resolution})

    def full_description(self) -> str:
        parts = [f"[{self.severity.name}] {self.violation_type.value}: {self.description}"]
        if self.involved_fact_ids:
            parts.append(f"facts: {', '.join(sorted(str(i) for i in self.involved_fact_ids))}")
        if self.suggested_resolution:
            parts.append(f"suggestion: {self.suggested_resolution}")
        if self.is_resolved:
            parts.append(f"resolved: {self.resolution or 'yes'}")
        return " | ".join(parts)


class Memorandum(BaseModel):
    """Binds one world to its per-level canonical states and violations."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    world_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    canonical_states: dict[MemoryLevel, CanonicalState]
    violations: tuple[CoherenceViolation, ...] = ()
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def states_match_levels(self) -> Memorandum:
        for level, state in self.canonical_states.items():
            if state.level != level:
                msg = f"state stored under {level.name} has level {state.level.name}"
                raise ValueError(msg)
            if state.world_id != self.world_id:
                msg = f"state for {level.name} belongs to world {state.world_id!r}"
                raise ValueError(msg)
        return self

    @classmethod
    def create_empty(cls, world_id: str, title: str, description: str = "") -> Memorandum:
        """Create a memorandum with an empty canonical state at every level."""
        return cls(
            world_id=world_id,
            title=title,
            description=description,
            canonical_states={
                level: CanonicalState.create_empty(world_id, level) for level in MemoryLevel
            },
        )

    def _evolve(self, **changes: object) -> Memorandum:
        return self.model_copy(
            update={**changes, "version": self.version + 1, "last_updated": _utcnow()}
        )

    def get_canonical_state(self, level: MemoryLevel) -> CanonicalState:
        try:
            return self.canonical_states[level]
        except KeyError:
            raise UnknownMemoryLevelError(level) from None

    def add_fact(self, level: MemoryLevel, fact: Fact) -> Memorandum:
        return self.add_facts(level, [fact])

    def add_facts(self, level: MemoryLevel, facts: Iterable[Fact]) -> Memorandum:
        current = self.get_canonical_state(level)
        updated = current.add_facts(facts)
        if updated is current:
            return self
        return self._evolve(canonical_states={**self.canonical_states, level: updated})

    def add_violation(self, violation: CoherenceViolation) -> Memorandum:
        return self.add_violations([violation])

    def add_violations(self, violations: Iterable[CoherenceViolation]) -> Memorandum:
        new = tuple(violations)
        if not new:
            return self
        return self._evolve(violations=self.violations + new)

    def resolve_violation(self, violation_id: UUID, resolution: str | None = None) -> Memorandum:
        """Mark one violation resolved.

        Raises:
            ViolationNotFoundError: If no violation has this id.
            ViolationAlreadyResolvedError: If it is already resolved.
        """
        for index, violation in enumerate(self.violations):
            if violation.id == violation_id:
                resolved = violation.mark_resolved(resolution)
                violations = self.violations[:index] + (resolved,) + self.violations[index + 1 :]
                return self._evolve(violations=violations)
        raise ViolationNotFoundError(violation_id)

    def get_facts(self, level: MemoryLevel) -> tuple[Fact, ...]:
        return self.get_canonical_state(level).facts

    def get_facts_for_entity(self, entity: str, level: MemoryLevel | None = None) -> list[Fact]:
        if level is not None:
            return self.get_canonical_state(level).facts_for_entity(entity)
        return [
            fact
            for lvl in sorted(self.canonical_states)
            for fact in self.canonical_states[lvl].facts_for_entity(entity)
        ]

    def merged_state(self) -> CanonicalState:
        """All facts of every level folded into one world-level state."""
        merged = CanonicalState.create_empty(self.world_id, MemoryLevel.WORLD)
        for level in sorted(self.canonical_states):
            merged = merged.add_facts(self.canonical_states[level].facts)
        return merged

    @property
    def unresolved_violations(self) -> list[CoherenceViolation]:
        return [v for v in self.violations if not v.is_resolved]

    @property
    def resolved_violations(self) -> list[CoherenceViolation]:
        return [v for v in self.violations if v.is_resolved]

    def violations_by_severity(self, severity: CoherenceSeverity) -> list[CoherenceViolation]:
        return [v for v in self.violations if v.severity == severity]

    @property
    def total_fact_count(self) -> int:
        return sum(state.fact_count for state in self.canonical_states.values())

    def summary(self) -> str:
        per_level = ", ".join(
            f"{level.name.lower()}={self.canonical_states[level].fact_count}"
            for level in sorted(self.canonical_states)
        )
        return (
            f"Memorandum '{self.title}' (world {self.world_id}, v{self.version}): "
            f"{self.total_fact_count} facts [{per_level}], "
            f"{len(self.unresolved_violations)} unresolved / "
            f"{len(self.resolved_violations)} resolved violations"
        )
