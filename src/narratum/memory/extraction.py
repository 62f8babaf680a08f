"""Deterministic extraction of facts from story events.

Each supported event kind has an extractor registered in ``_EXTRACTORS``.
Fact ids are derived from the source event and the fact content, so
extracting the same events twice yields equal facts in the same order.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from narratum.memory.models import Fact, FactType, MemoryLevel
from narratum.observability.logging import get_logger

log = get_logger(__name__)

# Namespace for deterministic fact ids.
FACT_NAMESPACE = uuid.UUID("6f0c1d2e-8a4b-5c3d-9e7f-a1b2c3d4e5f6")


@dataclass(frozen=True)
class ExtractionContext:
    """World information needed to phrase extracted facts.

    Attributes:
        world_id: World the events belong to.
        entity_names: Display names keyed by entity id. Unknown ids are
            used verbatim.
        level: Level the extracted facts are recorded at.
    """

    world_id: str
    entity_names: dict[str, str] = field(default_factory=dict)
    level: MemoryLevel = MemoryLevel.EVENT

    def name_of(self, entity_id: str) -> str:
        return self.entity_names.get(entity_id, entity_id)


@dataclass(frozen=True, kw_only=True)
class StoryEvent:
    event_id: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, kw_only=True)
class CharacterDied(StoryEvent):
    character_id: str
    cause: str = "unknown causes"


@dataclass(frozen=True, kw_only=True)
class CharacterMoved(StoryEvent):
    character_id: str
    from_location: str
    to_location: str


@dataclass(frozen=True, kw_only=True)
class CharactersEncountered(StoryEvent):
    first_character_id: str
    second_character_id: str
    location: str


# Each extractor receives an instance of the event class it is registered for.
Extractor = Callable[[Any, ExtractionContext], list[Fact]]


def _fact(
    event: StoryEvent,
    ctx: ExtractionContext,
    content: str,
    fact_type: FactType,
    entities: Iterable[str],
    confidence: float = 1.0,
) -> Fact:
    return Fact(
        id=uuid.uuid5(FACT_NAMESPACE, f"{ctx.world_id}:{event.event_id}:{content}"),
        content=content,
        fact_type=fact_type,
        level=ctx.level,
        entity_references=frozenset(entities),
        time_context=event.occurred_at.isoformat(),
        source=event.event_id,
        confidence=confidence,
        created_at=event.occurred_at,
    )


def _extract_death(event: CharacterDied, ctx: ExtractionContext) -> list[Fact]:
    name = ctx.name_of(event.character_id)
    return [
        _fact(event, ctx, f"{name} is dead", FactType.CHARACTER_STATE, [name]),
        _fact(event, ctx, f"{name} died ({event.cause})", FactType.EVENT, [name]),
    ]


def _extract_move(event: CharacterMoved, ctx: ExtractionContext) -> list[Fact]:
    name = ctx.name_of(event.character_id)
    return [
        _fact(
            event,
            ctx,
            f"{name} moved from {event.from_location} to {event.to_location}",
            FactType.EVENT,
            [name],
        ),
        _fact(
            event,
            ctx,
            f"{name} is at {event.to_location}",
            FactType.LOCATION_STATE,
            [name, event.to_location],
        ),
    ]


def _extract_encounter(event: CharactersEncountered, ctx: ExtractionContext) -> list[Fact]:
    first = ctx.name_of(event.first_character_id)
    second = ctx.name_of(event.second_character_id)
    return [
        _fact(
            event,
            ctx,
            f"{first} and {second} met at {event.location}",
            FactType.EVENT,
            [first, second],
        ),
        _fact(
            event,
            ctx,
            f"{first} knows {second}",
            FactType.RELATIONSHIP,
            [first, second],
            confidence=0.8,
        ),
    ]


_EXTRACTORS: dict[type[StoryEvent], Extractor] = {
    CharacterDied: _extract_death,
    CharacterMoved: _extract_move,
    CharactersEncountered: _extract_encounter,
}


def _ordered(facts: Iterable[Fact]) -> list[Fact]:
    return sorted(facts, key=lambda f: (f.content, str(f.id)))


class FactExtractor:
    """Turns story events into facts.

    Output is always sorted by content, then id.
    """

    def __init__(self, extractors: dict[type[StoryEvent], Extractor] | None = None) -> None:
        self._extractors = dict(_EXTRACTORS)
        if extractors:
            self._extractors.update(extractors)

    def supports(self, event: StoryEvent) -> bool:
        return type(event) in self._extractors

    def extract_from_event(self, event: StoryEvent, ctx: ExtractionContext) -> list[Fact]:
        """Facts implied by one event; unsupported events yield none."""
        extractor = self._extractors.get(type(event))
        if extractor is None:
            log.debug("extraction_skipped", event_type=type(event).__name__, event_id=event.event_id)
            return []
        return _ordered(extractor(event, ctx))

    def extract_from_events(self, events: Iterable[StoryEvent], ctx: ExtractionContext) -> list[Fact]:
        """Facts implied by a sequence of events, deduplicated.

        Facts sharing content, type and entities are collapsed; the one from
        the earliest event in the sequence wins.
        """
        seen: set[tuple[str, FactType, frozenset[str]]] = set()
        unique: list[Fact] = []
        for event in events:
            for fact in self.extract_from_event(event, ctx):
                if fact.dedup_key in seen:
                    continue
                seen.add(fact.dedup_key)
                unique.append(fact)
        log.debug("facts_extracted", count=len(unique), world_id=ctx.world_id)
        return _ordered(unique)
