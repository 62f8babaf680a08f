"""Turning a world snapshot and an intent into a narrative context."""

from __future__ import annotations

from typing import Protocol

from narratum.models.narrative import (
    LocationContext,
    NarrativeContext,
    NarrativeIntent,
    WorldSnapshot,
)
from narratum.observability.logging import get_logger
from narratum.pipeline.errors import ContextAssemblyError

log = get_logger(__name__)


class ContextAssembler(Protocol):
    """Builds the context of a run. Runs inside the context-building stage."""

    async def assemble(self, world: WorldSnapshot, intent: NarrativeIntent) -> NarrativeContext: ...


class DefaultContextAssembler:
    """Context built straight from the snapshot.

    The canonical state is every level of the memorandum merged into one;
    with no memorandum the context carries no state and coherence checks
    against facts are skipped.
    """

    async def assemble(self, world: WorldSnapshot, intent: NarrativeIntent) -> NarrativeContext:
        if not world.world_name.strip():
            raise ContextAssemblyError("world name is empty")

        state = world.memorandum.merged_state() if world.memorandum is not None else None

        known = {entity.name.casefold() for entity in world.entities}
        if state is not None:
            known |= {name.casefold() for name in state.entities}
        unknown = [name for name in intent.target_entities if name.casefold() not in known]
        if unknown:
            raise ContextAssemblyError(f"unknown target entities: {', '.join(unknown)}")

        location = world.location
        if intent.location and (
            location is None or location.name.casefold() != intent.location.casefold()
        ):
            location = LocationContext(name=intent.location, present=frozenset(intent.target_entities))

        log.debug(
            "context_assembled",
            world=world.world_name,
            facts=state.fact_count if state is not None else None,
            entities=len(world.entities),
        )
        return NarrativeContext(
            world_name=world.world_name,
            intent=intent,
            canonical_state=state,
            entities=world.entities,
            location=location,
            recent_summary=world.recent_summary,
        )
