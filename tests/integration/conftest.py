"""Integration test configuration and fixtures.

Scenarios run the full orchestrator against in-process generators, so no
external provider is needed.
"""

from __future__ import annotations

import pytest

from narratum.memory import Fact, FactType, Memorandum, MemoryLevel
from narratum.models import EntityContext, VitalStatus, WorldSnapshot


@pytest.fixture
def empty_world() -> WorldSnapshot:
    """A world with no facts and no entities."""
    return WorldSnapshot(world_name="Blank")


@pytest.fixture
def world_with_dead_mara() -> WorldSnapshot:
    """A world whose canonical state records Mara's death."""
    memorandum = Memorandum.create_empty("vale", "Vale").add_facts(
        MemoryLevel.WORLD,
        [Fact.create("Mara is dead", FactType.CHARACTER_STATE, ["Mara"])],
    )
    return WorldSnapshot(
        world_name="Vale",
        memorandum=memorandum,
        entities=(EntityContext("Mara", status=VitalStatus.DEAD), EntityContext("Tomas")),
    )
