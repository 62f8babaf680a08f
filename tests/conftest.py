"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from narratum.llm import MockGeneratorConfig, MockTextGenerator
from narratum.memory import Fact, FactType, Memorandum, MemoryLevel
from narratum.models import IntentType, NarrativeIntent, WorldSnapshot
from narratum.observability import AuditTrail, MetricsCollector, PipelineEventLog
from narratum.pipeline import PipelineConfig


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def audit() -> AuditTrail:
    return AuditTrail()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def events() -> PipelineEventLog:
    return PipelineEventLog()


@pytest.fixture
def fast_config() -> PipelineConfig:
    """Config with short deadlines and no retry delay."""
    return PipelineConfig.for_testing()


@pytest.fixture
def mock_generator() -> MockTextGenerator:
    return MockTextGenerator(MockGeneratorConfig(seed=7))


@pytest.fixture
def memorandum() -> Memorandum:
    """World memorandum where Mara is dead and the keep stands."""
    memo = Memorandum.create_empty("eldoria", "Eldoria")
    return memo.add_facts(
        MemoryLevel.WORLD,
        [
            Fact.create("Mara is dead", FactType.CHARACTER_STATE, ["Mara"], level=MemoryLevel.WORLD),
            Fact.create("The keep is intact", FactType.LOCATION_STATE, ["keep"], level=MemoryLevel.WORLD),
        ],
    )


@pytest.fixture
def world(memorandum: Memorandum) -> WorldSnapshot:
    return WorldSnapshot(world_name="Eldoria", memorandum=memorandum)


@pytest.fixture
def intent() -> NarrativeIntent:
    return NarrativeIntent(IntentType.CONTINUE_NARRATIVE, description="The night falls")
