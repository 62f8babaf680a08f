"""Fact model, canonical states and fact-level coherence checks."""

from narratum.memory.coherence import FactCoherenceChecker, find_dead_entities
from narratum.memory.errors import (
    MemoryModelError,
    UnknownMemoryLevelError,
    ViolationAlreadyResolvedError,
    ViolationNotFoundError,
)
from narratum.memory.extraction import (
    CharacterDied,
    CharacterMoved,
    CharactersEncountered,
    ExtractionContext,
    FactExtractor,
    StoryEvent,
)
from narratum.memory.models import (
    CanonicalState,
    CoherenceSeverity,
    CoherenceViolation,
    CoherenceViolationType,
    Fact,
    FactType,
    Memorandum,
    MemoryLevel,
)

__all__ = [
    "CanonicalState",
    "CharacterDied",
    "CharacterMoved",
    "CharactersEncountered",
    "CoherenceSeverity",
    "CoherenceViolation",
    "CoherenceViolationType",
    "ExtractionContext",
    "Fact",
    "FactCoherenceChecker",
    "FactExtractor",
    "FactType",
    "Memorandum",
    "MemoryLevel",
    "MemoryModelError",
    "StoryEvent",
    "UnknownMemoryLevelError",
    "ViolationAlreadyResolvedError",
    "ViolationNotFoundError",
    "find_dead_entities",
]
