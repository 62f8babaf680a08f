"""Data passed between pipeline stages.

Requests flow in as a :class:`NarrativeIntent` plus a :class:`WorldSnapshot`,
are turned into a :class:`NarrativeContext` and a :class:`PromptSet`, and
come back from the generator as a :class:`RawOutput`.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from narratum.llm.base import GenerationParameters
from narratum.models.roles import Role

if TYPE_CHECKING:
    from narratum.memory.models import CanonicalState, Memorandum


class IntentType(StrEnum):
    CONTINUE_NARRATIVE = "continue_narrative"
    INTRODUCE_EVENT = "introduce_event"
    GENERATE_DIALOGUE = "generate_dialogue"
    DESCRIBE_SCENE = "describe_scene"
    SUMMARIZE = "summarize"
    CREATE_TENSION = "create_tension"
    RESOLVE_CONFLICT = "resolve_conflict"


@dataclass(frozen=True)
class NarrativeIntent:
    """What the user asked for.

    Attributes:
        intent_type: Kind of request.
        description: Free-text detail of the request.
        target_entities: Entities the request is about, if any.
        location: Location the request is set in, if any.
        parameters: Free-form extra parameters.
    """

    intent_type: IntentType
    description: str = ""
    target_entities: tuple[str, ...] = ()
    location: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


class VitalStatus(StrEnum):
    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EntityContext:
    name: str
    status: VitalStatus = VitalStatus.ALIVE
    location: str | None = None
    traits: tuple[str, ...] = ()

    @property
    def is_dead(self) -> bool:
        return self.status == VitalStatus.DEAD

    @property
    def is_active(self) -> bool:
        return self.status != VitalStatus.DEAD


@dataclass(frozen=True)
class LocationContext:
    """The current location and the entities present there."""

    name: str
    description: str = ""
    present: frozenset[str] = frozenset()

    def is_present(self, entity: str) -> bool:
        target = entity.casefold()
        return any(name.casefold() == target for name in self.present)


@dataclass(frozen=True)
class WorldSnapshot:
    """The caller's view of the world, handed to the pipeline by value."""

    world_name: str
    memorandum: Memorandum | None = None
    entities: tuple[EntityContext, ...] = ()
    location: LocationContext | None = None
    recent_summary: str = ""


@dataclass(frozen=True)
class NarrativeContext:
    """Everything prompt composition and coherence validation need."""

    world_name: str
    intent: NarrativeIntent
    canonical_state: CanonicalState | None = None
    entities: tuple[EntityContext, ...] = ()
    location: LocationContext | None = None
    recent_summary: str = ""

    @property
    def dead_entities(self) -> tuple[EntityContext, ...]:
        return tuple(e for e in self.entities if e.is_dead)

    @property
    def active_entities(self) -> tuple[EntityContext, ...]:
        return tuple(e for e in self.entities if e.is_active)


class ExecutionOrder(StrEnum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


@dataclass(frozen=True)
class RolePrompt:
    """One prompt addressed to one role."""

    role: Role
    system_prompt: str
    user_prompt: str
    parameters: GenerationParameters = field(default_factory=GenerationParameters)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PromptSet:
    prompts: tuple[RolePrompt, ...]
    order: ExecutionOrder = ExecutionOrder.SEQUENTIAL

    @property
    def roles(self) -> tuple[Role, ...]:
        return tuple(p.role for p in self.prompts)

    def with_user_suffix(self, suffix: str) -> PromptSet:
        """Copy of this set with ``suffix`` appended to every user prompt."""
        return dataclasses.replace(
            self,
            prompts=tuple(
                dataclasses.replace(p, user_prompt=f"{p.user_prompt}\n\n{suffix}")
                for p in self.prompts
            ),
        )


@dataclass(frozen=True)
class RoleResponse:
    """Outcome of one generator call, successful or not."""

    role: Role
    content: str = ""
    success: bool = True
    error: str | None = None
    duration_seconds: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @classmethod
    def failure(cls, role: Role, error: str, duration_seconds: float = 0.0) -> RoleResponse:
        return cls(role=role, success=False, error=error, duration_seconds=duration_seconds)

    @property
    def has_content(self) -> bool:
        return self.success and bool(self.content.strip())


@dataclass(frozen=True)
class RawOutput:
    """All role responses of one generation attempt, in prompt order."""

    responses: tuple[RoleResponse, ...] = ()
    duration_seconds: float = 0.0

    def get(self, role: Role) -> RoleResponse | None:
        return next((r for r in self.responses if r.role == role), None)

    @property
    def successful(self) -> tuple[RoleResponse, ...]:
        return tuple(r for r in self.responses if r.success)

    @property
    def all_failed(self) -> bool:
        return not self.successful

    @property
    def combined_text(self) -> str:
        return "\n\n".join(r.content for r in self.responses if r.has_content)


@dataclass(frozen=True)
class NarrativeOutput:
    """The validated result handed back to the caller."""

    text: str
    role_texts: dict[Role, str] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    total_tokens: int = 0
