"""Data types shared by the pipeline and the validators."""

from narratum.models.narrative import (
    EntityContext,
    ExecutionOrder,
    IntentType,
    LocationContext,
    NarrativeContext,
    NarrativeIntent,
    NarrativeOutput,
    PromptSet,
    RawOutput,
    RolePrompt,
    RoleResponse,
    VitalStatus,
    WorldSnapshot,
)
from narratum.models.roles import ROLE_TABLE, Role, RoleSpec, get_role_spec

__all__ = [
    "ROLE_TABLE",
    "EntityContext",
    "ExecutionOrder",
    "IntentType",
    "LocationContext",
    "NarrativeContext",
    "NarrativeIntent",
    "NarrativeOutput",
    "PromptSet",
    "RawOutput",
    "Role",
    "RolePrompt",
    "RoleResponse",
    "RoleSpec",
    "VitalStatus",
    "WorldSnapshot",
    "get_role_spec",
]
