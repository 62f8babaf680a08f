"""Generation roles and their default prompt and validation settings.

Roles are a closed enumeration; everything that varies per role lives in
``ROLE_TABLE``. Adding a role means adding an enum member and a table entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from narratum.llm.base import GenerationParameters


class Role(StrEnum):
    NARRATOR = "narrator"
    CHARACTER = "character"
    SUMMARY = "summary"
    CONSISTENCY = "consistency"


@dataclass(frozen=True)
class RoleSpec:
    """Per-role settings.

    Attributes:
        label: Human-readable name.
        system_prompt: Default system prompt for the role.
        min_length: Minimum characters used by the narrative validator preset.
        max_length: Maximum characters used by the narrative validator preset.
        parameters: Default sampling parameters.
    """

    label: str
    system_prompt: str
    min_length: int
    max_length: int
    parameters: GenerationParameters = field(default_factory=GenerationParameters)


ROLE_TABLE: dict[Role, RoleSpec] = {
    Role.NARRATOR: RoleSpec(
        label="Narrator",
        system_prompt=(
            "You are the narrator of an ongoing story. Continue it in vivid prose, "
            "staying consistent with every established fact."
        ),
        min_length=150,
        max_length=3000,
        parameters=GenerationParameters(temperature=0.8, max_tokens=1024),
    ),
    Role.CHARACTER: RoleSpec(
        label="Character",
        system_prompt=(
            "You voice the characters of the story. Write their dialogue in character, "
            "and never let a character act who cannot."
        ),
        min_length=50,
        max_length=2000,
        parameters=GenerationParameters(temperature=0.9, max_tokens=768),
    ),
    Role.SUMMARY: RoleSpec(
        label="Summary",
        system_prompt="You summarize story passages faithfully and concisely.",
        min_length=50,
        max_length=1000,
        parameters=GenerationParameters(temperature=0.3, max_tokens=512),
    ),
    Role.CONSISTENCY: RoleSpec(
        label="Consistency checker",
        system_prompt=(
            "You review story passages against the established facts and list any "
            "inconsistencies you find."
        ),
        min_length=20,
        max_length=1000,
        parameters=GenerationParameters(temperature=0.1, max_tokens=512),
    ),
}


def get_role_spec(role: Role | str) -> RoleSpec:
    """Look up the settings of a role.

    Raises:
        ValueError: If ``role`` is not a known role.
    """
    return ROLE_TABLE[Role(role)]
