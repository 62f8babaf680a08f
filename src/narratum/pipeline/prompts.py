"""Role-table driven prompt composition."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from narratum.models.narrative import (
    ExecutionOrder,
    IntentType,
    NarrativeContext,
    PromptSet,
    RolePrompt,
)
from narratum.models.roles import ROLE_TABLE, Role, RoleSpec
from narratum.pipeline.errors import PromptCompositionError

if TYPE_CHECKING:
    from narratum.validation.feedback import RetryFeedback

# Roles dispatched for each kind of request, in execution order.
INTENT_ROLES: dict[IntentType, tuple[Role, ...]] = {
    IntentType.CONTINUE_NARRATIVE: (Role.NARRATOR,),
    IntentType.INTRODUCE_EVENT: (Role.NARRATOR,),
    IntentType.GENERATE_DIALOGUE: (Role.NARRATOR, Role.CHARACTER),
    IntentType.DESCRIBE_SCENE: (Role.NARRATOR,),
    IntentType.SUMMARIZE: (Role.SUMMARY,),
    IntentType.CREATE_TENSION: (Role.NARRATOR,),
    IntentType.RESOLVE_CONFLICT: (Role.NARRATOR, Role.CONSISTENCY),
}

INTENT_INSTRUCTIONS: dict[IntentType, str] = {
    IntentType.CONTINUE_NARRATIVE: "Continue the story from where it left off.",
    IntentType.INTRODUCE_EVENT: "Introduce a new event into the story.",
    IntentType.GENERATE_DIALOGUE: "Write a dialogue scene between the characters.",
    IntentType.DESCRIBE_SCENE: "Describe the current scene in detail.",
    IntentType.SUMMARIZE: "Summarize what has happened so far.",
    IntentType.CREATE_TENSION: "Raise the tension of the current scene.",
    IntentType.RESOLVE_CONFLICT: "Resolve the current conflict.",
}

MAX_FACTS_IN_PROMPT = 20


class PromptComposer(Protocol):
    """Builds the prompts of a run. ``compose`` runs inside the prompt-building stage."""

    async def compose(self, context: NarrativeContext) -> PromptSet: ...

    def with_feedback(self, prompts: PromptSet, feedback: RetryFeedback) -> PromptSet: ...


class DefaultPromptComposer:
    """Composes one prompt per role listed for the intent in ``INTENT_ROLES``."""

    def __init__(
        self,
        role_table: dict[Role, RoleSpec] | None = None,
        intent_roles: dict[IntentType, tuple[Role, ...]] | None = None,
        order: ExecutionOrder = ExecutionOrder.SEQUENTIAL,
    ) -> None:
        self._role_table = role_table or ROLE_TABLE
        self._intent_roles = intent_roles or INTENT_ROLES
        self._order = order

    async def compose(self, context: NarrativeContext) -> PromptSet:
        roles = self._intent_roles.get(context.intent.intent_type, ())
        if not roles:
            raise PromptCompositionError(f"no roles configured for {context.intent.intent_type}")
        base = self._describe_world(context)
        prompts = []
        for role in roles:
            spec = self._role_table[role]
            prompts.append(
                RolePrompt(
                    role=role,
                    system_prompt=spec.system_prompt,
                    user_prompt=f"{base}\n\n{self._task(role, context)}",
                    parameters=spec.parameters,
                    metadata={"intent": context.intent.intent_type.value},
                )
            )
        return PromptSet(prompts=tuple(prompts), order=self._order)

    def with_feedback(self, prompts: PromptSet, feedback: RetryFeedback) -> PromptSet:
        if feedback.is_valid:
            return prompts
        return prompts.with_user_suffix(feedback.to_prompt_text())

    def _describe_world(self, context: NarrativeContext) -> str:
        lines = [f"World: {context.world_name}"]
        if context.location is not None:
            lines.append(f"Location: {context.location.name}")
            if context.location.description:
                lines.append(context.location.description)
            if context.location.present:
                lines.append(f"Present: {', '.join(sorted(context.location.present))}")
        if context.entities:
            lines.append("Characters:")
            for entity in context.entities:
                traits = f" ({', '.join(entity.traits)})" if entity.traits else ""
                lines.append(f"- {entity.name}: {entity.status.value}{traits}")
        if context.canonical_state is not None and context.canonical_state.facts:
            lines.append("Established facts:")
            facts = context.canonical_state.facts[-MAX_FACTS_IN_PROMPT:]
            lines.extend(f"- {fact.content}" for fact in facts)
        if context.recent_summary:
            lines.append(f"Story so far: {context.recent_summary}")
        return "\n".join(lines)

    def _task(self, role: Role, context: NarrativeContext) -> str:
        intent = context.intent
        task = INTENT_INSTRUCTIONS[intent.intent_type]
        if role == Role.CHARACTER and intent.target_entities:
            task = f"Write what {', '.join(intent.target_entities)} say."
        elif role == Role.CONSISTENCY:
            task = "List any contradiction between the scene and the established facts."
        if intent.description:
            task = f"{task}\nRequest: {intent.description}"
        if context.dead_entities:
            names = ", ".join(e.name for e in context.dead_entities)
            task = f"{task}\nRemember: {names} cannot act, speak or move."
        return f"Task: {task}"
