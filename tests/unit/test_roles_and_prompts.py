"""Tests for the role table, context assembly and prompt composition."""

from __future__ import annotations

import pytest

from narratum.memory import Fact, FactType, Memorandum, MemoryLevel
from narratum.models import (
    ROLE_TABLE,
    EntityContext,
    ExecutionOrder,
    IntentType,
    LocationContext,
    NarrativeIntent,
    Role,
    VitalStatus,
    WorldSnapshot,
    get_role_spec,
)
from narratum.pipeline import (
    INTENT_ROLES,
    ContextAssemblyError,
    DefaultContextAssembler,
    DefaultPromptComposer,
    PromptCompositionError,
)
from narratum.validation import RetryFeedback, ValidationIssue, ValidationReport


class TestRoleTable:
    def test_every_role_has_a_spec(self) -> None:
        assert set(ROLE_TABLE) == set(Role)

    def test_bounds_are_consistent(self) -> None:
        for spec in ROLE_TABLE.values():
            assert 0 < spec.min_length < spec.max_length

    def test_lookup_by_value(self) -> None:
        assert get_role_spec("summary").label == "Summary"

    def test_unknown_role(self) -> None:
        with pytest.raises(ValueError):
            get_role_spec("bard")

    def test_every_intent_has_roles(self) -> None:
        assert set(INTENT_ROLES) == set(IntentType)
        assert all(INTENT_ROLES[i] for i in IntentType)


# --- Context Assembly Tests ---


class TestDefaultContextAssembler:
    @pytest.mark.asyncio
    async def test_merges_memorandum_levels(self, world: WorldSnapshot) -> None:
        context = await DefaultContextAssembler().assemble(
            world, NarrativeIntent(IntentType.CONTINUE_NARRATIVE)
        )

        assert context.world_name == "Eldoria"
        assert context.canonical_state is not None
        assert context.canonical_state.fact_count == 2

    @pytest.mark.asyncio
    async def test_without_memorandum_has_no_state(self) -> None:
        context = await DefaultContextAssembler().assemble(
            WorldSnapshot("Eldoria"), NarrativeIntent(IntentType.SUMMARIZE)
        )

        assert context.canonical_state is None

    @pytest.mark.asyncio
    async def test_blank_world_rejected(self) -> None:
        with pytest.raises(ContextAssemblyError, match="world name"):
            await DefaultContextAssembler().assemble(
                WorldSnapshot("  "), NarrativeIntent(IntentType.SUMMARIZE)
            )

    @pytest.mark.asyncio
    async def test_unknown_target_rejected(self, world: WorldSnapshot) -> None:
        intent = NarrativeIntent(IntentType.GENERATE_DIALOGUE, target_entities=("Ghost",))

        with pytest.raises(ContextAssemblyError, match="Ghost"):
            await DefaultContextAssembler().assemble(world, intent)

    @pytest.mark.asyncio
    async def test_targets_known_from_facts_or_entities(self, world: WorldSnapshot) -> None:
        snapshot = WorldSnapshot(
            "Eldoria", memorandum=world.memorandum, entities=(EntityContext("Tomas"),)
        )
        intent = NarrativeIntent(IntentType.GENERATE_DIALOGUE, target_entities=("tomas", "MARA"))

        context = await DefaultContextAssembler().assemble(snapshot, intent)

        assert context.intent is intent

    @pytest.mark.asyncio
    async def test_intent_location_overrides_world_location(self) -> None:
        snapshot = WorldSnapshot(
            "Eldoria",
            entities=(EntityContext("Tomas"),),
            location=LocationContext("the mill", present=frozenset({"Tomas"})),
        )
        intent = NarrativeIntent(
            IntentType.DESCRIBE_SCENE, target_entities=("Tomas",), location="the keep"
        )

        context = await DefaultContextAssembler().assemble(snapshot, intent)

        assert context.location == LocationContext("the keep", present=frozenset({"Tomas"}))

    @pytest.mark.asyncio
    async def test_same_location_kept(self) -> None:
        location = LocationContext("The Mill", description="Dusty", present=frozenset({"Tomas"}))
        snapshot = WorldSnapshot("Eldoria", location=location)

        context = await DefaultContextAssembler().assemble(
            snapshot, NarrativeIntent(IntentType.DESCRIBE_SCENE, location="the mill")
        )

        assert context.location is location


# --- Prompt Composition Tests ---


class TestDefaultPromptComposer:
    async def _context(self, intent: NarrativeIntent, world: WorldSnapshot | None = None):
        return await DefaultContextAssembler().assemble(world or WorldSnapshot("Eldoria"), intent)

    @pytest.mark.asyncio
    async def test_one_prompt_per_role_in_order(self) -> None:
        context = await self._context(NarrativeIntent(IntentType.GENERATE_DIALOGUE))

        prompts = await DefaultPromptComposer().compose(context)

        assert prompts.roles == (Role.NARRATOR, Role.CHARACTER)
        assert prompts.order == ExecutionOrder.SEQUENTIAL
        assert prompts.prompts[0].system_prompt == ROLE_TABLE[Role.NARRATOR].system_prompt
        assert prompts.prompts[1].parameters == ROLE_TABLE[Role.CHARACTER].parameters

    @pytest.mark.asyncio
    async def test_prompt_describes_world_and_facts(self, world: WorldSnapshot) -> None:
        intent = NarrativeIntent(IntentType.CONTINUE_NARRATIVE, description="Dawn breaks")
        context = await self._context(intent, world)

        prompt = (await DefaultPromptComposer().compose(context)).prompts[0]

        assert "World: Eldoria" in prompt.user_prompt
        assert "- Mara is dead" in prompt.user_prompt
        assert "Request: Dawn breaks" in prompt.user_prompt
        assert prompt.metadata == {"intent": "continue_narrative"}

    @pytest.mark.asyncio
    async def test_dead_entities_called_out(self) -> None:
        snapshot = WorldSnapshot("Eldoria", entities=(EntityContext("Mara", VitalStatus.DEAD),))
        context = await self._context(NarrativeIntent(IntentType.CONTINUE_NARRATIVE), snapshot)

        prompt = (await DefaultPromptComposer().compose(context)).prompts[0]

        assert "- Mara: dead" in prompt.user_prompt
        assert "Remember: Mara cannot act, speak or move." in prompt.user_prompt

    @pytest.mark.asyncio
    async def test_fact_list_is_capped(self) -> None:
        memo = Memorandum.create_empty("w", "W").add_facts(
            MemoryLevel.WORLD, [Fact.create(f"Omen {i} was seen", FactType.EVENT) for i in range(30)]
        )
        context = await self._context(
            NarrativeIntent(IntentType.CONTINUE_NARRATIVE), WorldSnapshot("W", memorandum=memo)
        )

        prompt = (await DefaultPromptComposer().compose(context)).prompts[0]

        assert "Omen 29 was seen" in prompt.user_prompt
        assert "Omen 9 was seen" not in prompt.user_prompt

    @pytest.mark.asyncio
    async def test_intent_without_roles(self) -> None:
        composer = DefaultPromptComposer(intent_roles={IntentType.SUMMARIZE: (Role.SUMMARY,)})
        context = await self._context(NarrativeIntent(IntentType.CREATE_TENSION))

        with pytest.raises(PromptCompositionError, match="no roles"):
            await composer.compose(context)

    @pytest.mark.asyncio
    async def test_with_feedback_appends_rejection(self) -> None:
        composer = DefaultPromptComposer()
        prompts = await composer.compose(await self._context(NarrativeIntent(IntentType.SUMMARIZE)))
        report = ValidationReport(
            [ValidationIssue("content_too_short", "summary content too short", "error", "structure", role="summary")]
        )

        retried = composer.with_feedback(prompts, RetryFeedback.from_report(report))

        assert retried.prompts[0].user_prompt.startswith(prompts.prompts[0].user_prompt)
        assert "PREVIOUS ATTEMPT REJECTED. Write longer passages." in retried.prompts[0].user_prompt
        assert "PREVIOUS ATTEMPT REJECTED" not in prompts.prompts[0].user_prompt

    @pytest.mark.asyncio
    async def test_accepted_feedback_is_a_no_op(self) -> None:
        composer = DefaultPromptComposer()
        prompts = await composer.compose(await self._context(NarrativeIntent(IntentType.SUMMARIZE)))

        assert composer.with_feedback(prompts, RetryFeedback.accepted()) is prompts
