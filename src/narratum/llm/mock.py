"""In-process text generators for tests, demos and the CLI.

``MockTextGenerator`` simulates latency and failures; ``StaticTextGenerator``
always answers with one text; ``ScriptedTextGenerator`` replays a fixed
sequence of texts and exceptions.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from narratum.llm.base import (
    GenerationRequest,
    GenerationResponse,
    GeneratorError,
    GeneratorResponseError,
    GeneratorUnavailableError,
    estimate_tokens,
)
from narratum.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

log = get_logger(__name__)

DEFAULT_MOCK_RESPONSE = (
    "The lantern light trembled across the old stones as the travellers pressed on, "
    "each step echoing softly through the narrow streets of the sleeping town."
)


@dataclass
class MockGeneratorConfig:
    """Behaviour of :class:`MockTextGenerator`.

    Attributes:
        simulated_delay: Seconds to sleep before answering.
        default_response: Text returned when no custom response matches.
        failure_rate: Probability in [0, 1] that a call fails.
        tokens_per_char: Token estimate used for usage numbers.
        custom_responses: Responses keyed by a substring of the user prompt;
            the first matching key (in insertion order) wins.
        role_responses: Responses keyed by role tag, checked after
            ``custom_responses``.
        seed: Seed for the failure RNG, for reproducible runs.
    """

    simulated_delay: float = 0.0
    default_response: str = DEFAULT_MOCK_RESPONSE
    failure_rate: float = 0.0
    tokens_per_char: float = 0.25
    custom_responses: dict[str, str] = field(default_factory=dict)
    role_responses: dict[str, str] = field(default_factory=dict)
    seed: int | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be in [0, 1], got {self.failure_rate}")
        if self.simulated_delay < 0:
            raise ValueError(f"simulated_delay must be >= 0, got {self.simulated_delay}")


class MockTextGenerator:
    """Configurable fake generator."""

    def __init__(self, config: MockGeneratorConfig | None = None, name: str = "mock") -> None:
        self._config = config or MockGeneratorConfig()
        self._name = name
        self._rng = random.Random(self._config.seed)
        self._healthy = True
        self.request_count = 0
        self.requests: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> MockGeneratorConfig:
        return self._config

    def set_healthy(self, healthy: bool) -> None:
        self._healthy = healthy

    async def is_healthy(self) -> bool:
        return self._healthy

    def _pick_response(self, request: GenerationRequest) -> str:
        for key, text in self._config.custom_responses.items():
            if key.casefold() in request.user_prompt.casefold():
                return text
        return self._config.role_responses.get(request.role, self._config.default_response)

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.request_count += 1
        self.requests.append(request)
        started = time.perf_counter()
        if self._config.simulated_delay:
            await asyncio.sleep(self._config.simulated_delay)
        if not self._healthy:
            raise GeneratorUnavailableError(self._name, "generator marked unhealthy")
        if self._config.failure_rate and self._rng.random() < self._config.failure_rate:
            raise GeneratorError(self._name, f"simulated failure for role {request.role}")

        content = self._pick_response(request)
        return GenerationResponse(
            content=content,
            request_id=request.request_id,
            prompt_tokens=estimate_tokens(
                request.system_prompt + request.user_prompt, self._config.tokens_per_char
            ),
            completion_tokens=estimate_tokens(content, self._config.tokens_per_char),
            duration_seconds=time.perf_counter() - started,
            metadata={"generator": self._name, "mock": True},
        )


class StaticTextGenerator:
    """Always answers with the same text, whatever the prompt."""

    def __init__(self, text: str, name: str = "static") -> None:
        self._text = text
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def is_healthy(self) -> bool:
        return True

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        return GenerationResponse(
            content=self._text,
            request_id=request.request_id,
            completion_tokens=estimate_tokens(self._text),
        )


class ScriptedTextGenerator:
    """Replays a script of responses, one entry per call.

    Entries are either texts or exceptions to raise. Once the script is
    exhausted the last entry is repeated.
    """

    def __init__(self, script: Iterable[str | BaseException], name: str = "scripted") -> None:
        self._script = list(script)
        if not self._script:
            raise ValueError("script must contain at least one entry")
        self._name = name
        self.calls: list[GenerationRequest] = []

    @property
    def name(self) -> str:
        return self._name

    async def is_healthy(self) -> bool:
        return True

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        index = min(len(self.calls), len(self._script) - 1)
        self.calls.append(request)
        entry = self._script[index]
        if isinstance(entry, BaseException):
            raise entry
        if not isinstance(entry, str):
            raise GeneratorResponseError(self._name, f"bad script entry {entry!r}")
        return GenerationResponse(content=entry, request_id=request.request_id)
