"""Base protocol and types for text generators."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters sent with every request."""

    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 0.9
    stop: tuple[str, ...] = ()


@dataclass(frozen=True)
class GenerationRequest:
    """A role-tagged prompt request.

    Attributes:
        system_prompt: Instructions framing the role.
        user_prompt: The concrete request.
        role: Role tag of the content being produced (e.g. ``narrator``).
        parameters: Sampling parameters.
        metadata: Free-form metadata passed through to the generator.
        request_id: Unique request identifier.
    """

    system_prompt: str
    user_prompt: str
    role: str
    parameters: GenerationParameters = field(default_factory=GenerationParameters)
    metadata: dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class GenerationResponse:
    """A successful generation.

    ``content`` is typed as ``str`` but generators are untrusted; callers
    check the runtime type before using it.
    """

    content: str
    request_id: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_seconds: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@runtime_checkable
class TextGenerator(Protocol):
    """Protocol for text generators.

    Implementations raise a :class:`GeneratorError` subclass on failure; any
    other exception is treated the same way by the pipeline.
    """

    @property
    def name(self) -> str:
        """Identifier used in logs and audit entries."""
        ...

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Generate text for one request.

        Raises:
            GeneratorError: If generation fails.
        """
        ...

    async def is_healthy(self) -> bool:
        """Cheap availability probe. Must not raise."""
        ...


class GeneratorError(Exception):
    """Base exception for generator failures."""

    def __init__(self, generator: str, message: str) -> None:
        self.generator = generator
        self.reason = message
        super().__init__(f"[{generator}] {message}")


class GeneratorUnavailableError(GeneratorError):
    """Raised when the generator cannot be reached or refuses work."""


class GeneratorResponseError(GeneratorError):
    """Raised when the generator answered with something unusable."""


def estimate_tokens(text: str, tokens_per_char: float = 0.25) -> int:
    """Rough token count for generators that do not report usage."""
    return max(0, round(len(text) * tokens_per_char))
