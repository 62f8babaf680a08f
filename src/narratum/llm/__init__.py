"""Text generator contract and implementations."""

from narratum.llm.base import (
    GenerationParameters,
    GenerationRequest,
    GenerationResponse,
    GeneratorError,
    GeneratorResponseError,
    GeneratorUnavailableError,
    TextGenerator,
)
from narratum.llm.langchain_adapter import LangChainTextGenerator
from narratum.llm.mock import (
    MockGeneratorConfig,
    MockTextGenerator,
    ScriptedTextGenerator,
    StaticTextGenerator,
)

__all__ = [
    "GenerationParameters",
    "GenerationRequest",
    "GenerationResponse",
    "GeneratorError",
    "GeneratorResponseError",
    "GeneratorUnavailableError",
    "LangChainTextGenerator",
    "MockGeneratorConfig",
    "MockTextGenerator",
    "ScriptedTextGenerator",
    "StaticTextGenerator",
    "TextGenerator",
]
