"""LangChain adapter for the text generator protocol."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from narratum.llm.base import (
    GenerationRequest,
    GenerationResponse,
    GeneratorError,
    GeneratorResponseError,
)

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel


def extract_text(content: str | list[Any]) -> str:
    """Extract plain text from a chat message content field.

    Some chat models return a list of content blocks instead of a string;
    text blocks are joined with newlines.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        parts.extend(block for block in content if isinstance(block, str))
        if parts:
            return "\n".join(parts)
    return str(content)


class LangChainTextGenerator:
    """Adapts a LangChain chat model to the :class:`TextGenerator` protocol.

    Sampling parameters are applied when the chat model is constructed;
    per-request parameters are forwarded only as ``stop`` sequences.
    """

    def __init__(self, model: BaseChatModel, name: str = "langchain") -> None:
        self._model = model
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def is_healthy(self) -> bool:
        return True

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        messages = [
            SystemMessage(content=request.system_prompt),
            HumanMessage(content=request.user_prompt),
        ]
        stop = list(request.parameters.stop) or None
        started = time.perf_counter()
        try:
            response = await self._model.ainvoke(messages, stop=stop)
        except Exception as e:
            raise GeneratorError(self._name, f"Generation failed: {e}") from e

        if not isinstance(response, AIMessage):
            raise GeneratorResponseError(
                self._name, f"expected AIMessage, got {type(response).__name__}"
            )

        usage = response.usage_metadata or {}
        return GenerationResponse(
            content=extract_text(response.content),
            request_id=request.request_id,
            prompt_tokens=int(usage.get("input_tokens", 0)),
            completion_tokens=int(usage.get("output_tokens", 0)),
            duration_seconds=time.perf_counter() - started,
            metadata={"generator": self._name, **(response.response_metadata or {})},
        )
