"""OpenAI provider for BaseLLMClient."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from chatcore.clients.llm.base import BaseLLMClient, LLMMessage
from chatcore.config.llm import LLMConfig


class OpenAILLMClient(BaseLLMClient):
    """OpenAI-compatible chat completions client."""

    def __init__(self, config: LLMConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    @property
    def provider(self) -> str:
        return "openai"

    def _kwargs(self, messages: List[Dict[str, Any]], model: Optional[str] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": model or self._config.model,
            "messages": messages,
            "temperature": self._config.temperature,
        }
        if self._config.max_tokens is not None:
            kwargs["max_tokens"] = self._config.max_tokens
        return kwargs

    async def complete(self, prompt: str, *, model: Optional[str] = None) -> str:
        response = await self._client.chat.completions.create(
            **self._kwargs([{"role": "user", "content": prompt}], model)
        )
        return response.choices[0].message.content or ""

    async def chat(self, messages: List[LLMMessage]) -> str:
        response = await self._client.chat.completions.create(**self._kwargs(list(messages)))
        return response.choices[0].message.content or ""
