"""Client used when no LLM is configured: it never produces text."""
from __future__ import annotations

from chatcore.clients.llm.base import BaseLLMClient


class NoOpLLMClient(BaseLLMClient):
    @property
    def provider(self) -> str:
        return "noop"

    @property
    def usable(self) -> bool:
        return False

    async def complete(self, prompt: str, *, model: str | None = None) -> str:
        return ""
