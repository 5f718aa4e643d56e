"""Interface every LLM provider implements for reply generation and detection."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Literal, TypedDict


class LLMMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class BaseLLMClient(ABC):
    @property
    @abstractmethod
    def provider(self) -> str:
        ...

    @property
    def usable(self) -> bool:
        """False for clients that never return text; callers then skip the LLM path."""
        return True

    @abstractmethod
    async def complete(self, prompt: str, *, model: str | None = None) -> str:
        ...

    async def chat(self, messages: List[LLMMessage]) -> str:
        """Providers without a native chat API get the tenant prompt first, then the turns."""
        system = [m["content"].strip() for m in messages if m.get("role") == "system" and m.get("content")]
        turns = [
            f"{m.get('role', 'user')}: {m['content'].strip()}"
            for m in messages
            if m.get("role") != "system" and (m.get("content") or "").strip()
        ]
        header = f"[System instructions]\n{chr(10).join(system)}\n" if system else ""
        return await self.complete(header + "\n".join(turns))
