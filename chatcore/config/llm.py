"""
chatcore.config.llm – text-generation client config.

Env vars: OPENAI_API_KEY, OPENAI_BASE_URL, LLM_MODEL, LLM_TEMPERATURE,
LLM_MAX_TOKENS, LLM_TIMEOUT.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from chatcore.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for the OpenAI-compatible client."""

    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.2
    max_tokens: Optional[int] = 400
    timeout: float = 20.0
    max_retries: int = 1

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def to_dict(self) -> Dict[str, Any]:
        """Dict without secrets, for logging."""
        out = {k: v for k, v in asdict(self).items() if v is not None}
        out.pop("api_key", None)
        return out

    @classmethod
    def from_env(cls) -> "LLMConfig":
        try:
            max_tokens_raw = os.environ.get("LLM_MAX_TOKENS", "400").strip()
            return cls(
                model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
                api_key=os.environ.get("OPENAI_API_KEY") or None,
                base_url=os.environ.get("OPENAI_BASE_URL") or None,
                temperature=float(os.environ.get("LLM_TEMPERATURE", "0.2")),
                max_tokens=int(max_tokens_raw) if max_tokens_raw else None,
                timeout=float(os.environ.get("LLM_TIMEOUT", "20")),
            )
        except ValueError as exc:
            raise ConfigurationError("Invalid LLM_* environment value", cause=exc) from exc


def load_llm_config() -> LLMConfig:
    return LLMConfig.from_env()
