"""
LLM clients used for reply text generation and language-detection fallback.

    build_llm_client(load_llm_config())  # OpenAI when OPENAI_API_KEY is set, else no-op
"""
from __future__ import annotations

import logging
from typing import Optional

from chatcore.clients.llm.base import BaseLLMClient, LLMMessage
from chatcore.clients.llm.providers import NoOpLLMClient, OpenAILLMClient
from chatcore.config.llm import LLMConfig, load_llm_config

logger = logging.getLogger(__name__)


def build_llm_client(config: Optional[LLMConfig] = None) -> BaseLLMClient:
    config = config or load_llm_config()
    if not config.enabled:
        logger.info("No OPENAI_API_KEY configured; using NoOpLLMClient")
        return NoOpLLMClient()
    logger.info("LLM client: %s", config.to_dict())
    return OpenAILLMClient(config)


__all__ = [
    "BaseLLMClient",
    "LLMMessage",
    "NoOpLLMClient",
    "OpenAILLMClient",
    "build_llm_client",
]
