from chatcore.clients.llm.providers.noop import NoOpLLMClient
from chatcore.clients.llm.providers.openai import OpenAILLMClient

__all__ = ["NoOpLLMClient", "OpenAILLMClient"]
