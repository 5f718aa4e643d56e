"""In-process storage backend."""
from chatcore.infra.memory.store import InMemoryStore

__all__ = ["InMemoryStore"]
