"""Abstract base for pipeline gates."""
from __future__ import annotations

from abc import ABC, abstractmethod

from chatcore.orchestrator.types import GateResult, TurnEvent


class BaseGate(ABC):
    """A gate inspects the turn and returns Continue, Silence, Reply or Transition."""

    name: str = "gate"

    @abstractmethod
    async def check(self, event: TurnEvent) -> GateResult:
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
