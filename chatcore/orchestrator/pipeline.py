"""Ordered gate runner.

Gates run strictly in sequence. The first ``Silence`` or ``Reply`` stops the
pipeline; ``Transition`` results are accumulated and handed to whatever
produces the turn's reply.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from chatcore.core.exceptions import GateContractError
from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.types import (
    Continue,
    Reply,
    Silence,
    StateTransition,
    Transition,
    TurnEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineOutcome:
    """``stop`` is None when every gate let the turn through."""

    stop: Optional[Union[Silence, Reply]] = None
    stopped_by: Optional[str] = None
    transition: Optional[StateTransition] = None

    @property
    def passed(self) -> bool:
        return self.stop is None


class GatePipeline:
    def __init__(self, gates: Sequence[BaseGate]) -> None:
        self._gates: List[BaseGate] = list(gates)

    @property
    def gate_names(self) -> List[str]:
        return [g.name for g in self._gates]

    async def run(self, event: TurnEvent) -> PipelineOutcome:
        carried: Optional[StateTransition] = None
        for gate in self._gates:
            result = await gate.check(event)

            if isinstance(result, Continue):
                continue
            if isinstance(result, Transition):
                carried = result.transition if carried is None else carried.then(result.transition)
                logger.debug("Gate %s added a transition", gate.name)
                continue
            if isinstance(result, Silence):
                logger.info("Gate %s silenced the turn (%s)", gate.name, result.reason)
                return PipelineOutcome(stop=result, stopped_by=gate.name, transition=carried)
            if isinstance(result, Reply):
                logger.info("Gate %s replied (source=%s)", gate.name, result.source)
                merged = result.transition if carried is None else carried.then(result.transition)
                return PipelineOutcome(stop=result, stopped_by=gate.name, transition=merged)

            raise GateContractError(
                f"Gate {gate.name!r} returned {type(result).__name__}",
                details={"gate": gate.name},
            )

        return PipelineOutcome(transition=carried)
