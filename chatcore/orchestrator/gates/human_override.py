"""Silence the bot while a person has taken over the conversation."""
from __future__ import annotations

import logging
import re

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.ports import ClientStore
from chatcore.orchestrator.types import (
    CONTINUE,
    GateResult,
    Silence,
    StateTransition,
    Transition,
    TurnEvent,
)

logger = logging.getLogger(__name__)

RESUME_RE = re.compile(
    r"^(volver al bot|reactivar bot|reactivar|automatico|resume|seguir|continua|continuar|"
    r"no gracias|cancelar|ya no|stop|parar)$"
)

# Context keys that only make sense while a person is handling the chat.
HANDOFF_CLEAR_PATCH = {
    "human_handoff": None,
    "handoff_reason": None,
    "needs_clarify": None,
    "ready_to_close": None,
}


def is_resume_phrase(text: str) -> bool:
    return bool(RESUME_RE.match(normalize(text).strip(" .!¡?¿")))


class HumanOverrideGate(BaseGate):
    name = "human_override"

    def __init__(self, clients: ClientStore) -> None:
        self._clients = clients

    async def check(self, event: TurnEvent) -> GateResult:
        tenant_id, canal, contact = event.key
        try:
            record = await self._clients.get_client(tenant_id, canal, contact)
        except ChatcoreError as exc:
            logger.warning("HumanOverrideGate: read failed, continuing: %s", exc)
            return CONTINUE

        if record is None or not record.human_override:
            return CONTINUE

        if record.override_lapsed(event.now):
            logger.info("HumanOverrideGate: override for %s/%s expired, clearing", canal, contact)
            return await self._clear(event)

        if is_resume_phrase(event.text):
            logger.info("HumanOverrideGate: %s/%s asked to resume the bot", canal, contact)
            return await self._clear(event)

        return Silence("human_override")

    async def _clear(self, event: TurnEvent) -> GateResult:
        tenant_id, canal, contact = event.key
        try:
            await self._clients.clear_human_override(tenant_id, canal, contact)
        except ChatcoreError as exc:
            logger.warning("HumanOverrideGate: clear failed: %s", exc)
        return Transition(StateTransition(patch=dict(HANDOFF_CLEAR_PATCH)))
