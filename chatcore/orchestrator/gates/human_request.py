"""Hand the chat to a person when the customer explicitly asks for one."""
from __future__ import annotations

import logging
import re

from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.override import HumanOverride
from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.types import (
    CONTINUE,
    GateResult,
    Reply,
    StateTransition,
    Tenant,
    TurnEvent,
)

logger = logging.getLogger(__name__)

_NEVER_ESCALATE = frozenset({"no gracias", "gracias", "ok", "thanks", "no thanks", "thank you"})

HUMAN_REQUEST_RE = re.compile(
    r"\b(quiero|necesito|puedo|me gustaria|deseo)\s+(hablar|chatear|comunicarme)\s+con\s+"
    r"(una?\s+)?(persona|humano|agente|asesor|representante|alguien)\b"
    r"|\b(humano|persona real|agente humano)\b"
    r"|\b(human|agent|representative|real person|live agent|talk to someone)\b"
)
# "no quiero hablar con un humano", "I don't want an agent"
_DECLINED_RE = re.compile(
    r"\b(no|nunca|not|never|do not|don['’]?t|didn['’]?t)\s+(me\s+|really\s+)?"
    r"(quiero|necesito|deseo|want|need|hablar|talk|speak|chatear)\b"
)


def asks_for_human(text: str) -> bool:
    t = normalize(text).strip(" .!¡?¿")
    if not t or t in _NEVER_ESCALATE:
        return False
    if _DECLINED_RE.search(t):
        return False
    return bool(HUMAN_REQUEST_RE.search(t))


class HumanRequestGate(BaseGate):
    name = "human_request"

    def __init__(self, override: HumanOverride) -> None:
        self._override = override

    async def check(self, event: TurnEvent) -> GateResult:
        if not asks_for_human(event.text):
            return CONTINUE

        tenant: Tenant = event.turn.tenant
        await self._override.activate(
            tenant=tenant,
            canal=event.turn.canal,
            contact=event.turn.contact,
            now=event.now,
            reason="explicit_human_request",
            source="human_request_gate",
            user_text=event.text,
            message_id=event.turn.message_id,
        )
        return Reply(
            source="human-handoff",
            intent="soporte",
            facts={
                "EVENT": "HUMAN_HANDOFF_REQUESTED",
                "LANGUAGE": event.lang,
                "NEXT_STEP": "TEAM_WILL_CONTACT_USER",
            },
            transition=StateTransition(
                patch={"human_handoff": True, "handoff_reason": "explicit_human_request"},
            ),
        )
