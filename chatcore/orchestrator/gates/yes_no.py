"""Resolve a pending yes/no question stored in the conversation context."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.types import (
    CONTINUE,
    GateResult,
    Reply,
    Silence,
    StateTransition,
    TurnEvent,
)

logger = logging.getLogger(__name__)

YES_RE = re.compile(
    r"^(si|ok|okay|dale|de una|claro|perfecto|listo|vamos|yes|yeah|yep|sure|"
    r"confirmo|confirmar|confirm)\b"
)
NO_RE = re.compile(r"^(no|nop|nope|nel)\b")
# only an answer when it is the whole message: "y donde estan?" is not a yes
_WHOLE_MESSAGE_ANSWERS = {"y": True, "va": True, "n": False}
_YES_WORDS = frozenset({"si", "yes", "claro", "confirmo", "ok", "dale"})
_NO_WORDS = frozenset({"no", "nope", "nel"})

YESNO_CLEAR_PATCH = {
    "awaiting_yesno": None,
    "yesno_context": None,
    "on_yes": None,
    "on_no": None,
}


def parse_yes_no(text: str) -> Optional[bool]:
    """True, False, or None when the answer is neither."""
    t = normalize(text).strip(" .!¡?¿")
    if not t:
        return None
    if t in _WHOLE_MESSAGE_ANSWERS:
        return _WHOLE_MESSAGE_ANSWERS[t]
    if NO_RE.match(t):
        return False
    if YES_RE.match(t):
        return True
    words = set(re.findall(r"\w+", t))
    has_yes = bool(words & _YES_WORDS)
    has_no = bool(words & _NO_WORDS)
    if has_yes != has_no:
        return has_yes
    return None


class YesNoGate(BaseGate):
    name = "yes_no"

    async def check(self, event: TurnEvent) -> GateResult:
        ctx = event.state.context
        if not ctx.awaiting_yesno:
            return CONTINUE

        if not event.text:
            return Silence("awaiting_yesno_but_empty")

        answer = parse_yes_no(event.text)
        if answer is None:
            return Reply(
                source="yesno-required",
                facts={
                    "EVENT": "YESNO_REQUIRED",
                    "LANGUAGE": event.lang,
                    "QUESTION_CONTEXT": ctx.yesno_context or "",
                    "EXPECTED_ANSWERS": ["yes", "no"],
                    "INSTRUCTION": "ASK_USER_TO_REPLY_YES_OR_NO_ONLY",
                },
            )

        label = "yes" if answer else "no"
        handler: Optional[Dict[str, Any]] = ctx.on_yes if answer else ctx.on_no
        logger.info("YesNoGate: %s/%s answered %s", event.turn.canal, event.turn.contact, label)

        if not isinstance(handler, dict) or not handler:
            return Reply(
                source="yesno-received",
                facts={
                    "EVENT": "YESNO_RECEIVED_NO_HANDLER",
                    "LANGUAGE": event.lang,
                    "ANSWER": label,
                    "QUESTION_CONTEXT": ctx.yesno_context or "",
                },
                transition=StateTransition(patch=dict(YESNO_CLEAR_PATCH)),
            )

        patch: Dict[str, Any] = dict(YESNO_CLEAR_PATCH)
        handler_patch = handler.get("patch")
        patch.update(handler_patch if isinstance(handler_patch, dict) else {"yesno_answer": label})
        return Reply(
            source="yesno-received",
            facts={
                "EVENT": "YESNO_RECEIVED",
                "LANGUAGE": event.lang,
                "ANSWER": label,
                "NEXT": {"flow": handler.get("flow"), "step": handler.get("step")},
            },
            transition=StateTransition(
                flow=handler.get("flow"),
                step=handler.get("step"),
                patch=patch,
            ),
        )
