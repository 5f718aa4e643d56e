"""
Reply finalizer: the single place a turn's reply leaves the system.

Order: capture sticky anchors, merge the context patch, send, and only after a
successful send persist state, awaiting effects, the assistant message and
conversational memory. A failed send leaves storage exactly as it was.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from chatcore.integrations.sender import DedupedSender
from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.ports import Stores
from chatcore.orchestrator.types import (
    ConversationContext,
    ConversationState,
    OrchestratorConfig,
    StateTransition,
    TurnContext,
    combine_patches,
)

logger = logging.getLogger(__name__)

ASSISTANT_SUFFIX = "-bot"

_CHOICE_ES_RE = re.compile(r"(?:¿\s*)?te\s+interesa\s+(.+?)\s*,\s*(.+?)\s+o\s+(?:ambas|ambos)\s*\?", re.IGNORECASE)
_CHOICE_EN_RE = re.compile(r"are\s+you\s+interested\s+in\s+(.+?)\s*,\s*(.+?)\s+or\s+both\s*\?", re.IGNORECASE)
_PRICE_IN_TEXT_RE = re.compile(
    r"(\$\s*\d+(\.\d{1,2})?)|(\bUSD\b)|(\bEUR\b)|(\bMXN\b)|(\bdesde\s*\$?\s*\d+)|"
    r"(\bstarts?\s*at\s*\$?\s*\d+)|(\bfrom\s*\$?\s*\d+)",
    re.IGNORECASE,
)
_LABEL_TRIM = " \"'“”’"


@dataclass(frozen=True)
class ReplyDraft:
    text: str
    source: str
    intent: Optional[str] = None
    transition: Optional[StateTransition] = None


@dataclass(frozen=True)
class FinalizeResult:
    sent: bool
    context: Optional[ConversationContext] = None


def extract_binary_choice(assistant_text: str, lang: str) -> Optional[List[Dict[str, str]]]:
    """Options of an "A, B or both?" question the assistant just asked."""
    t = (assistant_text or "").strip()
    m = _CHOICE_ES_RE.search(t) or _CHOICE_EN_RE.search(t)
    if not m:
        return None
    a = re.sub(r"\s+", " ", m.group(1)).strip(_LABEL_TRIM)
    b = re.sub(r"\s+", " ", m.group(2)).strip(_LABEL_TRIM)
    if not a or not b or len(a) > 60 or len(b) > 60:
        return None
    return [
        {"key": "A", "label": a},
        {"key": "B", "label": b},
        {"key": "ALL", "label": "Both" if lang == "en" else "Ambas"},
    ]


def find_service_anchor(service_names: List[str], *texts: str) -> Optional[str]:
    """First tenant service mentioned in any of ``texts``."""
    haystacks = [normalize(t) for t in texts if t]
    for name in service_names:
        needle = normalize(name)
        if needle and any(re.search(rf"\b{re.escape(needle)}\b", h) for h in haystacks):
            return name
    return None


def is_pricing_turn(intent: Optional[str], assistant_text: str, source: Optional[str]) -> bool:
    src = source or ""
    return (
        (intent or "").lower().strip() == "precio"
        or bool(_PRICE_IN_TEXT_RE.search(assistant_text or ""))
        or "price_" in src
        or "pricing" in src
    )


class ReplyFinalizer:
    def __init__(self, stores: Stores, sender: DedupedSender, config: OrchestratorConfig) -> None:
        self._stores = stores
        self._sender = sender
        self._config = config

    def build_patch(
        self,
        turn: TurnContext,
        state: ConversationState,
        draft: ReplyDraft,
        *,
        lang: str,
        now: datetime,
        base_patch: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        ctx = state.context
        patch: Dict[str, Any] = dict(base_patch or {})
        if draft.transition is not None:
            patch = combine_patches(patch, draft.transition.patch)

        choice = extract_binary_choice(draft.text, lang)
        if choice:
            patch["pending_options"] = choice
        elif not ctx.pending_options and not ctx.booking_active:
            anchor = find_service_anchor(turn.tenant.service_names, turn.text, draft.text)
            if anchor:
                patch["last_service_ref"] = {"name": anchor, "at": now.isoformat()}

        patch.update({
            "last_intent": draft.intent or ctx.last_intent,
            "last_reply_source": draft.source,
            "last_assistant_text": draft.text,
            "last_user_text": turn.text,
            "last_turn_at": now.isoformat(),
        })
        return patch

    async def finalize(
        self,
        turn: TurnContext,
        state: ConversationState,
        draft: ReplyDraft,
        *,
        lang: str,
        now: datetime,
        base_patch: Optional[Dict[str, Any]] = None,
    ) -> FinalizeResult:
        text = (draft.text or "").strip()
        if not text:
            return FinalizeResult(sent=False)

        patch = self.build_patch(turn, state, draft, lang=lang, now=now, base_patch=base_patch)
        next_ctx = state.context.merged(patch)
        transition = draft.transition or StateTransition()
        flow = transition.flow or state.active_flow or self._config.default_flow
        step = transition.step or state.active_step or self._config.default_step

        sent = await self._sender.safe_send(
            tenant_id=turn.tenant_id,
            canal=turn.canal,
            message_id=turn.message_id,
            to=turn.reply_to,
            text=text,
            now=now,
        )
        if not sent:
            logger.warning("ReplyFinalizer: send failed, nothing persisted (source=%s)", draft.source)
            return FinalizeResult(sent=False)

        sender_key = turn.sender_key
        try:
            await self._stores.states.set_state(
                turn.tenant_id, turn.canal, sender_key,
                flow=flow, step=step, context=next_ctx.to_dict(),
            )
        except Exception as exc:
            logger.error("ReplyFinalizer: state not saved after send: %s", exc, exc_info=True)

        await self._apply_awaiting(turn, transition, now)

        try:
            await self._stores.messages.save_message(
                turn.tenant_id,
                turn.canal,
                role="assistant",
                content=text,
                message_id=f"{turn.message_id}{ASSISTANT_SUFFIX}" if turn.message_id else None,
                from_number=sender_key,
                at=now,
            )
        except Exception as exc:
            logger.error("ReplyFinalizer: assistant message not saved after send: %s", exc, exc_info=True)

        await self._remember(turn, draft, lang, now)
        return FinalizeResult(sent=True, context=next_ctx)

    async def _apply_awaiting(self, turn: TurnContext, transition: StateTransition, now: datetime) -> None:
        effect = transition.awaiting
        if effect is None:
            return
        key = (turn.tenant_id, turn.canal, turn.contact)
        try:
            if effect.clears:
                await self._stores.clients.clear_awaiting(*key)
            else:
                await self._stores.clients.set_awaiting(
                    *key, field_name=effect.kind.value, payload=dict(effect.payload), at=now
                )
        except Exception as exc:
            logger.error("ReplyFinalizer: awaiting state not updated: %s", exc, exc_info=True)

    async def _remember(self, turn: TurnContext, draft: ReplyDraft, lang: str, now: datetime) -> None:
        if is_pricing_turn(draft.intent, draft.text, draft.source):
            logger.debug("ReplyFinalizer: pricing turn, memory untouched")
            return
        try:
            await self._stores.memory.remember(
                turn.tenant_id,
                turn.canal,
                turn.sender_key,
                "facts",
                {"preferred_lang": lang, "last_intent": draft.intent, "updated_at": now.isoformat()},
            )
        except Exception as exc:
            logger.warning("ReplyFinalizer: memory not updated: %s", exc)
