"""Capture a structured value the bot asked for on the previous turn."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.parsing import EMAIL_RE, digits_only, normalize
from chatcore.orchestrator.ports import ClientStore
from chatcore.orchestrator.types import (
    CONTINUE,
    AwaitingEffect,
    AwaitingKind,
    ClientRecord,
    GateResult,
    OrchestratorConfig,
    Reply,
    Silence,
    StateTransition,
    Transition,
    TurnEvent,
)

logger = logging.getLogger(__name__)

ESCAPE_RE = re.compile(r"^(cancelar|salir|cancel|stop)$")
_NAME_PREFIX_RE = re.compile(r"^(mi nombre es|me llamo|soy)\s+", re.IGNORECASE)
_CHANNELS = ("whatsapp", "instagram", "facebook")

# Client column that receives each captured kind; other kinds live only in context.
CAPTURE_COLUMNS: Dict[AwaitingKind, str] = {
    AwaitingKind.EMAIL: "email",
    AwaitingKind.PHONE: "telefono",
    AwaitingKind.NAME: "nombre",
    AwaitingKind.CHANNEL: "selected_channel",
}


def validate(kind: AwaitingKind, text: str) -> Optional[str]:
    """Normalized value for ``kind`` or None when ``text`` does not qualify."""
    t = (text or "").strip()
    if not t:
        return None

    if kind is AwaitingKind.EMAIL:
        m = EMAIL_RE.search(t)
        return m.group(0).lower() if m else None

    if kind is AwaitingKind.PHONE:
        phone = digits_only(t)
        return phone if len(phone.lstrip("+")) >= 10 else None

    if kind is AwaitingKind.NAME:
        name = _NAME_PREFIX_RE.sub("", t).strip(" .,!")
        if not name or len(name) > 60:
            return None
        if EMAIL_RE.search(name) or len(digits_only(name)) >= 7:
            return None
        return name if re.search(r"[^\W\d_]", name) else None

    if kind is AwaitingKind.CHANNEL:
        n = normalize(t)
        for channel in _CHANNELS:
            if channel in n:
                return channel
        return None

    if kind is AwaitingKind.CODE:
        code = re.sub(r"\D", "", t)
        return code if len(code) >= 4 else None

    return t


def _parse_kind(raw: Optional[str]) -> AwaitingKind:
    try:
        return AwaitingKind(str(raw or "").strip().lower())
    except ValueError:
        return AwaitingKind.CUSTOM


class AwaitingFieldGate(BaseGate):
    name = "awaiting_field"

    def __init__(self, clients: ClientStore, config: OrchestratorConfig) -> None:
        self._clients = clients
        self._config = config

    async def check(self, event: TurnEvent) -> GateResult:
        tenant_id, canal, contact = event.key
        try:
            record = await self._clients.get_client(tenant_id, canal, contact)
        except ChatcoreError as exc:
            logger.warning("AwaitingFieldGate: read failed, continuing: %s", exc)
            return CONTINUE

        if record is None or not record.awaiting_field:
            return CONTINUE

        if record.awaiting_expired(event.now, self._config.awaiting_ttl):
            logger.info("AwaitingFieldGate: %r for %s/%s expired", record.awaiting_field, canal, contact)
            await self._clear(event)
            return CONTINUE

        text = event.text
        if not text:
            return Silence("awaiting_field_but_empty")

        if ESCAPE_RE.match(normalize(text).strip(" .!")):
            logger.info("AwaitingFieldGate: %s/%s cancelled %r", canal, contact, record.awaiting_field)
            await self._clear(event)
            return Transition(StateTransition(patch={"awaiting_cancelled": record.awaiting_field}))

        kind = _parse_kind(record.awaiting_field)
        value = validate(kind, text)
        if value is None:
            return Reply(
                source="awaiting-invalid",
                facts={
                    "EVENT": "AWAITING_FIELD_INVALID",
                    "LANGUAGE": event.lang,
                    "FIELD": kind.value,
                    "INSTRUCTION": "ASK_USER_FOR_VALID_VALUE_ONLY",
                },
            )

        column = CAPTURE_COLUMNS.get(kind)
        if column:
            await self._clients.save_captured(tenant_id, canal, contact, column, value)
        return Transition(self._captured_transition(record, kind, value))

    @staticmethod
    def _captured_transition(record: ClientRecord, kind: AwaitingKind, value: str) -> StateTransition:
        payload: Dict[str, Any] = record.awaiting_payload or {}
        patch: Dict[str, Any] = {"captured": {kind.value: value}}
        next_patch = payload.get("next_patch")
        if isinstance(next_patch, dict):
            patch.update(next_patch)
        return StateTransition(
            flow=payload.get("next_flow"),
            step=payload.get("next_step"),
            patch=patch,
            awaiting=AwaitingEffect(kind=None),
        )

    async def _clear(self, event: TurnEvent) -> None:
        try:
            await self._clients.clear_awaiting(*event.key)
        except ChatcoreError as exc:
            logger.warning("AwaitingFieldGate: clear failed: %s", exc)
