"""
In-process implementation of every storage port.

Used for local runs without PostgreSQL (``CHATCORE_STORE=memory``) and by the
test-suite. Each method performs its check-and-write without awaiting in
between, so on a single event loop it has the same atomicity the SQL
repositories get from unique constraints.
"""
from __future__ import annotations

import copy
import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from chatcore.orchestrator.ports import FAILURE_SUFFIX, Stores
from chatcore.orchestrator.types import (
    ClientRecord,
    ConversationContext,
    ConversationState,
    CtaRow,
    CustomerDetails,
    FaqEntry,
    FollowUpSettings,
    PendingFollowUp,
    Tenant,
    TenantIntent,
)

logger = logging.getLogger(__name__)

Key = Tuple[str, str, str]

_CAPTURE_COLUMNS = frozenset({"email", "telefono", "nombre", "selected_channel", "pais"})


@dataclass
class StoredMessage:
    tenant_id: str
    canal: str
    role: str
    content: str
    message_id: Optional[str]
    from_number: str
    at: datetime


@dataclass
class StoredFollowUp:
    id: int
    tenant_id: str
    canal: str
    contacto: str
    contenido: str
    fecha_envio: datetime
    enviado: bool = False
    sent_at: Optional[datetime] = None


class InMemoryStore:
    """All storage ports over plain dicts."""

    def __init__(self) -> None:
        self.tenants: Dict[str, Tenant] = {}
        self.followup_settings: Dict[str, FollowUpSettings] = {}
        self.faqs: Dict[str, List[FaqEntry]] = {}
        self.intents: Dict[str, List[TenantIntent]] = {}
        self.ctas: Dict[str, List[CtaRow]] = {}

        self.states: Dict[Key, Tuple[Optional[str], Optional[str], Dict[str, Any]]] = {}
        self.clients: Dict[Key, ClientRecord] = {}
        self.reservations: Set[Key] = set()
        self.messages: List[StoredMessage] = []
        self.sales: Dict[Key, Dict[str, Any]] = {}
        self.followups: List[StoredFollowUp] = []
        self.memory: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
        self.usage: Dict[Tuple[str, str, str], int] = {}
        self._ids = itertools.count(1)

    def as_stores(self) -> Stores:
        return Stores(
            states=self,
            clients=self,
            dedup=self,
            messages=self,
            sales=self,
            followups=self,
            tenants=self,
            memory=self,
            usage=self,
        )

    # ── seeding helpers ──────────────────────────────────────────────────

    def add_tenant(self, tenant: Tenant, followups: Optional[FollowUpSettings] = None) -> Tenant:
        self.tenants[tenant.id] = tenant
        if followups is not None:
            self.followup_settings[tenant.id] = followups
        return tenant

    def add_faq(self, tenant_id: str, entry: FaqEntry) -> None:
        self.faqs.setdefault(tenant_id, []).append(entry)

    # ── ConversationStateStore ───────────────────────────────────────────

    async def get_state(self, tenant_id: str, canal: str, sender: str) -> ConversationState:
        row = self.states.get((tenant_id, canal, sender))
        if row is None:
            return ConversationState()
        flow, step, ctx = row
        return ConversationState(
            active_flow=flow,
            active_step=step,
            context=ConversationContext.from_dict(copy.deepcopy(ctx)),
        )

    async def set_state(self, tenant_id, canal, sender, *, flow, step, context) -> None:
        self.states[(tenant_id, canal, sender)] = (flow, step, copy.deepcopy(context))

    # ── ClientStore ──────────────────────────────────────────────────────

    async def get_client(self, tenant_id: str, canal: str, contacto: str) -> Optional[ClientRecord]:
        record = self.clients.get((tenant_id, canal, contacto))
        return replace(record, awaiting_payload=dict(record.awaiting_payload)) if record else None

    def _client(self, tenant_id: str, canal: str, contacto: str) -> ClientRecord:
        return self.clients.setdefault((tenant_id, canal, contacto), ClientRecord())

    async def set_human_override(self, tenant_id, canal, contacto, *, until) -> None:
        record = self._client(tenant_id, canal, contacto)
        record.human_override = True
        record.human_override_until = until

    async def clear_human_override(self, tenant_id, canal, contacto) -> None:
        record = self.clients.get((tenant_id, canal, contacto))
        if record is not None:
            record.human_override = False
            record.human_override_until = None

    async def set_estado(self, tenant_id, canal, contacto, estado) -> None:
        self._client(tenant_id, canal, contacto).estado = estado

    async def upsert_details(
        self, tenant_id, canal, contacto, details: CustomerDetails, *, estado=None
    ) -> None:
        record = self._client(tenant_id, canal, contacto)
        record.nombre = details.nombre or record.nombre
        record.email = details.email or record.email
        record.telefono = details.telefono or record.telefono
        record.pais = details.pais or record.pais
        if estado:
            record.estado = estado

    async def set_awaiting(self, tenant_id, canal, contacto, *, field_name, payload, at) -> None:
        record = self._client(tenant_id, canal, contacto)
        record.awaiting_field = field_name
        record.awaiting_payload = dict(payload or {})
        record.awaiting_updated_at = at

    async def clear_awaiting(self, tenant_id, canal, contacto) -> None:
        record = self.clients.get((tenant_id, canal, contacto))
        if record is not None:
            record.awaiting_field = None
            record.awaiting_payload = {}
            record.awaiting_updated_at = None

    async def save_captured(self, tenant_id, canal, contacto, column, value) -> None:
        if column not in _CAPTURE_COLUMNS:
            raise ValueError(f"Unknown client column {column!r}")
        setattr(self._client(tenant_id, canal, contacto), column, value)

    async def set_lang(self, tenant_id, canal, contacto, lang) -> None:
        self._client(tenant_id, canal, contacto).lang = lang

    # ── DedupStore ───────────────────────────────────────────────────────

    async def reserve(self, tenant_id: str, canal: str, event_id: str) -> bool:
        key = (tenant_id, canal, event_id)
        if key in self.reservations:
            return False
        self.reservations.add(key)
        return True

    async def record_failure(self, tenant_id: str, canal: str, event_id: str) -> None:
        self.reservations.add((tenant_id, canal, f"{event_id}{FAILURE_SUFFIX}"))

    # ── MessageStore ─────────────────────────────────────────────────────

    async def save_message(
        self, tenant_id, canal, *, role, content, message_id, from_number, at
    ) -> bool:
        if message_id and any(
            m.tenant_id == tenant_id and m.message_id == message_id for m in self.messages
        ):
            return False
        self.messages.append(
            StoredMessage(tenant_id, canal, role, content, message_id, from_number, at)
        )
        return True

    # ── SalesIntentStore ─────────────────────────────────────────────────

    async def record(self, tenant_id, canal, *, contacto, message_id, text, intent, nivel, at) -> bool:
        key = (tenant_id, canal, message_id)
        if key in self.sales:
            return False
        self.sales[key] = {
            "contacto": contacto,
            "mensaje": text,
            "intencion": intent,
            "nivel_interes": nivel,
            "fecha": at,
        }
        return True

    # ── FollowUpStore ────────────────────────────────────────────────────

    async def upsert_pending(self, tenant_id, canal, contacto, *, content, send_at) -> str:
        for row in self.followups:
            if (row.tenant_id, row.canal, row.contacto) == (tenant_id, canal, contacto) and not row.enviado:
                row.contenido = content
                row.fecha_envio = send_at
                return "updated"
        self.followups.append(
            StoredFollowUp(next(self._ids), tenant_id, canal, contacto, content, send_at)
        )
        return "inserted"

    async def list_due(self, now: datetime, *, limit: int = 50) -> List[PendingFollowUp]:
        due = sorted(
            (r for r in self.followups if not r.enviado and r.fecha_envio <= now),
            key=lambda r: r.fecha_envio,
        )
        return [
            PendingFollowUp(r.id, r.tenant_id, r.canal, r.contacto, r.contenido, r.fecha_envio)
            for r in due[:limit]
        ]

    async def mark_sent(self, followup_id: Any, *, at: datetime) -> bool:
        for row in self.followups:
            if row.id == followup_id and not row.enviado:
                row.enviado = True
                row.sent_at = at
                return True
        return False

    def pending_followups(self, tenant_id: str, canal: str, contacto: str) -> List[StoredFollowUp]:
        return [
            r for r in self.followups
            if (r.tenant_id, r.canal, r.contacto) == (tenant_id, canal, contacto) and not r.enviado
        ]

    # ── TenantStore ──────────────────────────────────────────────────────

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self.tenants.get(tenant_id)

    async def get_followup_settings(self, tenant_id: str) -> Optional[FollowUpSettings]:
        return self.followup_settings.get(tenant_id)

    async def get_faq(self, tenant_id, canal, intent, lang=None) -> Optional[FaqEntry]:
        candidates = [
            faq for faq in self.faqs.get(tenant_id, [])
            if faq.intent == intent
            and faq.canal in (None, canal)
        ]
        if lang:
            same_lang = [f for f in candidates if f.lang in (None, lang)]
            candidates = same_lang or candidates
        # channel-specific rows win over generic ones
        candidates.sort(key=lambda f: f.canal is None)
        return candidates[0] if candidates else None

    async def list_intents(self, tenant_id: str, canal: str) -> Sequence[TenantIntent]:
        return list(self.intents.get(tenant_id, []))

    async def list_ctas(self, tenant_id: str, canal: str) -> Sequence[CtaRow]:
        return [c for c in self.ctas.get(tenant_id, []) if c.canal in (canal, "*")]

    # ── MemoryStore / UsageStore ─────────────────────────────────────────

    async def remember(self, tenant_id, canal, sender, key, value) -> None:
        self.memory[(tenant_id, canal, sender, key)] = copy.deepcopy(value)

    async def increment(self, tenant_id: str, canal: str, *, month: datetime) -> None:
        bucket = (tenant_id, canal, month.strftime("%Y-%m"))
        self.usage[bucket] = self.usage.get(bucket, 0) + 1
