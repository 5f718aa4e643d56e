"""
Interfaces the orchestrator depends on.

Storage ports are implemented by the SQL repositories in
``chatcore.infra.database.repositories`` and by ``chatcore.infra.memory``
(used for local runs and tests). Collaborator ports (sender, notifier,
analytics, classifier, matcher) are implemented in ``chatcore.integrations``
and ``chatcore.orchestrator.classifiers``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from chatcore.orchestrator.types import (
    ClientRecord,
    ConversationState,
    CtaRow,
    CustomerDetails,
    FaqEntry,
    FollowUpSettings,
    PendingFollowUp,
    Tenant,
    TenantIntent,
)


# ─── storage ──────────────────────────────────────────────────────────────────

class ConversationStateStore(Protocol):
    async def get_state(self, tenant_id: str, canal: str, sender: str) -> ConversationState: ...

    async def set_state(
        self,
        tenant_id: str,
        canal: str,
        sender: str,
        *,
        flow: str,
        step: str,
        context: Dict[str, Any],
    ) -> None: ...


class ClientStore(Protocol):
    async def get_client(self, tenant_id: str, canal: str, contacto: str) -> Optional[ClientRecord]: ...

    async def set_human_override(
        self, tenant_id: str, canal: str, contacto: str, *, until: datetime
    ) -> None: ...

    async def clear_human_override(self, tenant_id: str, canal: str, contacto: str) -> None: ...

    async def set_estado(self, tenant_id: str, canal: str, contacto: str, estado: str) -> None: ...

    async def upsert_details(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        details: CustomerDetails,
        *,
        estado: Optional[str] = None,
    ) -> None: ...

    async def set_awaiting(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        *,
        field_name: str,
        payload: Dict[str, Any],
        at: datetime,
    ) -> None: ...

    async def clear_awaiting(self, tenant_id: str, canal: str, contacto: str) -> None: ...

    async def save_captured(
        self, tenant_id: str, canal: str, contacto: str, column: str, value: str
    ) -> None: ...

    async def set_lang(self, tenant_id: str, canal: str, contacto: str, lang: str) -> None: ...


FAILURE_SUFFIX = ":failed"


class DedupStore(Protocol):
    """Append-only claims on event ids; a claim is never given back."""

    async def reserve(self, tenant_id: str, canal: str, event_id: str) -> bool:
        """Atomically claim ``event_id``; False when it was already claimed."""
        ...

    async def record_failure(self, tenant_id: str, canal: str, event_id: str) -> None:
        """Append ``{event_id}:failed`` next to the claim; the claim itself stays."""
        ...


class MessageStore(Protocol):
    async def save_message(
        self,
        tenant_id: str,
        canal: str,
        *,
        role: str,
        content: str,
        message_id: Optional[str],
        from_number: str,
        at: datetime,
    ) -> bool:
        """Insert once per (tenant, message_id); False on duplicate."""
        ...


class SalesIntentStore(Protocol):
    async def record(
        self,
        tenant_id: str,
        canal: str,
        *,
        contacto: str,
        message_id: str,
        text: str,
        intent: str,
        nivel: int,
        at: datetime,
    ) -> bool: ...


class FollowUpStore(Protocol):
    async def upsert_pending(
        self,
        tenant_id: str,
        canal: str,
        contacto: str,
        *,
        content: str,
        send_at: datetime,
    ) -> str:
        """Returns ``"inserted"`` or ``"updated"``."""
        ...

    async def list_due(self, now: datetime, *, limit: int = 50) -> List[PendingFollowUp]: ...

    async def mark_sent(self, followup_id: Any, *, at: datetime) -> bool: ...


class TenantStore(Protocol):
    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]: ...

    async def get_followup_settings(self, tenant_id: str) -> Optional[FollowUpSettings]: ...

    async def get_faq(
        self, tenant_id: str, canal: str, intent: str, lang: Optional[str] = None
    ) -> Optional[FaqEntry]: ...

    async def list_intents(self, tenant_id: str, canal: str) -> Sequence[TenantIntent]: ...

    async def list_ctas(self, tenant_id: str, canal: str) -> Sequence[CtaRow]: ...


class MemoryStore(Protocol):
    async def remember(
        self, tenant_id: str, canal: str, sender: str, key: str, value: Dict[str, Any]
    ) -> None: ...


class UsageStore(Protocol):
    async def increment(self, tenant_id: str, canal: str, *, month: datetime) -> None: ...


@dataclass
class Stores:
    """Bundle of storage ports injected into the orchestrator."""

    states: ConversationStateStore
    clients: ClientStore
    dedup: DedupStore
    messages: MessageStore
    sales: SalesIntentStore
    followups: FollowUpStore
    tenants: TenantStore
    memory: MemoryStore
    usage: UsageStore


# ─── collaborators ────────────────────────────────────────────────────────────

class Sender(Protocol):
    """Channel transport. Returns True when the provider accepted the message."""

    async def send(self, tenant_id: str, canal: str, to: str, text: str) -> bool: ...


@dataclass(frozen=True)
class NotificationRequest:
    tenant_id: str
    canal: str
    contact: str
    reason: str
    source: str
    message_id: Optional[str]
    snippet: str
    full_text: str
    until: datetime
    minutes: int
    tenant_name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None


class Notifier(Protocol):
    async def notify(self, request: NotificationRequest) -> None: ...


@dataclass(frozen=True)
class AnalyticsEvent:
    event_name: str
    event_id: str
    event_time: datetime
    contact_hash: str
    user_data: Dict[str, Any] = field(default_factory=dict)
    custom_data: Dict[str, Any] = field(default_factory=dict)


class AnalyticsSink(Protocol):
    async def send_event(self, tenant: Tenant, canal: str, event: AnalyticsEvent) -> bool: ...


@dataclass(frozen=True)
class IntentGuess:
    intent: Optional[str]
    nivel: Optional[int] = None
    source: str = "keywords"


class IntentClassifier(Protocol):
    async def classify(self, text: str, lang: Optional[str] = None) -> IntentGuess: ...


@dataclass(frozen=True)
class IntentMatch:
    intent: str
    answer: str
    score: float


class IntentMatcher(Protocol):
    async def match(
        self, tenant_id: str, canal: str, text: str, lang: Optional[str] = None
    ) -> Optional[IntentMatch]: ...
