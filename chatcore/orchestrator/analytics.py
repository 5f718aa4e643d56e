"""
Deduplicated analytics events for qualified contacts and strong leads.

Two windows are reserved in the dedup ledger under canal ``meta_capi``:

* ``ql:{tenant}:{contact_hash}`` - once per contact, forever ("Contact").
* ``leadstrong:{tenant}:{contact_hash}:b7:{bucket}`` - once per 7-day UTC
  bucket ("Lead"), where ``bucket = floor(epoch_ms / 7 days in ms)``.
"""
from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.ports import AnalyticsEvent, AnalyticsSink, DedupStore
from chatcore.orchestrator.types import Tenant

logger = logging.getLogger(__name__)

ANALYTICS_CANAL = "meta_capi"
WEEK_MS = 7 * 24 * 60 * 60 * 1000

_PHONE_STRIP_RE = re.compile(r"[^\d+]")


def sha256(value: str) -> str:
    return hashlib.sha256(str(value or "").strip().lower().encode("utf-8")).hexdigest()


def normalize_phone(raw: Optional[str]) -> str:
    value = re.sub(r"^whatsapp:", "", str(raw or "").strip(), flags=re.IGNORECASE)
    return _PHONE_STRIP_RE.sub("", value)


def contact_hash(contact: str, from_number: Optional[str] = None) -> str:
    return sha256(normalize_phone(from_number or contact) or contact)


def week_bucket(now: datetime) -> int:
    return int(now.timestamp() * 1000) // WEEK_MS


def qualified_contact_event_id(tenant_id: str, hashed: str) -> str:
    return f"ql:{tenant_id}:{hashed}"


def strong_lead_event_id(tenant_id: str, hashed: str, now: datetime) -> str:
    return f"leadstrong:{tenant_id}:{hashed}:b7:{week_bucket(now)}"


class AnalyticsEmitter:
    """Reserve an event id, then hand the event to the sink.

    An existing reservation means the event was already handed to the sink.
    Reservations are kept when the sink fails; the failure is appended beside
    them and the event is not retried.
    """

    def __init__(self, dedup: DedupStore, sink: Optional[AnalyticsSink]) -> None:
        self._dedup = dedup
        self._sink = sink

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    async def qualified_contact(
        self,
        *,
        tenant: Tenant,
        canal: str,
        contact: str,
        from_number: Optional[str],
        message_id: Optional[str],
        intent: str,
        nivel: int,
        now: datetime,
    ) -> bool:
        hashed = contact_hash(contact, from_number)
        return await self._emit(
            tenant=tenant,
            canal=canal,
            event_name="Contact",
            event_id=qualified_contact_event_id(tenant.id, hashed),
            hashed=hashed,
            contact=contact,
            from_number=from_number,
            now=now,
            custom_data={
                "intent": intent,
                "interest_level": nivel,
                "inbound_message_id": message_id,
            },
        )

    async def strong_lead(
        self,
        *,
        tenant: Tenant,
        canal: str,
        contact: str,
        from_number: Optional[str],
        message_id: Optional[str],
        intent: str,
        nivel: int,
        now: datetime,
    ) -> bool:
        hashed = contact_hash(contact, from_number)
        return await self._emit(
            tenant=tenant,
            canal=canal,
            event_name="Lead",
            event_id=strong_lead_event_id(tenant.id, hashed, now),
            hashed=hashed,
            contact=contact,
            from_number=from_number,
            now=now,
            custom_data={
                "source": "sales_intent_strong",
                "intent": intent,
                "interest_level": nivel,
                "inbound_message_id": message_id,
            },
        )

    async def _emit(
        self,
        *,
        tenant: Tenant,
        canal: str,
        event_name: str,
        event_id: str,
        hashed: str,
        contact: str,
        from_number: Optional[str],
        now: datetime,
        custom_data: Dict[str, Any],
    ) -> bool:
        if self._sink is None:
            return False

        try:
            reserved = await self._dedup.reserve(tenant.id, ANALYTICS_CANAL, event_id)
        except ChatcoreError as exc:
            logger.warning("Analytics reservation failed for %s: %s", event_id, exc)
            return False
        if not reserved:
            logger.info("Analytics %s deduped (event_id=%s)", event_name, event_id)
            return False

        phone = normalize_phone(from_number or contact)
        user_data: Dict[str, Any] = {"external_id": sha256(f"{tenant.id}:{contact}")}
        if phone:
            user_data["ph"] = sha256(phone)

        event = AnalyticsEvent(
            event_name=event_name,
            event_id=event_id,
            event_time=now,
            contact_hash=hashed,
            user_data=user_data,
            custom_data={k: v for k, v in custom_data.items() if v is not None},
        )
        try:
            delivered = await self._sink.send_event(tenant, canal, event)
        except Exception as exc:
            logger.warning("Analytics %s failed for %s: %s", event_name, canal, exc)
            delivered = False

        if not delivered:
            await self._record_failure(tenant.id, event_id)
            return False
        return True

    async def _record_failure(self, tenant_id: str, event_id: str) -> None:
        try:
            await self._dedup.record_failure(tenant_id, ANALYTICS_CANAL, event_id)
        except ChatcoreError as exc:
            logger.warning("Analytics failure for %s could not be recorded: %s", event_id, exc)
