"""
Follow-up scheduling and dispatch.

At most one un-sent follow-up exists per (tenant, canal, contact): scheduling
again replaces the pending row's content and send date. Dispatch claims a due
row (``enviado`` false -> true) before sending, so concurrent dispatchers send
each row at most once.
"""
from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.ports import Sender, Stores
from chatcore.orchestrator.types import (
    Clock,
    FollowUpSettings,
    OrchestratorConfig,
    Tenant,
    utcnow,
)

logger = logging.getLogger(__name__)

GENERIC_FOLLOWUP = {
    "es": "¡Hola! ¿Te gustaría que te ayudáramos a avanzar?",
    "en": "Hi! Would you like us to help you take the next step?",
    "pt": "Olá! Gostaria que te ajudássemos a avançar?",
}

_PLACEHOLDER_CONTACTS = frozenset({"anonimo", "anonymous", "unknown", "null", "undefined", "none"})
_CONTACT_PREFIX_RE = re.compile(r"^(whatsapp|messenger|instagram):", re.IGNORECASE)


def is_reachable_contact(contact: Optional[str]) -> bool:
    value = _CONTACT_PREFIX_RE.sub("", (contact or "").strip())
    if len(value) < 5 or value.lower() in _PLACEHOLDER_CONTACTS:
        return False
    return any(ch.isalnum() for ch in value)


def interest_bucket(nivel: int) -> str:
    if nivel >= 4:
        return "high"
    if nivel == 3:
        return "medium"
    return "low"


def pick_template(settings: FollowUpSettings, nivel: int, lang: str = "es") -> str:
    """Bucket template, falling back medium -> low -> generic."""
    bucket = interest_bucket(nivel)
    candidates = {
        "high": (settings.msg_high, settings.msg_medium, settings.msg_low),
        "medium": (settings.msg_medium, settings.msg_low),
        "low": (settings.msg_low,),
    }[bucket]
    for template in candidates:
        if template and template.strip():
            return template.strip()
    return GENERIC_FOLLOWUP.get(lang, GENERIC_FOLLOWUP["es"])


@dataclass(frozen=True)
class ScheduledFollowUp:
    action: str
    send_at: datetime
    delay_minutes: int
    content: str


class FollowUpScheduler:
    def __init__(
        self,
        stores: Stores,
        config: OrchestratorConfig,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._stores = stores
        self._config = config
        self._rng = rng or random.Random()

    def eligible(self, tenant: Tenant, canal: str, contact: str, intent: Optional[str], nivel: int) -> bool:
        if canal == "preview" or canal not in self._config.supported_channels:
            return False
        if not is_reachable_contact(contact):
            return False
        if not tenant.membership_active:
            return False
        return bool(intent) and nivel >= 2

    def compute_delay(self, wait_minutes: Optional[int]) -> int:
        cfg = self._config
        base = min(max(int(wait_minutes or cfg.followup_min_wait_minutes), cfg.followup_min_wait_minutes),
                   cfg.followup_max_wait_minutes)
        jitter = base * cfg.followup_jitter_ratio * self._rng.uniform(-1.0, 1.0)
        return max(cfg.followup_min_delay_minutes, int(round(base + jitter)))

    async def schedule_if_eligible(
        self,
        *,
        tenant: Tenant,
        canal: str,
        contact: str,
        intent: Optional[str],
        nivel: int,
        text: str = "",
        lang: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ScheduledFollowUp]:
        """Insert or replace the contact's pending follow-up. None when not eligible."""
        if not self.eligible(tenant, canal, contact, intent, nivel):
            logger.debug("Follow-up skipped for %s/%s (intent=%s, nivel=%s)", canal, contact, intent, nivel)
            return None

        settings = await self._stores.tenants.get_followup_settings(tenant.id) or FollowUpSettings()
        content = pick_template(settings, nivel, lang or tenant.default_lang)
        delay = self.compute_delay(settings.wait_minutes)
        send_at = (now or utcnow()) + timedelta(minutes=delay)

        action = await self._stores.followups.upsert_pending(
            tenant.id, canal, contact, content=content, send_at=send_at
        )
        logger.info(
            "Follow-up %s for %s/%s in %d min (intent=%s, nivel=%d)",
            action, canal, contact, delay, intent, nivel,
        )
        return ScheduledFollowUp(action=action, send_at=send_at, delay_minutes=delay, content=content)


@dataclass
class DispatchReport:
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class FollowUpDispatcher:
    """Send follow-ups whose date has passed."""

    def __init__(
        self,
        stores: Stores,
        sender: Sender,
        *,
        clock: Clock = utcnow,
        timeout_seconds: Optional[float] = 15.0,
        batch_size: int = 50,
    ) -> None:
        self._stores = stores
        self._sender = sender
        self._clock = clock
        self._timeout = timeout_seconds
        self._batch_size = batch_size

    async def dispatch_due(self, now: Optional[datetime] = None) -> DispatchReport:
        now = now or self._clock()
        report = DispatchReport()
        due = await self._stores.followups.list_due(now, limit=self._batch_size)
        report.due = len(due)

        for item in due:
            try:
                claimed = await self._stores.followups.mark_sent(item.id, at=now)
            except ChatcoreError as exc:
                logger.warning("Follow-up %s could not be claimed: %s", item.id, exc)
                report.failed += 1
                continue
            if not claimed:
                report.skipped += 1
                continue

            try:
                ok = await asyncio.wait_for(
                    self._sender.send(item.tenant_id, item.canal, item.contacto, item.contenido),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Follow-up %s timed out for %s/%s", item.id, item.canal, item.contacto)
                ok = False
            except Exception as exc:
                logger.warning("Follow-up %s failed for %s/%s: %s", item.id, item.canal, item.contacto, exc)
                ok = False

            if ok:
                report.sent += 1
            else:
                report.failed += 1

        if report.due:
            logger.info(
                "Follow-up dispatch: due=%d sent=%d failed=%d skipped=%d",
                report.due, report.sent, report.failed, report.skipped,
            )
        return report
