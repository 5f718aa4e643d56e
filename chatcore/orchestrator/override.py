"""Human-override activation shared by the gates that hand a chat to a person."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.parsing import truncate
from chatcore.orchestrator.ports import ClientStore, NotificationRequest, Notifier
from chatcore.orchestrator.types import OrchestratorConfig, Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideActivation:
    was_active: bool
    activated_now: bool
    until: datetime


class HumanOverride:
    """Set or extend the override window and notify the business once per activation."""

    def __init__(
        self,
        clients: ClientStore,
        notifier: Optional[Notifier],
        config: OrchestratorConfig,
    ) -> None:
        self._clients = clients
        self._notifier = notifier
        self._config = config

    async def activate(
        self,
        *,
        tenant: Tenant,
        canal: str,
        contact: str,
        now: datetime,
        reason: str,
        source: str,
        user_text: str = "",
        message_id: Optional[str] = None,
        minutes: Optional[int] = None,
    ) -> OverrideActivation:
        """Returns whether this call moved the override from inactive to active.

        Re-activating an override that is still running only renews its TTL.
        """
        minutes = minutes or self._config.human_override_minutes
        until = now + timedelta(minutes=minutes)

        was_active = False
        try:
            record = await self._clients.get_client(tenant.id, canal, contact)
            was_active = bool(record and record.override_active(now))
        except ChatcoreError as exc:
            logger.warning("Override pre-read failed, assuming inactive: %s", exc)

        await self._clients.set_human_override(tenant.id, canal, contact, until=until)
        activation = OverrideActivation(was_active=was_active, activated_now=not was_active, until=until)
        logger.info(
            "Human override %s for %s/%s until %s (reason=%s, source=%s)",
            "activated" if activation.activated_now else "renewed",
            canal, contact, until.isoformat(), reason, source,
        )

        if activation.activated_now:
            await self._notify(
                tenant=tenant,
                canal=canal,
                contact=contact,
                reason=reason,
                source=source,
                user_text=user_text,
                message_id=message_id,
                until=until,
                minutes=minutes,
            )
        return activation

    async def _notify(
        self,
        *,
        tenant: Tenant,
        canal: str,
        contact: str,
        reason: str,
        source: str,
        user_text: str,
        message_id: Optional[str],
        until: datetime,
        minutes: int,
    ) -> None:
        if self._notifier is None or not (tenant.notify_phone or tenant.notify_email):
            return
        request = NotificationRequest(
            tenant_id=tenant.id,
            canal=canal,
            contact=contact,
            reason=reason,
            source=source,
            message_id=message_id,
            snippet=truncate(user_text, self._config.notification_snippet_chars),
            full_text=user_text or "",
            until=until,
            minutes=minutes,
            tenant_name=tenant.name,
            phone=tenant.notify_phone,
            email=tenant.notify_email,
        )
        try:
            await self._notifier.notify(request)
        except Exception as exc:
            # best-effort
            logger.warning("Override notification failed for %s/%s: %s", canal, contact, exc)
