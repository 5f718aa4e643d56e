"""Operator notifications through an SMS/e-mail relay webhook."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

import httpx

from chatcore.config import NotifierConfig
from chatcore.core.exceptions import ExternalServiceError
from chatcore.orchestrator.ports import NotificationRequest

logger = logging.getLogger(__name__)


def build_payloads(request: NotificationRequest) -> List[Dict[str, Any]]:
    """One payload per contact channel the tenant registered."""
    until = request.until.isoformat()
    summary = (
        f"[{request.tenant_name or request.tenant_id}] {request.canal} {request.contact}: "
        f"human takeover for {request.minutes} min ({request.reason}). \"{request.snippet}\""
    )
    payloads: List[Dict[str, Any]] = []
    if request.phone:
        payloads.append({"kind": "sms", "to": request.phone, "body": summary})
    if request.email:
        payloads.append({
            "kind": "email",
            "to": request.email,
            "subject": f"Customer needs attention on {request.canal}",
            "body": "\n".join([
                summary,
                "",
                f"Message: {request.full_text}",
                f"Source: {request.source}",
                f"Message id: {request.message_id or '-'}",
                f"Bot paused until: {until}",
            ]),
        })
    return payloads


class WebhookNotifier:
    """Posts SMS/e-mail payloads to ``NOTIFY_WEBHOOK_URL``. Raises on relay failure."""

    def __init__(self, config: NotifierConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def notify(self, request: NotificationRequest) -> None:
        if not self._config.enabled:
            logger.debug("WebhookNotifier: disabled, dropping %s notification", request.reason)
            return
        headers = {"Content-Type": "application/json"}
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"

        async with httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport) as client:
            for payload in build_payloads(request):
                try:
                    resp = await client.post(self._config.webhook_url, json=payload, headers=headers)
                    resp.raise_for_status()
                except httpx.HTTPError as exc:
                    raise ExternalServiceError(
                        f"Notification relay failed ({payload['kind']})",
                        details={"tenant_id": request.tenant_id, "kind": payload["kind"]},
                        cause=exc,
                    ) from exc
                logger.info("WebhookNotifier: %s sent for tenant %s", payload["kind"], request.tenant_id)
