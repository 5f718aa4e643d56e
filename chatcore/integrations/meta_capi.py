"""Meta Conversions API analytics sink."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from chatcore.config import MetaCapiConfig
from chatcore.orchestrator.ports import AnalyticsEvent
from chatcore.orchestrator.types import Tenant

logger = logging.getLogger(__name__)


def pixel_settings(tenant: Tenant) -> Optional[Tuple[str, str]]:
    """``(pixel_id, capi_token)`` when the tenant enabled the pixel, else None."""
    meta = tenant.settings.get("meta") or {}
    if not isinstance(meta, dict) or not meta.get("pixel_enabled"):
        return None
    pixel_id = str(meta.get("pixel_id") or "").strip()
    token = str(meta.get("capi_token") or "").strip()
    if not pixel_id or not token:
        return None
    return pixel_id, token


class MetaCapiSink:
    """Implements ``AnalyticsSink``. Tenants without a configured pixel are skipped."""

    def __init__(self, config: MetaCapiConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._transport = transport

    async def send_event(self, tenant: Tenant, canal: str, event: AnalyticsEvent) -> bool:
        settings = pixel_settings(tenant)
        if settings is None:
            logger.debug("MetaCapiSink: pixel not configured for tenant %s", tenant.id)
            return False
        pixel_id, token = settings

        body: Dict[str, Any] = {
            "data": [
                {
                    "event_name": event.event_name,
                    "event_time": int(event.event_time.timestamp()),
                    "event_id": event.event_id,
                    "action_source": "system_generated",
                    "user_data": dict(event.user_data) or {"external_id": event.contact_hash},
                    "custom_data": {"channel": canal, **event.custom_data},
                }
            ]
        }
        async with httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport) as client:
            try:
                resp = await client.post(
                    self._config.events_url(pixel_id), params={"access_token": token}, json=body
                )
            except httpx.HTTPError as exc:
                logger.warning("MetaCapiSink: %s not delivered: %s", event.event_name, exc)
                return False
        if resp.status_code >= 400:
            logger.warning(
                "MetaCapiSink: %s rejected (status=%s): %s",
                event.event_name, resp.status_code, resp.text[:300],
            )
            return False
        logger.info("MetaCapiSink: %s sent (event_id=%s)", event.event_name, event.event_id)
        return True
