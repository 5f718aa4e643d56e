"""WhatsApp Business (Meta Cloud API) outbound sender."""
from __future__ import annotations

import logging

import httpx

from chatcore.config import WhatsAppConfig

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LEN = 4096


class WhatsAppCloudSender:
    """Implements ``Sender`` for the ``whatsapp`` channel; long texts are split in chunks."""

    def __init__(self, config: WhatsAppConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._url = (
            f"https://graph.facebook.com/{config.graph_version}/{config.phone_number_id}/messages"
        )
        self._headers = {
            "Authorization": f"Bearer {config.access_token}",
            "Content-Type": "application/json",
        }
        self._timeout = config.timeout
        self._transport = transport

    async def send(self, tenant_id: str, canal: str, to: str, text: str) -> bool:
        chunks = [text[i : i + _MAX_MESSAGE_LEN] for i in range(0, len(text), _MAX_MESSAGE_LEN)]
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for chunk in chunks:
                payload = {
                    "messaging_product": "whatsapp",
                    "to": to,
                    "type": "text",
                    "text": {"body": chunk},
                }
                try:
                    resp = await client.post(self._url, headers=self._headers, json=payload)
                except httpx.HTTPError as exc:
                    logger.warning("WhatsAppCloudSender: transport error (to=%s): %s", to, exc)
                    return False
                if resp.status_code not in (200, 201):
                    logger.warning(
                        "WhatsAppCloudSender: send failed (tenant=%s to=%s status=%s): %s",
                        tenant_id, to, resp.status_code, resp.text[:300],
                    )
                    return False
        return True
