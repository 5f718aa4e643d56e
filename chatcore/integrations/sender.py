"""Outbound delivery wrappers: channel routing, local capture and at-most-once sending."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.ports import DedupStore, Sender, UsageStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SentMessage:
    tenant_id: str
    canal: str
    to: str
    text: str


class RecordingSender:
    """Accepts every message and keeps it in memory. Used for ``preview`` and local runs."""

    def __init__(self) -> None:
        self.sent: List[SentMessage] = []

    async def send(self, tenant_id: str, canal: str, to: str, text: str) -> bool:
        self.sent.append(SentMessage(tenant_id, canal, to, text))
        logger.info("RecordingSender: %s/%s -> %s (%d chars)", tenant_id, canal, to, len(text))
        return True


class ChannelSender:
    """Route by channel; channels without a route use ``default`` or fail."""

    def __init__(self, routes: Dict[str, Sender], default: Optional[Sender] = None) -> None:
        self._routes = dict(routes)
        self._default = default

    async def send(self, tenant_id: str, canal: str, to: str, text: str) -> bool:
        sender = self._routes.get(canal, self._default)
        if sender is None:
            logger.warning("ChannelSender: no transport for channel %r", canal)
            return False
        return await sender.send(tenant_id, canal, to, text)


class DedupedSender:
    """``safe_send``: reserve ``{message_id}-out`` before sending, at most once.

    A failed send keeps the reservation and appends a failure marker, so a
    redelivered webhook never produces a late duplicate answer.

    A reservation that already exists means another delivery of the same
    inbound message already claimed the answer, so nothing is sent. Successful sends
    count towards the tenant's monthly usage.
    """

    OUTBOUND_SUFFIX = "-out"

    def __init__(
        self,
        sender: Sender,
        dedup: DedupStore,
        usage: UsageStore,
        *,
        timeout_seconds: Optional[float] = 15.0,
    ) -> None:
        self._sender = sender
        self._dedup = dedup
        self._usage = usage
        self._timeout = timeout_seconds

    async def safe_send(
        self,
        *,
        tenant_id: str,
        canal: str,
        message_id: Optional[str],
        to: str,
        text: str,
        now: datetime,
    ) -> bool:
        reservation = f"{message_id}{self.OUTBOUND_SUFFIX}" if message_id else None
        if reservation is not None:
            try:
                if not await self._dedup.reserve(tenant_id, canal, reservation):
                    logger.info("DedupedSender: %s already answered, skipping send", message_id)
                    return False
            except ChatcoreError as exc:
                logger.warning("DedupedSender: reservation failed, sending anyway: %s", exc)
                reservation = None

        try:
            sent = await asyncio.wait_for(
                self._sender.send(tenant_id, canal, to, text), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning("DedupedSender: send to %s timed out", to)
            sent = False
        except Exception as exc:
            logger.warning("DedupedSender: send to %s failed: %s", to, exc)
            sent = False

        if not sent:
            if reservation is not None:
                await self._record_failure(tenant_id, canal, reservation)
            return False

        try:
            await self._usage.increment(tenant_id, canal, month=now)
        except ChatcoreError as exc:
            logger.warning("DedupedSender: usage counter not updated: %s", exc)
        return True

    async def _record_failure(self, tenant_id: str, canal: str, reservation: str) -> None:
        try:
            await self._dedup.record_failure(tenant_id, canal, reservation)
        except ChatcoreError as exc:
            logger.warning("DedupedSender: could not record failed send %s: %s", reservation, exc)
