"""TurnService: wires stores, LLM, transports and the orchestrator from the environment."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from chatcore.clients.llm import BaseLLMClient, build_llm_client
from chatcore.config import (
    load_meta_capi_config,
    load_notifier_config,
    load_whatsapp_config,
)
from chatcore.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from chatcore.integrations.meta_capi import MetaCapiSink
from chatcore.integrations.notifier import WebhookNotifier
from chatcore.integrations.sender import ChannelSender, DedupedSender, RecordingSender
from chatcore.integrations.whatsapp import WhatsAppCloudSender
from chatcore.orchestrator.classifiers.intent_classifier import KeywordIntentClassifier
from chatcore.orchestrator.classifiers.intent_matcher import FuzzyIntentMatcher
from chatcore.orchestrator.followup import DispatchReport, FollowUpDispatcher
from chatcore.orchestrator.generation import ReplyGenerator
from chatcore.orchestrator.language import LanguageDetector
from chatcore.orchestrator.orchestrator import TurnOrchestrator
from chatcore.orchestrator.ports import AnalyticsSink, Notifier, Sender, Stores
from chatcore.orchestrator.types import (
    Clock,
    OrchestratorConfig,
    TurnContext,
    TurnOutcome,
    utcnow,
)

logger = logging.getLogger(__name__)

STORE_MEMORY = "memory"
STORE_POSTGRES = "postgres"


@dataclass(frozen=True)
class InboundMessage:
    tenant_id: str
    canal: str
    contact: str
    text: str = ""
    message_id: Optional[str] = None
    from_number: Optional[str] = None
    prompt: Optional[str] = None
    received_at: Optional[datetime] = None


class TurnService:
    """Loads the tenant for an inbound message and runs it through the orchestrator."""

    def __init__(
        self,
        stores: Stores,
        orchestrator: TurnOrchestrator,
        dispatcher: FollowUpDispatcher,
    ) -> None:
        self._stores = stores
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher

    @property
    def orchestrator(self) -> TurnOrchestrator:
        return self._orchestrator

    async def handle(self, message: InboundMessage) -> TurnOutcome:
        if not (message.canal or "").strip() or not (message.contact or "").strip():
            raise ValidationError("Inbound message needs a channel and a sender", details={"tenant_id": message.tenant_id})
        tenant = await self._stores.tenants.get_tenant(message.tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {message.tenant_id} not found", details={"tenant_id": message.tenant_id})
        turn = TurnContext(
            tenant=tenant,
            canal=message.canal,
            contact=message.contact,
            text=message.text or "",
            message_id=message.message_id,
            from_number=message.from_number,
            prompt=message.prompt or tenant.prompt or "",
            received_at=message.received_at,
        )
        return await self._orchestrator.process(turn)

    async def dispatch_followups(self, now: Optional[datetime] = None) -> DispatchReport:
        return await self._dispatcher.dispatch_due(now)

    @classmethod
    def build(
        cls,
        stores: Stores,
        *,
        llm: Optional[BaseLLMClient] = None,
        sender: Optional[Sender] = None,
        notifier: Optional[Notifier] = None,
        analytics: Optional[AnalyticsSink] = None,
        config: Optional[OrchestratorConfig] = None,
        clock: Clock = utcnow,
    ) -> "TurnService":
        config = config or OrchestratorConfig()
        timeout = config.external_timeout_seconds
        usable_llm = llm if llm is not None and llm.usable else None
        transport = sender or RecordingSender()

        generator = ReplyGenerator(usable_llm, timeout_seconds=timeout)
        orchestrator = TurnOrchestrator(
            stores,
            sender=DedupedSender(transport, stores.dedup, stores.usage, timeout_seconds=timeout),
            generator=generator,
            classifier=KeywordIntentClassifier(usable_llm, timeout_seconds=timeout),
            matcher=FuzzyIntentMatcher(stores.tenants, threshold=config.intent_min_score),
            notifier=notifier,
            analytics=analytics,
            detector=LanguageDetector(usable_llm, timeout_seconds=timeout),
            config=config,
            clock=clock,
        )
        dispatcher = FollowUpDispatcher(stores, transport, clock=clock, timeout_seconds=timeout)
        logger.info(
            "TurnService ready: llm=%s gates=%s serialize_turns=%s",
            usable_llm.provider if usable_llm else "none",
            orchestrator.pipeline.gate_names,
            config.serialize_turns,
        )
        return cls(stores, orchestrator, dispatcher)


def build_sender_from_env() -> Sender:
    """WhatsApp goes to the Cloud API when configured; everything else is recorded locally."""
    recording = RecordingSender()
    routes: Dict[str, Sender] = {"preview": recording}
    wa = load_whatsapp_config()
    if wa.enabled:
        routes["whatsapp"] = WhatsAppCloudSender(wa)
        return ChannelSender(routes)
    logger.warning("WHATSAPP_* not configured; outbound messages are only recorded")
    return ChannelSender(routes, default=recording)


def build_notifier_from_env() -> Optional[Notifier]:
    cfg = load_notifier_config()
    return WebhookNotifier(cfg) if cfg.enabled else None


def store_kind_from_env() -> str:
    kind = os.environ.get("CHATCORE_STORE", STORE_POSTGRES).strip().lower()
    if kind not in (STORE_MEMORY, STORE_POSTGRES):
        raise ConfigurationError(f"CHATCORE_STORE must be 'memory' or 'postgres', got {kind!r}")
    return kind


def build_turn_service_from_env(stores: Stores) -> TurnService:
    return TurnService.build(
        stores,
        llm=build_llm_client(),
        sender=build_sender_from_env(),
        notifier=build_notifier_from_env(),
        analytics=MetaCapiSink(load_meta_capi_config()),
        config=OrchestratorConfig.from_env(),
    )
