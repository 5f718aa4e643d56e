"""TurnOrchestrator: decides whether and what to reply to one inbound message.

A turn runs in a fixed order:
  1. Language resolution     sticky thread/booking language, one detection at most
  2. Gate pipeline           human override, human request, payment, awaiting field, yes/no
  3. Intent + fast paths     canonical intent, tenant intent matcher, multi-intent FAQ answer
  4. Default reply           LLM reply with the tenant prompt, plus the tenant CTA
  5. Reply finalizer         send, then persist state / message / memory
  6. Post-reply actions      sales intent, analytics, follow-up
"""
from __future__ import annotations

import logging
import random
import time
from typing import Any, Dict, Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.core.logger import TurnLoggerAdapter
from chatcore.integrations.sender import DedupedSender
from chatcore.orchestrator.analytics import AnalyticsEmitter
from chatcore.orchestrator.classifiers.intent_classifier import (
    canonical_intent,
    clamp_nivel,
    detect_canonical_intent,
    is_sales_intent,
)
from chatcore.orchestrator.cta import CtaResolver
from chatcore.orchestrator.fastpath import MultiIntentFastPath, try_intent_matcher
from chatcore.orchestrator.finalizer import ReplyDraft, ReplyFinalizer
from chatcore.orchestrator.followup import FollowUpScheduler
from chatcore.orchestrator.gates.awaiting_field import AwaitingFieldGate
from chatcore.orchestrator.gates.human_override import HumanOverrideGate
from chatcore.orchestrator.gates.human_request import HumanRequestGate
from chatcore.orchestrator.gates.payment import PaymentGuardGate
from chatcore.orchestrator.gates.yes_no import YesNoGate
from chatcore.orchestrator.generation import ReplyGenerator
from chatcore.orchestrator.language import LanguageDetector, LanguageResolver
from chatcore.orchestrator.locks import KeyedLock
from chatcore.orchestrator.override import HumanOverride
from chatcore.orchestrator.pipeline import GatePipeline
from chatcore.orchestrator.ports import (
    AnalyticsSink,
    IntentClassifier,
    IntentGuess,
    IntentMatcher,
    Notifier,
    Stores,
)
from chatcore.orchestrator.post_reply import PostReplyActions
from chatcore.orchestrator.types import (
    Clock,
    ConversationState,
    OrchestratorConfig,
    Reply,
    Silence,
    TurnContext,
    TurnEvent,
    TurnOutcome,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_REPLY_SOURCE = "llm-default"


class TurnOrchestrator:
    """Entry point for one turn. Collaborators are injected; no module-level state."""

    def __init__(
        self,
        stores: Stores,
        *,
        sender: DedupedSender,
        generator: ReplyGenerator,
        classifier: IntentClassifier,
        matcher: Optional[IntentMatcher] = None,
        notifier: Optional[Notifier] = None,
        analytics: Optional[AnalyticsSink] = None,
        detector: Optional[LanguageDetector] = None,
        config: Optional[OrchestratorConfig] = None,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._stores = stores
        self._config = config or OrchestratorConfig()
        self._clock = clock
        self._generator = generator
        self._classifier = classifier
        self._matcher = matcher

        cfg = self._config
        override = HumanOverride(stores.clients, notifier, cfg)
        self._pipeline = GatePipeline([
            HumanOverrideGate(stores.clients),
            HumanRequestGate(override),
            PaymentGuardGate(stores.clients, override, cfg),
            AwaitingFieldGate(stores.clients, cfg),
            YesNoGate(),
        ])
        self._language = LanguageResolver(
            stores.clients,
            detector or LanguageDetector(timeout_seconds=cfg.external_timeout_seconds),
            cfg,
        )
        self._multi_intent = MultiIntentFastPath(stores.tenants, generator, cfg)
        self._cta = CtaResolver(stores.tenants)
        self._finalizer = ReplyFinalizer(stores, sender, cfg)
        self._post_reply = PostReplyActions(
            stores,
            AnalyticsEmitter(stores.dedup, analytics),
            FollowUpScheduler(stores, cfg, rng=rng),
        )
        self._locks: Optional[KeyedLock] = KeyedLock() if cfg.serialize_turns else None

    @property
    def pipeline(self) -> GatePipeline:
        return self._pipeline

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    async def process(self, turn: TurnContext) -> TurnOutcome:
        """Run one turn. Unexpected failures degrade to silence, never to an exception."""
        log = TurnLoggerAdapter(
            logger,
            tenant_id=turn.tenant_id,
            canal=turn.canal,
            contact=turn.contact,
            message_id=turn.message_id,
        )
        try:
            if self._locks is None:
                return await self._process(turn, log)
            async with self._locks.hold((turn.tenant_id, turn.canal, turn.contact)):
                return await self._process(turn, log)
        except Exception:
            log.exception("Turn failed, answering with silence")
            return TurnOutcome.silenced("internal_error", lang=turn.lang)

    async def _process(self, turn: TurnContext, log: TurnLoggerAdapter) -> TurnOutcome:
        t_start = time.monotonic()
        now = turn.received_at or self._clock()
        cfg = self._config

        try:
            state = await self._stores.states.get_state(turn.tenant_id, turn.canal, turn.sender_key)
        except ChatcoreError as exc:
            log.warning("Conversation state unavailable, starting empty: %s", exc)
            state = ConversationState()

        # ── Step 1: language ──
        resolution = await self._language.resolve(
            tenant_id=turn.tenant_id,
            canal=turn.canal,
            contact=turn.contact,
            text=turn.text,
            state=state,
            tenant_default=turn.tenant.default_lang,
        )
        lang = resolution.lang
        turn.lang = lang

        # ── Step 2: gates ──
        gates = await self._pipeline.run(TurnEvent(turn=turn, state=state, lang=lang, now=now))
        if isinstance(gates.stop, Silence):
            log.info("Turn silenced by %s (%s)", gates.stopped_by, gates.stop.reason)
            return TurnOutcome.silenced(gates.stop.reason, lang=lang)

        nivel: Optional[int] = None
        facts: Optional[Dict[str, Any]] = None
        prompt = turn.prompt or turn.tenant.prompt or ""

        if isinstance(gates.stop, Reply):
            reply = gates.stop
            facts = reply.facts
            text = reply.text or await self._generator.render_facts(
                reply.facts or {}, lang=lang, prompt=prompt, user_text=turn.text
            )
            draft = ReplyDraft(text=text, source=reply.source, intent=reply.intent, transition=gates.transition)
        else:
            if not turn.text.strip():
                log.info("Empty message with nothing pending, not replying")
                return TurnOutcome.silenced("empty_message", lang=lang)

            # ── Step 3: intent and fast paths ──
            guess = await detect_canonical_intent(
                self._classifier, turn.text, lang, timeout_seconds=cfg.external_timeout_seconds
            )
            nivel = guess.nivel
            reply = await try_intent_matcher(
                self._matcher,
                tenant_id=turn.tenant_id,
                canal=turn.canal,
                text=turn.text,
                lang=lang,
                canonical=guess,
                config=cfg,
            )
            if reply is None:
                reply = await self._multi_intent.try_answer(
                    tenant=turn.tenant, canal=turn.canal, text=turn.text, lang=lang, hint=guess.intent
                )

            if reply is not None:
                facts = reply.facts
                text = reply.text or await self._generator.render_facts(
                    reply.facts or {}, lang=lang, prompt=prompt, user_text=turn.text
                )
                draft = ReplyDraft(
                    text=text, source=reply.source, intent=reply.intent or guess.intent,
                    transition=gates.transition,
                )
            else:
                # ── Step 4: default reply ──
                text = await self._generator.default_reply(prompt=prompt, user_text=turn.text, lang=lang)
                text = await self._with_cta(turn, guess, text)
                draft = ReplyDraft(
                    text=text, source=DEFAULT_REPLY_SOURCE, intent=guess.intent, transition=gates.transition
                )

        # ── Step 5: finalize ──
        result = await self._finalizer.finalize(
            turn, state, draft, lang=lang, now=now, base_patch=resolution.context_patch
        )
        outcome = TurnOutcome(
            handled=True,
            reply=draft.text,
            source=draft.source,
            intent=draft.intent,
            nivel=clamp_nivel(nivel) if nivel is not None else None,
            lang=lang,
            facts=facts,
        )
        if not result.sent:
            log.warning("Reply not delivered (source=%s)", draft.source)
            return outcome.with_delivery(False)

        # ── Step 6: post-reply ──
        await self._post_reply.run(
            turn,
            intent=draft.intent,
            nivel=nivel,
            context=result.context or state.context,
            lang=lang,
            now=now,
        )
        log.info(
            "Turn answered: source=%s intent=%s lang=%s %.0fms",
            draft.source, draft.intent, lang, (time.monotonic() - t_start) * 1000,
        )
        return outcome.with_delivery(True)

    async def _with_cta(self, turn: TurnContext, guess: IntentGuess, text: str) -> str:
        """Append the tenant CTA to sales-intent default replies that lack its URL."""
        intent = canonical_intent(guess.intent)
        if not intent or not is_sales_intent(intent):
            return text
        cta = await self._cta.resolve(turn.tenant, intent, turn.canal)
        if cta is None or cta.url in text:
            return text
        return f"{text}\n\n{cta.text}: {cta.url}"
