"""Reply paths that skip open-ended generation: tenant intent matches and multi-intent FAQ answers."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.classifiers.intent_classifier import canonical_intent, is_greeting_or_thanks
from chatcore.orchestrator.classifiers.multi_intent import IntentVote, detect_top_intents
from chatcore.orchestrator.cta import canonical_link
from chatcore.orchestrator.generation import ReplyGenerator
from chatcore.orchestrator.ports import IntentGuess, IntentMatcher, TenantStore
from chatcore.orchestrator.types import OrchestratorConfig, Reply, Tenant

logger = logging.getLogger(__name__)


async def try_intent_matcher(
    matcher: Optional[IntentMatcher],
    *,
    tenant_id: str,
    canal: str,
    text: str,
    lang: str,
    canonical: IntentGuess,
    config: OrchestratorConfig,
) -> Optional[Reply]:
    """Trust a matched tenant answer only above the score floors.

    When the classifier's own intent is a direct one (payment, booking...),
    the stricter ``direct_override_min_score`` applies.
    """
    t = (text or "").strip()
    if matcher is None or not t or is_greeting_or_thanks(t):
        return None

    try:
        match = await asyncio.wait_for(
            matcher.match(tenant_id, canal, t, lang), timeout=config.external_timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.warning("Intent matcher timed out")
        return None
    except Exception as exc:
        logger.warning("Intent matcher failed: %s", exc)
        return None
    if match is None:
        return None

    score = float(match.score or 0.0)
    if score < config.intent_min_score:
        return None
    canonical_is_direct = bool(canonical.intent) and canonical.intent in config.direct_intents
    if canonical_is_direct and score < config.direct_override_min_score:
        logger.info(
            "Intent matcher %s (%.2f) below direct override floor for %s",
            match.intent, score, canonical.intent,
        )
        return None

    matched = canonical_intent(match.intent) or canonical.intent
    return Reply(
        source="intent-matcher",
        text=(match.answer or "").strip() or None,
        intent=matched,
        facts={
            "EVENT": "INTENT_MATCHER_HIT",
            "INTENT": matched,
            "SCORE": score,
            "LANGUAGE": lang,
        },
    )


class MultiIntentFastPath:
    """Answer two or more distinct intents from FAQ rows in one composed reply."""

    def __init__(self, tenants: TenantStore, generator: ReplyGenerator, config: OrchestratorConfig) -> None:
        self._tenants = tenants
        self._generator = generator
        self._config = config

    async def try_answer(
        self,
        *,
        tenant: Tenant,
        canal: str,
        text: str,
        lang: str,
        hint: Optional[str] = None,
    ) -> Optional[Reply]:
        t = (text or "").strip()
        if not t or is_greeting_or_thanks(t):
            return None
        votes = detect_top_intents(
            t,
            hint=hint,
            max_intents=self._config.multi_intent_max,
            threshold=self._config.intent_min_score,
        )
        if len(votes) < 2:
            return None

        parts = await self._faq_parts(tenant.id, canal, votes, lang)
        if not parts:
            logger.info("Multi-intent: no FAQ answers for %s, falling through", [v.intent for v in votes])
            return None

        composed = await self._generator.compose(parts, lang=lang, user_text=t)
        if not composed:
            composed = "\n\n".join(parts)

        link = canonical_link(tenant, canal, [v.intent for v in votes])
        if link and link not in composed:
            composed = f"{composed}\n\n{link}"

        return Reply(
            source="multi-intent",
            text=composed,
            intent=votes[0].intent,
            facts={
                "EVENT": "MULTI_INTENT_FASTPATH",
                "LANGUAGE": lang,
                "INTENTS": [{"intent": v.intent, "score": v.score} for v in votes],
            },
        )

    async def _faq_parts(self, tenant_id: str, canal: str, votes: List[IntentVote], lang: str) -> List[str]:
        parts: List[str] = []
        for vote in votes:
            try:
                faq = await self._tenants.get_faq(tenant_id, canal, vote.intent, lang)
            except ChatcoreError as exc:
                logger.warning("Multi-intent: FAQ lookup for %s failed: %s", vote.intent, exc)
                continue
            if faq and faq.answer.strip():
                parts.append(faq.answer.strip())
        return parts
