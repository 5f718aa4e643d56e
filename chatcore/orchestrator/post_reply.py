"""Side effects that run after a reply went out: sales intent, analytics, follow-up."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from chatcore.orchestrator.analytics import AnalyticsEmitter
from chatcore.orchestrator.classifiers.intent_classifier import clamp_nivel, is_sales_intent
from chatcore.orchestrator.followup import FollowUpScheduler
from chatcore.orchestrator.ports import Stores
from chatcore.orchestrator.types import ConversationContext, TurnContext

logger = logging.getLogger(__name__)

BOOKING_INTENTS = frozenset({"agendar", "agendar_cita"})


@dataclass
class PostReplyReport:
    """Names of the steps that ran to completion."""
    intent: Optional[str] = None
    nivel: int = 2
    done: List[str] = field(default_factory=list)


class PostReplyActions:
    def __init__(
        self,
        stores: Stores,
        analytics: AnalyticsEmitter,
        followups: FollowUpScheduler,
    ) -> None:
        self._stores = stores
        self._analytics = analytics
        self._followups = followups

    async def run(
        self,
        turn: TurnContext,
        *,
        intent: Optional[str],
        nivel: Optional[int],
        context: ConversationContext,
        lang: str,
        now: datetime,
    ) -> Optional[PostReplyReport]:
        """Each step is isolated: a failing step is logged and the next one still runs.

        Nothing runs without an inbound message id.
        """
        if not turn.message_id:
            return None

        final_intent = (intent or "").strip().lower() or None
        final_nivel = clamp_nivel(nivel, default=2)
        report = PostReplyReport(intent=final_intent, nivel=final_nivel)
        sales = bool(final_intent) and is_sales_intent(final_intent)

        if sales and final_nivel >= 2:
            try:
                inserted = await self._stores.sales.record(
                    turn.tenant_id,
                    turn.canal,
                    contacto=turn.contact,
                    message_id=turn.message_id,
                    text=turn.text,
                    intent=final_intent,
                    nivel=final_nivel,
                    at=now,
                )
                if inserted:
                    report.done.append("sales_intent")
            except Exception as exc:
                logger.warning("Sales intent not recorded: %s", exc)

            try:
                if await self._analytics.qualified_contact(
                    tenant=turn.tenant,
                    canal=turn.canal,
                    contact=turn.contact,
                    from_number=turn.from_number,
                    message_id=turn.message_id,
                    intent=final_intent,
                    nivel=final_nivel,
                    now=now,
                ):
                    report.done.append("qualified_contact")
            except Exception as exc:
                logger.warning("Qualified-contact event failed: %s", exc)

        if sales and final_nivel >= 3:
            try:
                if await self._analytics.strong_lead(
                    tenant=turn.tenant,
                    canal=turn.canal,
                    contact=turn.contact,
                    from_number=turn.from_number,
                    message_id=turn.message_id,
                    intent=final_intent,
                    nivel=final_nivel,
                    now=now,
                ):
                    report.done.append("strong_lead")
            except Exception as exc:
                logger.warning("Strong-lead event failed: %s", exc)

        if self._skip_followup(final_intent, context):
            logger.debug("Follow-up skipped: booking in progress or booking intent")
            return report
        try:
            scheduled = await self._followups.schedule_if_eligible(
                tenant=turn.tenant,
                canal=turn.canal,
                contact=turn.contact,
                intent=final_intent,
                nivel=final_nivel,
                text=turn.text,
                lang=lang,
                now=now,
            )
            if scheduled is not None:
                report.done.append("followup")
        except Exception as exc:
            logger.warning("Follow-up not scheduled: %s", exc)
        return report

    @staticmethod
    def _skip_followup(intent: Optional[str], context: ConversationContext) -> bool:
        return (
            context.booking_active
            or bool(context.extra.get("booking_completed"))
            or intent in BOOKING_INTENTS
        )
