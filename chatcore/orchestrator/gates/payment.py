"""Payment guard: confirmation, link requests and customer details while paying."""
from __future__ import annotations

import logging
import re
from typing import Optional

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.override import HumanOverride
from chatcore.orchestrator.parsing import extract_payment_link, parse_customer_details
from chatcore.orchestrator.ports import ClientStore
from chatcore.orchestrator.types import (
    CONTINUE,
    GateResult,
    OrchestratorConfig,
    Reply,
    Silence,
    StateTransition,
    TurnEvent,
)

logger = logging.getLogger(__name__)

ESTADO_AWAITING_PAYMENT = "esperando_pago"
ESTADO_CONFIRMING_PAYMENT = "pago_en_confirmacion"

PAYMENT_CONFIRM_RE = re.compile(
    r"^(?!.*\b(no|aun\s*no|a[uú]n\s*no|todav[ií]a\s*no|nunca|not|never|yet\s+to|\w+n['’]t|havent|hasnt|didnt|dont)\b).*?"
    r"\b(pago\s*realizado|listo\s*el\s*pago|ya\s*pagu[eé]|he\s*pagado|"
    r"payment\s*(done|made|completed)|i\s*paid|paid)\b",
    re.IGNORECASE,
)
PAYMENT_LINK_REQUEST_RE = re.compile(
    r"\b(link|enlace|pagar|pago|stripe|checkout|payment\s+link)\b", re.IGNORECASE
)


def is_payment_confirmation(text: str) -> bool:
    return bool(PAYMENT_CONFIRM_RE.search(text or ""))


class PaymentGuardGate(BaseGate):
    name = "payment_guard"

    def __init__(
        self,
        clients: ClientStore,
        override: HumanOverride,
        config: OrchestratorConfig,
    ) -> None:
        self._clients = clients
        self._override = override
        self._config = config

    async def check(self, event: TurnEvent) -> GateResult:
        tenant_id, canal, contact = event.key
        text = event.text
        try:
            record = await self._clients.get_client(tenant_id, canal, contact)
        except ChatcoreError as exc:
            logger.warning("PaymentGuardGate: read failed, continuing: %s", exc)
            return CONTINUE
        estado = record.estado if record else None

        if estado == ESTADO_CONFIRMING_PAYMENT:
            return Silence("payment_in_confirmation")

        if not text:
            return CONTINUE

        if is_payment_confirmation(text):
            return await self._confirmed(event)

        link_requested = bool(PAYMENT_LINK_REQUEST_RE.search(text))
        if estado == ESTADO_AWAITING_PAYMENT and link_requested:
            return self._link_reply(event, self._payment_link(event))

        details = parse_customer_details(text)
        if details is not None:
            await self._clients.upsert_details(
                tenant_id, canal, contact, details, estado=ESTADO_AWAITING_PAYMENT
            )
            link = self._payment_link(event)
            logger.info("PaymentGuardGate: customer details captured for %s/%s", canal, contact)
            facts = {
                "EVENT": "PAYMENT_DETAILS_RECEIVED",
                "LANGUAGE": event.lang,
                "PAYMENT_LINK_AVAILABLE": bool(link),
                "USER_REQUESTED_LINK": link_requested,
            }
            if link:
                facts["PAYMENT_LINK"] = link
                facts["INSTRUCTION"] = "ASK_USER_TO_TEXT_PAGO_REALIZADO_AFTER_PAYMENT"
            return Reply(
                source="pago-datos",
                intent="pago",
                facts=facts,
                transition=StateTransition(
                    flow=self._config.default_flow,
                    step="details",
                    patch={
                        "guard": "payment",
                        "payment_status": "details_received",
                        "last_bot_action": "payment_details_received",
                    },
                ),
            )

        return CONTINUE

    async def _confirmed(self, event: TurnEvent) -> GateResult:
        tenant_id, canal, contact = event.key
        await self._clients.set_estado(tenant_id, canal, contact, ESTADO_CONFIRMING_PAYMENT)
        await self._override.activate(
            tenant=event.turn.tenant,
            canal=canal,
            contact=contact,
            now=event.now,
            minutes=self._config.human_override_minutes,
            reason="pago_confirmado_por_usuario",
            source="payment_guard",
            user_text=event.text,
            message_id=event.turn.message_id,
        )
        return Reply(
            source="pago-confirm",
            intent="pago",
            facts={
                "EVENT": "PAYMENT_CONFIRMED_BY_USER",
                "LANGUAGE": event.lang,
                "NEXT_STEP": "TEAM_WILL_CONFIRM_AND_ACTIVATE",
            },
            transition=StateTransition(
                flow=self._config.default_flow,
                step="close",
                patch={
                    "guard": "payment",
                    "payment_status": "confirmed_by_user",
                    "last_bot_action": "payment_confirm_received",
                },
            ),
        )

    def _link_reply(self, event: TurnEvent, link: Optional[str]) -> GateResult:
        if link:
            return Reply(
                source="pago-link",
                intent="pago",
                facts={
                    "EVENT": "PAYMENT_LINK_REQUESTED",
                    "LANGUAGE": event.lang,
                    "PAYMENT_LINK_AVAILABLE": True,
                    "PAYMENT_LINK": link,
                    "INSTRUCTION": "ASK_USER_TO_TEXT_PAGO_REALIZADO_AFTER_PAYMENT",
                },
                transition=StateTransition(patch={"guard": "payment", "last_bot_action": "payment_link_sent"}),
            )
        return Reply(
            source="pago-link-missing",
            intent="pago",
            facts={
                "EVENT": "PAYMENT_LINK_REQUESTED",
                "LANGUAGE": event.lang,
                "PAYMENT_LINK_AVAILABLE": False,
            },
        )

    @staticmethod
    def _payment_link(event: TurnEvent) -> Optional[str]:
        return extract_payment_link(event.turn.prompt or event.turn.tenant.prompt or "")
