"""Turning structured facts into reply text.

The LLM drafts the wording. When it is missing, slow or failing, a short
deterministic sentence per event keeps the turn answerable.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from chatcore.orchestrator.types import Facts

if TYPE_CHECKING:
    from chatcore.clients.llm.base import BaseLLMClient, LLMMessage

logger = logging.getLogger(__name__)

_FACTS_SYSTEM = """\
You write the next chat message of a business assistant.
Reply in the language with ISO code "{lang}". Use ONLY the FACTS below; do not invent prices,
links or promises. Keep it short (at most 3 sentences) and friendly.
If FACTS include a link, include it verbatim.

Business context:
{prompt}
"""

_COMPOSE_SYSTEM = """\
The customer asked several things in one message. Combine the answers below into ONE
coherent reply in the language with ISO code "{lang}". Keep every concrete fact and link,
drop repetition, no headings.
"""

_DEFAULT_SYSTEM = """\
{prompt}

Reply in the language with ISO code "{lang}". Be brief and helpful.
"""

FALLBACK_TEXTS: Dict[str, Dict[str, str]] = {
    "PAYMENT_CONFIRMED_BY_USER": {
        "es": "¡Gracias! Nuestro equipo confirmará tu pago y activará tu servicio en breve.",
        "en": "Thank you! Our team will confirm your payment and activate your service shortly.",
        "pt": "Obrigado! Nossa equipe vai confirmar seu pagamento e ativar seu serviço em breve.",
    },
    "PAYMENT_LINK": {
        "es": "Aquí tienes el enlace de pago: {link}\nCuando termines, escribe \"pago realizado\".",
        "en": "Here is your payment link: {link}\nOnce you are done, reply \"payment done\".",
        "pt": "Aqui está o link de pagamento: {link}\nQuando terminar, escreva \"pago realizado\".",
    },
    "PAYMENT_LINK_MISSING": {
        "es": "En un momento te compartimos el enlace de pago.",
        "en": "We will share the payment link with you in a moment.",
        "pt": "Em instantes enviaremos o link de pagamento.",
    },
    "PAYMENT_DETAILS_RECEIVED": {
        "es": "¡Gracias! Recibimos tus datos.",
        "en": "Thanks! We received your details.",
        "pt": "Obrigado! Recebemos seus dados.",
    },
    "HUMAN_HANDOFF_REQUESTED": {
        "es": "Claro, una persona de nuestro equipo te contactará en breve.",
        "en": "Sure, someone from our team will contact you shortly.",
        "pt": "Claro, alguém da nossa equipe entrará em contato em breve.",
    },
    "AWAITING_FIELD_INVALID": {
        "es": "No pude validar ese dato. ¿Me lo envías de nuevo, por favor?",
        "en": "I couldn't validate that. Could you send it again, please?",
        "pt": "Não consegui validar esse dado. Pode enviar de novo, por favor?",
    },
    "YESNO_REQUIRED": {
        "es": "¿Me confirmas con un \"sí\" o un \"no\"?",
        "en": "Could you confirm with \"yes\" or \"no\"?",
        "pt": "Pode confirmar com \"sim\" ou \"não\"?",
    },
    "YESNO_RECEIVED": {
        "es": "¡Perfecto, anotado!",
        "en": "Great, noted!",
        "pt": "Perfeito, anotado!",
    },
    "GENERIC": {
        "es": "¡Gracias por escribirnos! ¿En qué te puedo ayudar?",
        "en": "Thanks for reaching out! How can I help you?",
        "pt": "Obrigado pelo contato! Como posso ajudar?",
    },
}


def _pick(key: str, lang: str, **values: str) -> str:
    texts = FALLBACK_TEXTS[key]
    return (texts.get(lang) or texts["es"]).format(**values)


def fallback_text(facts: Optional[Facts], lang: str) -> str:
    """Deterministic wording for ``facts`` in ``lang`` (Spanish when unknown)."""
    facts = facts or {}
    event = str(facts.get("EVENT") or "")
    link = str(facts.get("PAYMENT_LINK") or "")

    if event == "PAYMENT_DETAILS_RECEIVED":
        parts = [_pick(event, lang)]
        if link:
            parts.append(_pick("PAYMENT_LINK", lang, link=link))
        return "\n".join(parts)
    if event == "PAYMENT_LINK_REQUESTED":
        return _pick("PAYMENT_LINK", lang, link=link) if link else _pick("PAYMENT_LINK_MISSING", lang)
    if event.startswith("YESNO_RECEIVED"):
        return _pick("YESNO_RECEIVED", lang)
    if event in FALLBACK_TEXTS:
        return _pick(event, lang)
    return _pick("GENERIC", lang)


class ReplyGenerator:
    """Wraps the LLM client for the three kinds of text a turn can need."""

    def __init__(self, llm: Optional["BaseLLMClient"], *, timeout_seconds: Optional[float] = 15.0) -> None:
        self._llm = llm
        self._timeout = timeout_seconds

    async def render_facts(self, facts: Facts, *, lang: str, prompt: str = "", user_text: str = "") -> str:
        messages: List["LLMMessage"] = [
            {"role": "system", "content": _FACTS_SYSTEM.format(lang=lang, prompt=(prompt or "")[:4000])},
            {"role": "user", "content": f"Customer message: {user_text}\n\nFACTS:\n{json.dumps(facts, ensure_ascii=False, default=str)}"},
        ]
        text = await self._chat(messages, what="render_facts")
        return text or fallback_text(facts, lang)

    async def compose(self, parts: Sequence[str], *, lang: str, user_text: str = "") -> Optional[str]:
        """One reply covering every part; None when the LLM is unavailable."""
        joined = "\n\n".join(f"- {p}" for p in parts)
        messages: List["LLMMessage"] = [
            {"role": "system", "content": _COMPOSE_SYSTEM.format(lang=lang)},
            {"role": "user", "content": f"Customer message: {user_text}\n\nAnswers:\n{joined}"},
        ]
        return await self._chat(messages, what="compose")

    async def default_reply(self, *, prompt: str, user_text: str, lang: str) -> str:
        messages: List["LLMMessage"] = [
            {"role": "system", "content": _DEFAULT_SYSTEM.format(prompt=(prompt or "")[:6000], lang=lang)},
            {"role": "user", "content": user_text},
        ]
        text = await self._chat(messages, what="default_reply")
        return text or fallback_text(None, lang)

    async def _chat(self, messages: List["LLMMessage"], *, what: str) -> Optional[str]:
        if self._llm is None:
            return None
        try:
            raw = await asyncio.wait_for(self._llm.chat(messages), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("ReplyGenerator.%s timed out (%.0fs)", what, self._timeout or 0)
            return None
        except Exception as exc:
            logger.warning("ReplyGenerator.%s failed: %s", what, exc)
            return None
        text = (raw or "").strip()
        return text or None
