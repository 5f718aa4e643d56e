"""Canonical intent detection: universal keyword table, then an optional LLM fallback."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.ports import IntentClassifier, IntentGuess

if TYPE_CHECKING:
    from chatcore.clients.llm.base import BaseLLMClient

logger = logging.getLogger(__name__)

INTENT_ALIASES: Dict[str, str] = {
    "reservar": "agendar",
    "reserva": "agendar",
    "agenda": "agendar",
    "appointment": "agendar",
    "book": "agendar",
    "ubicación": "ubicacion",
    "direccion": "ubicacion",
    "dirección": "ubicacion",
    "price": "precio",
    "cost": "precio",
    "payment": "pago",
    "pagar": "pago",
}

GREETING_ONLY_RE = re.compile(
    r"^(hola|hello|hi|buenas|buenos\s+d[ií]as|buenas\s+tardes|buenas\s+noches|hey)\b[\s!.]*$",
    re.IGNORECASE,
)
THANKS_ONLY_RE = re.compile(r"^(gracias|thank(s| you)|ty)\b[\s!.]*$", re.IGNORECASE)

_LEADING_GREETING_RE = re.compile(
    r"^(hola|hello|hi|hey|buenos dias|buenas tardes|buenas noches|buen dia|buenas)[\s,!.:-]*"
)
_MORE_INFO_RE = re.compile(
    r"\b(mas\s*inf(o(rmacion)?)?|informacion\s*adicional|more\s*info|more\s*information|"
    r"more\s*details|tell\s*me\s*more)\b"
)
_SUBSCRIBE_RE = re.compile(
    r"\b(suscrib(ir(me)?|irse)|suscripcion|subscrib(e|ing)|subscription|sign\s*up|enroll|"
    r"activar(\s+mi)?\s+(membresia|plan)|activate(\s+my)?\s+(plan|membership))\b"
)
_NEGATION_RE = re.compile(r"\b(no|aun\s*no|todavia\s*no|not)\b")

_SALES_LABELS = ("precio", "agendar", "pago", "disponibilidad", "comprar")


@dataclass(frozen=True)
class UniversalIntent:
    intent: str
    nivel: int
    words: Tuple[str, ...] = ()
    phrases: Tuple[str, ...] = ()


UNIVERSAL_INTENTS: Tuple[UniversalIntent, ...] = (
    UniversalIntent("saludo", 1, ("hola", "hello", "hi", "hey", "saludos"),
                    ("buenos dias", "buenas tardes", "buenas noches")),
    UniversalIntent("precio", 2, ("precio", "precios", "cost", "price", "tarifa", "fee", "quote", "cotizacion"),
                    ("cuanto cuesta", "how much", "cuanto vale", "me das precio")),
    UniversalIntent("horario", 2, ("horario", "horarios", "hours", "abren", "cierran"),
                    ("a que hora", "hora de apertura", "hora de cierre", "what time", "what are your hours")),
    UniversalIntent("ubicacion", 2, ("ubicacion", "direccion", "location", "address"),
                    ("donde estan", "donde queda", "como llegar", "where are you", "how to get")),
    UniversalIntent("agendar", 3, ("agendar", "agenda", "cita", "turno", "appointment", "book", "reservar", "reserva"),
                    ("quiero una cita", "quiero agendar", "book an appointment", "i want to book")),
    UniversalIntent("disponibilidad", 2, ("disponibilidad", "disponible", "available", "stock", "cupo", "cupos"),
                    ("hay disponibilidad", "is it available", "do you have availability")),
    UniversalIntent("pago", 3, ("pagar", "pago", "pay", "payment", "factura", "invoice", "checkout"),
                    ("quiero pagar", "como pago", "send me the link", "link de pago")),
    UniversalIntent("cancelar", 2, ("cancelar", "cancel", "anular"),
                    ("cancela mi", "ya no quiero", "i want to cancel")),
    UniversalIntent("soporte", 2, ("problema", "error", "help", "ayuda", "support", "soporte"),
                    ("no funciona", "necesito ayuda", "tengo un problema", "it doesn't work")),
    UniversalIntent("queja", 2, ("queja", "reclamo", "reclamacion", "molesto", "enojado", "angry", "complaint"),
                    ("muy mal servicio", "i'm upset", "estoy molesto")),
    UniversalIntent("no_interesado", 1, (),
                    ("no me interesa", "no gracias", "not interested", "i am not interested")),
)

_INFO_PHRASES = (
    "quiero informacion", "necesito saber mas", "quiero saber mas", "quiero detalles",
    "me puedes explicar", "en que consiste", "information please",
)
_INFO_WORDS = ("info", "informacion", "information", "details", "detalle")
_SALE_SIGNALS = (
    "comprar", "compra", "pagar", "pago", "precio", "cotizacion", "quote", "checkout",
    "orden", "order", "reservar", "agendar", "cita", "appointment", "book", "plan",
    "planes", "membership", "membresia", "contratar", "hire",
)

_LLM_PROMPT = """\
You classify customer messages for a business chat assistant. Pick ONE intent.

Universal intents: {universal}
Business-specific intents: {custom}

Rules:
- A greeting together with a real request is never "saludo".
- nivel_interes is purchase proximity: 3 wants to book/pay/buy, 2 asks price or details, 1 vague.

Message: "{text}"

Answer ONLY with JSON: {{"intencion": "...", "nivel_interes": 1}}
"""


def canonical_intent(raw: Optional[str]) -> Optional[str]:
    label = str(raw or "").strip().lower()
    if not label:
        return None
    return INTENT_ALIASES.get(label, label)


def is_greeting_or_thanks(text: str) -> bool:
    t = (text or "").strip().lower()
    return bool(GREETING_ONLY_RE.match(t) or THANKS_ONLY_RE.match(t))


def is_sales_intent(intent: Optional[str]) -> bool:
    label = (intent or "").lower()
    return any(k in label for k in _SALES_LABELS)


def clamp_nivel(nivel: Optional[int], default: int = 2) -> int:
    try:
        value = int(nivel) if nivel is not None else default
    except (TypeError, ValueError):
        value = default
    if value <= 0:
        value = default
    return max(1, min(3, value))


def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


class KeywordIntentClassifier:
    """Universal keyword/phrase table with purchase-proximity levels.

    When nothing obvious matches and an LLM client is configured, a single
    LLM call picks among the universal labels plus ``custom_intents``.
    """

    def __init__(
        self,
        llm: Optional["BaseLLMClient"] = None,
        *,
        timeout_seconds: Optional[float] = 15.0,
        custom_intents: Sequence[str] = (),
    ) -> None:
        self._llm = llm
        self._timeout = timeout_seconds
        self._custom_intents: List[str] = [c for c in custom_intents if c]

    async def classify(self, text: str, lang: Optional[str] = None) -> IntentGuess:
        guess = self.classify_keywords(text)
        if guess is not None:
            return guess
        if self._llm is None:
            return IntentGuess(intent="duda", nivel=1, source="default")
        return await self._classify_llm(text)

    def classify_keywords(self, text: str) -> Optional[IntentGuess]:
        t = normalize(text)
        if not t:
            return None
        core = _LEADING_GREETING_RE.sub("", t).strip() or t

        if _MORE_INFO_RE.search(t):
            return IntentGuess("info_servicio", 2)
        if _SUBSCRIBE_RE.search(t) and not _NEGATION_RE.search(t):
            return IntentGuess("pago", 3)

        wants_info = any(p in core for p in _INFO_PHRASES) or any(_has_word(core, w) for w in _INFO_WORDS)
        wants_sale = any(s in core for s in _SALE_SIGNALS)

        for rule in UNIVERSAL_INTENTS:
            hit = any(_has_word(core, w) for w in rule.words) or any(p in core for p in rule.phrases)
            if not hit:
                continue
            if rule.intent == "saludo" and (wants_info or wants_sale):
                break
            return IntentGuess(rule.intent, rule.nivel)

        if wants_sale:
            return IntentGuess("info_servicio", 3)
        if wants_info:
            return IntentGuess("info_servicio", 2)
        return None

    async def _classify_llm(self, text: str) -> IntentGuess:
        prompt = _LLM_PROMPT.format(
            universal=", ".join(r.intent for r in UNIVERSAL_INTENTS) + ", info_servicio, duda",
            custom=", ".join(self._custom_intents) or "(none)",
            text=text[:500],
        )
        try:
            raw = await asyncio.wait_for(self._llm.complete(prompt), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("KeywordIntentClassifier: LLM fallback timed out")
            return IntentGuess("duda", 1, source="default")
        except Exception as exc:
            logger.warning("KeywordIntentClassifier: LLM fallback failed: %s", exc)
            return IntentGuess("duda", 1, source="default")
        return self._parse(raw)

    @staticmethod
    def _parse(raw: str) -> IntentGuess:
        candidate = re.sub(r"```(json)?", "", raw or "").strip()
        m = re.search(r"\{.*\}", candidate, re.DOTALL)
        try:
            data = json.loads(m.group(0) if m else candidate)
        except json.JSONDecodeError:
            logger.warning("KeywordIntentClassifier: unparseable LLM output: %s", (raw or "")[:200])
            return IntentGuess("duda", 1, source="default")
        intent = str(data.get("intencion") or "").strip().lower()
        if not intent:
            return IntentGuess("duda", 1, source="default")
        return IntentGuess(intent, clamp_nivel(data.get("nivel_interes"), default=1), source="llm")


async def detect_canonical_intent(
    classifier: IntentClassifier,
    text: str,
    lang: Optional[str] = None,
    *,
    timeout_seconds: Optional[float] = None,
) -> IntentGuess:
    """Classify and canonicalize. Greeting-only or thanks-only text never reaches the classifier."""
    t = (text or "").strip()
    if not t:
        return IntentGuess(None, None, source="empty")
    if is_greeting_or_thanks(t):
        return IntentGuess(None, None, source="greeting_or_thanks")
    try:
        guess = await asyncio.wait_for(classifier.classify(t, lang), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("Intent classification timed out")
        return IntentGuess(None, None, source="timeout")
    except Exception as exc:
        logger.warning("Intent classification failed: %s", exc)
        return IntentGuess(None, None, source="error")
    return IntentGuess(canonical_intent(guess.intent), guess.nivel, source=guess.source)
