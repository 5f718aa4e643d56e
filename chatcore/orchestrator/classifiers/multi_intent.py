"""Keyword voting for messages that ask several things at once."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple

from chatcore.orchestrator.classifiers.intent_classifier import canonical_intent
from chatcore.orchestrator.parsing import normalize

_LEADING_GREETING_RE = re.compile(
    r"^\s*(hola+|hello+|hi+|hey+|buen[oa]s(\s+(dias|tardes|noches))?)[\s!.,:-]*"
)

VOTES: Tuple[Tuple[str, float, Pattern[str]], ...] = (
    ("precio", 0.95, re.compile(
        r"\b(precio|precios|costo|costos|cuesta|cuestan|cuanto vale|tarifa|tarifas|fee|fees|price|prices|cost)\b")),
    ("info", 0.8, re.compile(r"\b(info|informacion|servicio|servicios|clase|clases|information)\b")),
    ("horario", 0.8, re.compile(r"\b(horario|horarios|hours|hour|schedule|abren|cierran)\b")),
    ("ubicacion", 0.7, re.compile(
        r"\b(ubicacion|ubicados|ubicadas|ubicado|donde|address|direccion|location|where)\b")),
    ("agendar", 0.75, re.compile(r"\b(agendar|reservar|reserva|cita|appointment|book|booking)\b")),
    ("comprar", 0.7, re.compile(r"\b(comprar|compra|buy|purchase|checkout|contratar)\b")),
    ("soporte", 0.7, re.compile(r"\b(soporte|ayuda|support|help|problema)\b")),
    ("faq", 0.6, re.compile(r"\b(preguntas frecuentes|faq|faqs)\b")),
    ("politicas", 0.65, re.compile(
        r"\b(politica|politicas|reembolso|devolucion|cancelacion|policy|policies|refund|terms)\b")),
    ("gift_cards", 0.7, re.compile(r"\b(gift ?cards?|tarjeta de regalo|tarjetas de regalo|giftcard)\b")),
)


@dataclass(frozen=True)
class IntentVote:
    intent: str
    score: float


def detect_top_intents(
    text: str,
    *,
    hint: Optional[str] = None,
    max_intents: int = 3,
    threshold: float = 0.55,
) -> List[IntentVote]:
    """Distinct intents voted by keywords (plus the classifier's ``hint``), best first."""
    t = _LEADING_GREETING_RE.sub("", normalize(text)).strip()
    if not t:
        return []
    bag: List[IntentVote] = []
    canonical_hint = canonical_intent(hint)
    if canonical_hint == "info_servicio":
        canonical_hint = "info"
    if canonical_hint:
        bag.append(IntentVote(canonical_hint, 1.0))
    for intent, score, pattern in VOTES:
        if pattern.search(t):
            bag.append(IntentVote(intent, score))

    seen = set()
    out: List[IntentVote] = []
    for vote in sorted(bag, key=lambda v: v.score, reverse=True):
        if vote.intent in seen or vote.score < threshold:
            continue
        seen.add(vote.intent)
        out.append(vote)
    return out[:max_intents]
