"""Fuzzy matcher over the tenant's own intents and their example phrasings."""
from __future__ import annotations

import logging
import re
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple

from chatcore.orchestrator.parsing import normalize
from chatcore.orchestrator.ports import IntentMatch, TenantStore

logger = logging.getLogger(__name__)

_STOP_ES: FrozenSet[str] = frozenset({
    "el", "la", "los", "las", "un", "una", "unos", "unas", "de", "del", "al", "a", "que", "y", "o",
    "es", "son", "soy", "eres", "esta", "estan", "como", "cual", "cuales", "donde", "quien",
    "cuando", "por", "para", "con", "mi", "tu", "su", "sus", "lo", "en", "cuanto",
})
_STOP_EN: FrozenSet[str] = frozenset({
    "the", "a", "an", "of", "to", "in", "on", "for", "and", "or", "is", "are", "am", "be",
    "i", "you", "we", "they", "how", "much",
})

_REPEATS_RE = re.compile(r"([a-zñ])\1+")


def clean(text: str) -> str:
    """Accent-free, punctuation-free, with letter runs squashed ("preciiio" -> "precio")."""
    t = re.sub(r"[^a-z0-9ñ\s]", " ", normalize(text))
    t = re.sub(r"\s+", " ", t).strip()
    return _REPEATS_RE.sub(r"\1", t)


def tokens(text: str, lang: Optional[str] = None) -> Set[str]:
    stop = _STOP_EN if lang == "en" else _STOP_ES
    return {w for w in text.split() if w and w not in stop}


def similarity(message: str, pattern: str, lang: Optional[str] = None) -> float:
    """max(Jaccard, pattern-coverage, containment) over cleaned text."""
    if not message or not pattern:
        return 0.0
    a, b = tokens(message, lang), tokens(pattern, lang)
    union = len(a | b) or 1
    jaccard = len(a & b) / union
    coverage = len(a & b) / len(b) if b else 0.0
    contained = 1.0 if pattern in message else 0.0
    return max(jaccard, coverage, contained)


def best_pattern(message: str, patterns: Iterable[str], lang: Optional[str] = None) -> Tuple[float, str]:
    best_score, best = 0.0, ""
    for p in patterns:
        score = similarity(message, p, lang)
        if score > best_score:
            best_score, best = score, p
    return best_score, best


class FuzzyIntentMatcher:
    """Scores every active tenant intent and returns the best one above ``threshold``.

    Rows that declare a language different from the turn's are skipped.
    """

    def __init__(self, tenants: TenantStore, *, threshold: float = 0.55) -> None:
        self._tenants = tenants
        self._threshold = threshold

    async def match(
        self, tenant_id: str, canal: str, text: str, lang: Optional[str] = None
    ) -> Optional[IntentMatch]:
        message = clean(text)
        if not message:
            return None
        rows = await self._tenants.list_intents(tenant_id, canal)

        best: Optional[IntentMatch] = None
        for row in rows:
            if lang and row.lang and row.lang.lower() != lang.lower():
                continue
            patterns: List[str] = [clean(e) for e in row.examples if e]
            score, pattern = best_pattern(message, patterns, lang)
            if score < self._threshold:
                continue
            logger.debug("FuzzyIntentMatcher: %s scored %.3f on %r", row.intent, score, pattern)
            if best is None or score > best.score:
                best = IntentMatch(intent=row.intent, answer=row.answer, score=round(score, 3))
        return best
