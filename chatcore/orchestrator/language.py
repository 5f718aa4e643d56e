"""Per-turn language resolution with booking/flow stickiness."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from chatcore.clients.llm.base import BaseLLMClient
from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.ports import ClientStore
from chatcore.orchestrator.types import ConversationState, OrchestratorConfig

logger = logging.getLogger(__name__)

SUPPORTED_LANGS = ("es", "en", "pt")
UNDETERMINED = "und"

_AMBIGUOUS_RE = re.compile(r"^(ok|okay|kk|k|👍|yes|no|si|sí|y|n)$", re.IGNORECASE)
_ES_CHARS_RE = re.compile(r"[ñáéíóúü¿¡]")
_PT_CHARS_RE = re.compile(r"[ãõç]")
_ES_WORDS_RE = re.compile(
    r"\b(hola|buenas|precio|precios|cuanto|cuánto|cuesta|informacion|información|clase|clases|"
    r"agendar|reservar|horario|cita|quiero|necesito|donde|dónde|gracias)\b"
)
_EN_WORDS_RE = re.compile(
    r"\b(hello|hi|hey|please|info|information|class|classes|schedule|book|booking|price|"
    r"how much|i need|i want|where|thanks|thank you)\b"
)
_PT_WORDS_RE = re.compile(
    r"\b(ol[aá]|por favor|obrigad[oa]|informa(c|ç)[aã]o|marcar|hor[aá]rio|voc[eê]|quero)\b"
)

_LANG_NAMES = (
    ("en", r"english|ingl[eé]s"),
    ("es", r"español|espanol|spanish|castellano"),
    ("pt", r"portugu[eê]s|portuguese"),
)
_MENTION_RES = tuple(
    (lang, re.compile(rf"\b(?:{names})\b", re.IGNORECASE)) for lang, names in _LANG_NAMES
)
# "in english", "háblame en inglés", "english please", or just the language name
_REQUEST_RES = tuple(
    (
        lang,
        re.compile(
            rf"^\s*(?:{names})\s*[.!?]*\s*$"
            rf"|\b(?:in|to|speak|habla|hablar|hablame|háblame|hablemos|fala|falar|falamos|"
            rf"prefer|prefiero|prefiro)\s+(?:en\s+|em\s+|in\s+)?(?:{names})\b"
            rf"|\b(?:{names})\s*,?\s*(?:please|pls|por favor)\b",
            re.IGNORECASE,
        ),
    )
    for lang, names in _LANG_NAMES
)

_DETECT_PROMPT = (
    'Detect the language of this message and answer ONLY with: es, en, or pt.\n\n'
    'Message: "{text}"'
)


def detect_local(text: str) -> Optional[str]:
    """Cheap heuristic; None when it cannot decide."""
    t = (text or "").strip().lower()
    if not t:
        return None
    if _ES_CHARS_RE.search(t):
        return "es"
    if _PT_CHARS_RE.search(t):
        return "pt"
    if _ES_WORDS_RE.search(t):
        return "es"
    if _EN_WORDS_RE.search(t):
        return "en"
    if _PT_WORDS_RE.search(t):
        return "pt"
    return None


def requested_language(text: str) -> Optional[str]:
    """Language explicitly asked for in the message ("in english please")."""
    for lang, pattern in _REQUEST_RES:
        if pattern.search(text or ""):
            return lang
    return None


def mentions_language(text: str) -> Optional[str]:
    """First language name appearing anywhere in the message."""
    for lang, pattern in _MENTION_RES:
        if pattern.search(text or ""):
            return lang
    return None


class LanguageDetector:
    """Local heuristic first, then one LLM call when the heuristic is unsure."""

    def __init__(self, llm: Optional[BaseLLMClient] = None, *, timeout_seconds: Optional[float] = 10.0) -> None:
        self._llm = llm
        self._timeout = timeout_seconds

    async def detect(self, text: str) -> str:
        t = (text or "").strip()
        if len(t) <= 2 or _AMBIGUOUS_RE.match(t):
            return UNDETERMINED
        local = detect_local(t)
        if local:
            return local
        if self._llm is None:
            return UNDETERMINED
        try:
            raw = await asyncio.wait_for(
                self._llm.complete(_DETECT_PROMPT.format(text=t[:500])),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Language detection timed out")
            return UNDETERMINED
        except Exception as exc:
            logger.warning("Language detection failed: %s", exc)
            return UNDETERMINED
        answer = (raw or "").strip().lower()[:2]
        return answer if answer in SUPPORTED_LANGS else UNDETERMINED


@dataclass
class LanguageResolution:
    lang: str
    context_patch: Dict[str, Any] = field(default_factory=dict)
    persisted: bool = False
    detected: Optional[str] = None


class LanguageResolver:
    """Pick the reply language for a turn.

    Priority: explicit switch request, locked booking language, ``thread_lang``
    (sticky inside and outside loops), persisted customer language, one-time
    detection on a long-enough message, tenant default.
    """

    def __init__(
        self,
        clients: ClientStore,
        detector: LanguageDetector,
        config: OrchestratorConfig,
    ) -> None:
        self._clients = clients
        self._detector = detector
        self._config = config

    async def resolve(
        self,
        *,
        tenant_id: str,
        canal: str,
        contact: str,
        text: str,
        state: ConversationState,
        tenant_default: Optional[str] = None,
    ) -> LanguageResolution:
        ctx = state.context
        default = _normalize(tenant_default) or self._config.default_language
        thread_lang = _normalize(ctx.thread_lang)

        detected: Optional[str] = None
        if self._config.allow_explicit_lang_switch:
            wanted = requested_language(text)
            if wanted is None and mentions_language(text):
                # a language named in passing only re-detects from the message itself
                detected = await self._detector.detect(text)
                wanted = detected if detected in SUPPORTED_LANGS else None
            if wanted:
                persisted = await self._persist(tenant_id, canal, contact, wanted)
                patch: Dict[str, Any] = {"thread_lang": wanted}
                if ctx.booking_active:
                    patch["booking"] = {"lang": wanted}
                return LanguageResolution(wanted, patch, persisted=persisted, detected=detected or wanted)

        booking_lang = _normalize(ctx.booking_lang)
        if ctx.booking_active and booking_lang:
            return LanguageResolution(booking_lang, {"thread_lang": thread_lang or booking_lang})

        if thread_lang:
            # sticky: never re-detect once the thread language is known
            return LanguageResolution(thread_lang)

        stored = await self._stored_lang(tenant_id, canal, contact)
        if stored:
            return LanguageResolution(stored, {"thread_lang": stored})

        if detected is None and self._should_detect(text):
            detected = await self._detector.detect(text)
            if detected in SUPPORTED_LANGS:
                persisted = await self._persist(tenant_id, canal, contact, detected)
                return LanguageResolution(
                    detected, {"thread_lang": detected}, persisted=persisted, detected=detected
                )

        return LanguageResolution(default)

    def _should_detect(self, text: str) -> bool:
        t = (text or "").strip()
        if len(t) < self._config.lang_detect_min_chars:
            return False
        return not t.isdigit()

    async def _stored_lang(self, tenant_id: str, canal: str, contact: str) -> Optional[str]:
        try:
            record = await self._clients.get_client(tenant_id, canal, contact)
        except ChatcoreError as exc:
            logger.warning("Could not read stored language: %s", exc)
            return None
        return _normalize(record.lang) if record else None

    async def _persist(self, tenant_id: str, canal: str, contact: str, lang: str) -> bool:
        try:
            await self._clients.set_lang(tenant_id, canal, contact, lang)
            return True
        except ChatcoreError as exc:
            logger.warning("Could not persist customer language: %s", exc)
            return False


def _normalize(value: Any) -> Optional[str]:
    v = str(value or "").strip().lower()[:2]
    return v if v in SUPPORTED_LANGS else None
