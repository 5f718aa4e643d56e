"""Core data structures for the per-turn orchestrator."""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from chatcore.core.exceptions import ConfigurationError

Facts = Dict[str, Any]
"""Structured facts handed to the reply generator instead of literal copy."""

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AwaitingKind(str, Enum):
    """Value types the awaiting-field gate knows how to validate."""
    EMAIL = "email"
    PHONE = "phone"
    NAME = "name"
    CHANNEL = "channel"
    CODE = "code"
    CUSTOM = "custom"


# ─── configuration ────────────────────────────────────────────────────────────

_DEFAULT_DIRECT_INTENTS = ["pago", "agendar", "precio", "ubicacion", "horario", "cancelar"]
_DEFAULT_CHANNELS = ["whatsapp", "facebook", "instagram"]


@dataclass
class OrchestratorConfig:
    """Tunables for a turn.

    Thresholds
    ----------
    intent_min_score
        Minimum matcher score accepted at all.
    direct_override_min_score
        When the classifier's canonical intent is one of ``direct_intents``
        (payment, booking, pricing...), a matcher answer must reach this score
        to be trusted over the canonical intent.

    TTL windows
    -----------
    Expiry is observed at read time (``now > until``), never scheduled.
    """

    intent_min_score: float = 0.55
    direct_override_min_score: float = 0.85
    direct_intents: List[str] = field(default_factory=lambda: list(_DEFAULT_DIRECT_INTENTS))

    human_override_minutes: int = 5
    awaiting_ttl_minutes: int = 45
    notification_snippet_chars: int = 240

    default_language: str = "es"
    allow_explicit_lang_switch: bool = True
    lang_detect_min_chars: int = 10

    followup_min_wait_minutes: int = 60
    followup_max_wait_minutes: int = 1380
    followup_jitter_ratio: float = 0.10
    followup_min_delay_minutes: int = 5
    supported_channels: List[str] = field(default_factory=lambda: list(_DEFAULT_CHANNELS))

    multi_intent_max: int = 3

    external_timeout_seconds: Optional[float] = 15.0
    """Bound for LLM, matcher, classifier and transport calls. None = no timeout."""

    serialize_turns: bool = True
    """Serialize turns per (tenant, canal, contact) inside this process."""

    default_flow: str = "generic_sales"
    default_step: str = "start"

    def __post_init__(self) -> None:
        if not 0.0 <= self.intent_min_score <= 1.0:
            raise ConfigurationError("intent_min_score must be within [0, 1]")
        if self.direct_override_min_score < self.intent_min_score:
            raise ConfigurationError("direct_override_min_score must be >= intent_min_score")
        if self.followup_min_wait_minutes > self.followup_max_wait_minutes:
            raise ConfigurationError("followup_min_wait_minutes must be <= followup_max_wait_minutes")
        if self.human_override_minutes <= 0 or self.awaiting_ttl_minutes <= 0:
            raise ConfigurationError("TTL minutes must be positive")

    @property
    def awaiting_ttl(self) -> timedelta:
        return timedelta(minutes=self.awaiting_ttl_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: copy.copy(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None) -> "OrchestratorConfig":
        """Load from a dict. Unknown keys are ignored, missing keys use defaults."""
        if not data:
            return cls()
        defaults = cls()
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if value is None:
                if key == "external_timeout_seconds":
                    kwargs[key] = None
                continue
            default = getattr(defaults, key)
            try:
                if isinstance(default, bool):
                    kwargs[key] = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes")
                elif isinstance(default, int):
                    kwargs[key] = int(value)
                elif isinstance(default, float):
                    kwargs[key] = float(value)
                elif isinstance(default, list):
                    kwargs[key] = [str(v).strip() for v in value if str(v).strip()]
                else:
                    kwargs[key] = value
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(f"Invalid value for {key}: {value!r}", cause=exc) from exc
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Read ``CHATCORE_<FIELD>`` variables; lists are comma separated."""
        data: Dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"CHATCORE_{f.name.upper()}")
            if raw is None:
                continue
            data[f.name] = raw.split(",") if f.name in ("direct_intents", "supported_channels") else raw
        return cls.from_dict(data)


# ─── persisted shapes ─────────────────────────────────────────────────────────

def merge_patch(target: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """JSON merge-patch: ``None`` deletes a key, nested dicts merge recursively."""
    out = dict(target)
    for key, value in patch.items():
        if value is None:
            out.pop(key, None)
        elif isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge_patch(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out



def combine_patches(first: Dict[str, Any], second: Dict[str, Any]) -> Dict[str, Any]:
    """Compose two merge-patches into one; ``None`` deletions are kept."""
    out = dict(first)
    for key, value in second.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = combine_patches(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


@dataclass
class ConversationContext:
    """Typed view over ``conversation_state.context``.

    Keys this package reads are explicit fields; everything else is kept in
    ``extra`` so other subsystems' keys survive a round trip.
    """

    thread_lang: Optional[str] = None
    booking: Optional[Dict[str, Any]] = None
    last_service_ref: Optional[Dict[str, Any]] = None
    pending_options: Optional[List[Dict[str, Any]]] = None
    last_intent: Optional[str] = None
    last_reply_source: Optional[str] = None
    last_assistant_text: Optional[str] = None
    last_user_text: Optional[str] = None
    last_turn_at: Optional[str] = None
    awaiting_yesno: Optional[bool] = None
    yesno_context: Optional[str] = None
    on_yes: Optional[Dict[str, Any]] = None
    on_no: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> "ConversationContext":
        raw = dict(raw or {})
        names = {f.name for f in fields(cls)} - {"extra"}
        known = {k: raw.pop(k) for k in list(raw) if k in names}
        return cls(**known, extra=raw)

    def to_dict(self) -> Dict[str, Any]:
        out = dict(self.extra)
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        return out

    def merged(self, patch: Dict[str, Any]) -> "ConversationContext":
        return ConversationContext.from_dict(merge_patch(self.to_dict(), patch))

    @property
    def booking_active(self) -> bool:
        step = (self.booking or {}).get("step")
        return bool(step) and step != "idle"

    @property
    def booking_lang(self) -> Optional[str]:
        return (self.booking or {}).get("lang") or None


@dataclass
class ConversationState:
    active_flow: Optional[str] = None
    active_step: Optional[str] = None
    context: ConversationContext = field(default_factory=ConversationContext)


@dataclass
class ClientRecord:
    """Override / awaiting / captured-details row for one contact."""

    estado: Optional[str] = None
    human_override: bool = False
    human_override_until: Optional[datetime] = None
    awaiting_field: Optional[str] = None
    awaiting_payload: Dict[str, Any] = field(default_factory=dict)
    awaiting_updated_at: Optional[datetime] = None
    lang: Optional[str] = None
    nombre: Optional[str] = None
    email: Optional[str] = None
    telefono: Optional[str] = None
    pais: Optional[str] = None
    selected_channel: Optional[str] = None

    def override_active(self, now: datetime) -> bool:
        return bool(
            self.human_override
            and self.human_override_until is not None
            and now <= self.human_override_until
        )

    def override_lapsed(self, now: datetime) -> bool:
        """Flag is still stored but its window is over."""
        return self.human_override and not self.override_active(now)

    def awaiting_expired(self, now: datetime, ttl: timedelta) -> bool:
        if not self.awaiting_field:
            return False
        if self.awaiting_updated_at is None:
            return True
        return now - self.awaiting_updated_at >= ttl


@dataclass(frozen=True)
class CustomerDetails:
    nombre: str
    email: str
    telefono: str
    pais: Optional[str] = None


@dataclass
class Tenant:
    """The tenant fields the orchestrator reads."""

    id: str
    name: str = ""
    default_lang: str = "es"
    membership_active: bool = True
    notify_phone: Optional[str] = None
    notify_email: Optional[str] = None
    cta_text: Optional[str] = None
    cta_url: Optional[str] = None
    prompt: Optional[str] = None
    prompt_meta: Optional[str] = None
    info_clave: Optional[str] = None
    funciones_asistente: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def service_names(self) -> List[str]:
        return [str(s) for s in (self.settings.get("services") or []) if str(s).strip()]


@dataclass(frozen=True)
class FollowUpSettings:
    wait_minutes: int = 60
    msg_low: Optional[str] = None
    msg_medium: Optional[str] = None
    msg_high: Optional[str] = None


@dataclass(frozen=True)
class FaqEntry:
    intent: str
    answer: str
    canal: Optional[str] = None
    lang: Optional[str] = None


@dataclass(frozen=True)
class TenantIntent:
    """A tenant-defined intent with example phrasings and a canned answer."""
    intent: str
    examples: Tuple[str, ...]
    answer: str
    lang: Optional[str] = None
    priority: int = 0


@dataclass(frozen=True)
class CtaRow:
    intent_slug: str
    canal: str
    text: str
    url: str


@dataclass
class PendingFollowUp:
    id: Any
    tenant_id: str
    canal: str
    contacto: str
    contenido: str
    fecha_envio: datetime


# ─── gate results and transitions ─────────────────────────────────────────────

@dataclass(frozen=True)
class AwaitingEffect:
    """Declarative change to the client's awaiting-field state.

    ``kind=None`` clears the pending expectation.
    """
    kind: Optional[AwaitingKind] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def clears(self) -> bool:
        return self.kind is None


@dataclass(frozen=True)
class StateTransition:
    flow: Optional[str] = None
    step: Optional[str] = None
    patch: Dict[str, Any] = field(default_factory=dict)
    awaiting: Optional[AwaitingEffect] = None

    def then(self, other: Optional["StateTransition"]) -> "StateTransition":
        """Compose: ``other`` is applied after ``self``."""
        if other is None:
            return self
        return StateTransition(
            flow=other.flow or self.flow,
            step=other.step or self.step,
            patch=combine_patches(self.patch, other.patch),
            awaiting=other.awaiting if other.awaiting is not None else self.awaiting,
        )


@dataclass(frozen=True)
class Continue:
    """Gate does not apply; run the next one."""


@dataclass(frozen=True)
class Silence:
    """Stop the turn without replying."""
    reason: str


@dataclass(frozen=True)
class Reply:
    """Stop the turn and answer with literal text or with facts to render."""
    source: str
    text: Optional[str] = None
    facts: Optional[Facts] = None
    intent: Optional[str] = None
    transition: Optional[StateTransition] = None

    def __post_init__(self) -> None:
        if not self.text and not self.facts:
            raise ValueError("Reply needs text or facts")


@dataclass(frozen=True)
class Transition:
    """Keep going, but carry this transition to the end of the turn."""
    transition: StateTransition


GateResult = Union[Continue, Silence, Reply, Transition]

CONTINUE = Continue()


# ─── per-turn ─────────────────────────────────────────────────────────────────

@dataclass
class TurnContext:
    """Everything known about one inbound message. Never persisted whole."""

    tenant: Tenant
    canal: str
    contact: str
    text: str
    message_id: Optional[str] = None
    from_number: Optional[str] = None
    prompt: str = ""
    lang: Optional[str] = None
    received_at: Optional[datetime] = None

    @property
    def tenant_id(self) -> str:
        return self.tenant.id

    @property
    def sender_key(self) -> str:
        return self.contact or self.from_number or "anonimo"

    @property
    def reply_to(self) -> str:
        return self.from_number or self.contact


@dataclass(frozen=True)
class TurnEvent:
    """Snapshot a gate inspects."""

    turn: TurnContext
    state: ConversationState
    lang: str
    now: datetime

    @property
    def text(self) -> str:
        return (self.turn.text or "").strip()

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.turn.tenant_id, self.turn.canal, self.turn.contact)


@dataclass
class TurnOutcome:
    handled: bool
    reply: Optional[str] = None
    source: Optional[str] = None
    intent: Optional[str] = None
    nivel: Optional[int] = None
    lang: Optional[str] = None
    silence_reason: Optional[str] = None
    facts: Optional[Facts] = None
    sent: bool = False

    @classmethod
    def silenced(cls, reason: str, *, lang: Optional[str] = None) -> "TurnOutcome":
        return cls(handled=False, silence_reason=reason, lang=lang)

    def with_delivery(self, sent: bool) -> "TurnOutcome":
        return replace(self, sent=sent)
