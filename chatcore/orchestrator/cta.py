"""Call-to-action and canonical link resolution for a turn."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from chatcore.core.exceptions import ChatcoreError
from chatcore.orchestrator.classifiers.intent_classifier import canonical_intent
from chatcore.orchestrator.parsing import find_urls, is_valid_url
from chatcore.orchestrator.ports import TenantStore
from chatcore.orchestrator.types import CtaRow, Tenant

logger = logging.getLogger(__name__)

GLOBAL_SLUG = "global"
WILDCARD_CANAL = "*"

# Link keys a tenant prompt may declare (``PRECIOS_URL: https://...``), per intent.
LINK_KEYS_BY_INTENT: Dict[str, List[str]] = {
    "info": ["INFO_URL", "SERVICIOS_URL", "CLASES_URL", "HOME_URL", "LANDING_URL"],
    "info_servicio": ["INFO_URL", "SERVICIOS_URL", "HOME_URL"],
    "precio": ["PRECIOS_URL", "PRICING_URL", "PLANES_URL", "MEMBERSHIP_URL", "MEMBERSHIPS_URL"],
    "horario": ["HORARIOS_URL", "SCHEDULE_URL"],
    "agendar": ["RESERVA_URL", "BOOK_URL", "BOOKING_URL", "AGENDA_URL"],
    "comprar": ["COMPRAR_URL", "BUY_URL", "CHECKOUT_URL"],
    "ubicacion": ["UBICACION_URL", "LOCATION_URL", "ADDRESS_URL", "MAPS_URL"],
    "soporte": ["SOPORTE_URL", "SUPPORT_URL", "AYUDA_URL", "HELP_URL", "CONTACTO_URL", "CONTACT_URL"],
    "politicas": ["POLITICAS_URL", "POLICIES_URL", "TERMS_URL", "PRIVACY_URL"],
    "faq": ["FAQ_URL", "PREGUNTAS_URL"],
    "gift_cards": ["GIFTCARD_URL", "GIFTCARDS_URL"],
}
_INTENT_LINK_PRIORITY = ("info", "info_servicio", "precio")

_KV_LINK_RE = re.compile(r"^\s*([A-Z0-9_]+(?:_URL|_LINK))\s*:\s*(https?://\S+)\s*$", re.IGNORECASE | re.MULTILINE)
_TABLE_LINK_RE = re.compile(r"\|\s*([A-Z0-9_]+(?:_URL|_LINK))\s*\|\s*(https?://[^|\s]+)\s*\|", re.IGNORECASE)
_OFFICIAL_BLOCK_RE = re.compile(r"ENLACES?_OFICIALES[\s\S]*?(?:\n{2,}|$)", re.IGNORECASE)


@dataclass(frozen=True)
class Cta:
    text: str
    url: str


def links_from_prompt(prompt: Optional[str]) -> Dict[str, str]:
    """``KEY_URL: https://...`` lines and ``| KEY_URL | https://... |`` table rows."""
    text = (prompt or "").replace("\r", "")
    block = _OFFICIAL_BLOCK_RE.search(text)
    scope = block.group(0) if block else text
    links: Dict[str, str] = {}
    for pattern in (_KV_LINK_RE, _TABLE_LINK_RE):
        for key, url in pattern.findall(scope):
            links[key.upper()] = url.strip()
    return links


def resolve_channel_url(links: Dict[str, str], canal: str, keys: Iterable[str]) -> Optional[str]:
    """Channel-prefixed key (``WHATSAPP_PRECIOS_URL``) wins over the plain key."""
    prefix = (canal or "").upper()
    for key in keys:
        k = key.upper()
        url = links.get(f"{prefix}_{k}") or links.get(k)
        if url:
            return url
    return None


def order_by_link_priority(intents: Sequence[str]) -> List[str]:
    """info first, then pricing, then the rest in their original order."""
    def rank(intent: str) -> int:
        try:
            return _INTENT_LINK_PRIORITY.index(intent)
        except ValueError:
            return len(_INTENT_LINK_PRIORITY)
    return sorted(intents, key=rank)


def tenant_fallback_link(tenant: Tenant) -> Optional[str]:
    for block in (tenant.info_clave, tenant.funciones_asistente, tenant.prompt, tenant.prompt_meta):
        for url in find_urls(block or ""):
            if is_valid_url(url):
                return url
    return None


def canonical_link(tenant: Tenant, canal: str, intents: Sequence[str]) -> Optional[str]:
    """One tenant link for a set of intents, falling back to any URL the tenant published."""
    links = links_from_prompt(tenant.prompt)
    for intent in order_by_link_priority(list(intents)):
        url = resolve_channel_url(links, canal, LINK_KEYS_BY_INTENT.get(intent, ()))
        if url:
            return url
    return resolve_channel_url(links, canal, ("HOME_URL", "LANDING_URL")) or tenant_fallback_link(tenant)


def _pick_row(rows: Sequence[CtaRow], slug: str, canal: str) -> Optional[CtaRow]:
    candidates = [r for r in rows if r.intent_slug == slug and r.canal in (canal, WILDCARD_CANAL)]
    candidates.sort(key=lambda r: r.canal != canal)
    for row in candidates:
        if row.text and is_valid_url(row.url):
            return row
    return None


class CtaResolver:
    """Pick one CTA: intent row for the channel or ``*``, then the ``global`` row, then the tenant columns."""

    def __init__(self, tenants: TenantStore) -> None:
        self._tenants = tenants

    async def resolve(self, tenant: Tenant, intent: Optional[str], canal: str) -> Optional[Cta]:
        rows: Sequence[CtaRow] = ()
        try:
            rows = await self._tenants.list_ctas(tenant.id, canal)
        except ChatcoreError as exc:
            logger.warning("CtaResolver: could not load CTAs for tenant %s: %s", tenant.id, exc)

        slug = canonical_intent(intent)
        row = _pick_row(rows, slug, canal) if slug else None
        if row is None:
            row = _pick_row(rows, GLOBAL_SLUG, canal)
        if row is not None:
            return Cta(text=row.text.strip(), url=row.url.strip())

        text = (tenant.cta_text or "").strip()
        url = (tenant.cta_url or "").strip()
        if text and is_valid_url(url):
            return Cta(text=text, url=url)
        return None
