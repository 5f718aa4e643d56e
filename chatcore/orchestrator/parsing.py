"""Text helpers shared by gates, classifiers and the finalizer."""
from __future__ import annotations

import re
import unicodedata
from typing import List, Optional
from urllib.parse import urlparse

from chatcore.orchestrator.types import CustomerDetails

EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_RE = re.compile(r"(\+?\d[\d\s().-]{7,}\d)")
URL_RE = re.compile(r"https?://[^\s)]+", re.IGNORECASE)
_PAYMENT_LINK_TAG_RE = re.compile(r"LINK_PAGO:\s*(https?://\S+)", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[),.]+$")


def normalize(text: str) -> str:
    """Lower-case, strip accents, collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped.lower()).strip()


def truncate(text: str, limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


def find_urls(text: str) -> List[str]:
    return [_TRAILING_PUNCT_RE.sub("", m) for m in URL_RE.findall(text or "")]


def is_valid_url(url: Optional[str]) -> bool:
    if not url:
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def extract_payment_link(prompt: str) -> Optional[str]:
    """``LINK_PAGO: <url>`` marker first, then the first URL in the prompt."""
    if not prompt:
        return None
    tagged = _PAYMENT_LINK_TAG_RE.search(prompt)
    if tagged:
        return _TRAILING_PUNCT_RE.sub("", tagged.group(1))
    urls = find_urls(prompt)
    return urls[0] if urls else None


def digits_only(text: str) -> str:
    return re.sub(r"[^\d+]", "", text or "")


def parse_customer_details(text: str) -> Optional[CustomerDetails]:
    """Parse ``Nombre Apellido email teléfono país`` in any order.

    Email and phone are required; the remaining words give the name (first
    two) and the country (the rest).
    """
    raw = (text or "").strip()
    if not raw:
        return None
    email_m = EMAIL_RE.search(raw)
    phone_m = PHONE_RE.search(raw.replace(email_m.group(0), " ") if email_m else raw)
    if not email_m or not phone_m:
        return None
    telefono = digits_only(phone_m.group(0))
    if len(telefono.lstrip("+")) < 8:
        return None

    rest = raw.replace(email_m.group(0), " ").replace(phone_m.group(0), " ")
    words = [w for w in re.split(r"[\s,;]+", rest) if w]
    if len(words) < 3:
        return None
    return CustomerDetails(
        nombre=" ".join(words[:2]),
        email=email_m.group(0).lower(),
        telefono=telefono,
        pais=" ".join(words[2:]) or None,
    )
