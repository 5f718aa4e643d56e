"""
chatcore.config.integrations – operator notification relay and Meta CAPI.

Env vars: NOTIFY_WEBHOOK_URL, NOTIFY_WEBHOOK_TOKEN, NOTIFY_TIMEOUT,
META_GRAPH_VERSION, META_CAPI_TIMEOUT,
WHATSAPP_ACCESS_TOKEN, WHATSAPP_PHONE_NUMBER_ID, WHATSAPP_GRAPH_VERSION.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from chatcore.core.exceptions import ConfigurationError


def _float_env(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", cause=exc) from exc


@dataclass(frozen=True)
class NotifierConfig:
    """
    Relay that turns ``{"kind": "sms"|"email", ...}`` payloads into real
    SMS/e-mail. Notifications are disabled when no URL is configured.
    """

    webhook_url: Optional[str] = None
    token: Optional[str] = None
    timeout: float = 5.0

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    @classmethod
    def from_env(cls) -> "NotifierConfig":
        url = (os.environ.get("NOTIFY_WEBHOOK_URL") or "").strip() or None
        if url and not url.startswith(("http://", "https://")):
            raise ConfigurationError("NOTIFY_WEBHOOK_URL must be an http(s) URL")
        return cls(
            webhook_url=url,
            token=os.environ.get("NOTIFY_WEBHOOK_TOKEN") or None,
            timeout=_float_env("NOTIFY_TIMEOUT", "5"),
        )


@dataclass(frozen=True)
class MetaCapiConfig:
    """Graph API settings; per-tenant pixel id and token live in tenant settings."""

    graph_version: str = "v19.0"
    base_url: str = "https://graph.facebook.com"
    timeout: float = 8.0

    def events_url(self, pixel_id: str) -> str:
        return f"{self.base_url}/{self.graph_version}/{pixel_id}/events"

    @classmethod
    def from_env(cls) -> "MetaCapiConfig":
        return cls(
            graph_version=os.environ.get("META_GRAPH_VERSION", "v19.0"),
            timeout=_float_env("META_CAPI_TIMEOUT", "8"),
        )


@dataclass(frozen=True)
class WhatsAppConfig:
    """Meta Cloud API credentials for the outbound WhatsApp sender."""

    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    graph_version: str = "v21.0"
    timeout: float = 15.0

    @property
    def enabled(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    @classmethod
    def from_env(cls) -> "WhatsAppConfig":
        return cls(
            access_token=os.environ.get("WHATSAPP_ACCESS_TOKEN") or None,
            phone_number_id=os.environ.get("WHATSAPP_PHONE_NUMBER_ID") or None,
            graph_version=os.environ.get("WHATSAPP_GRAPH_VERSION", "v21.0"),
            timeout=_float_env("WHATSAPP_TIMEOUT", "15"),
        )


def load_notifier_config() -> NotifierConfig:
    return NotifierConfig.from_env()


def load_meta_capi_config() -> MetaCapiConfig:
    return MetaCapiConfig.from_env()


def load_whatsapp_config() -> WhatsAppConfig:
    return WhatsAppConfig.from_env()
