"""
chatcore config: frozen dataclasses loaded from the environment.

    load_postgres_config(), load_llm_config(), load_notifier_config(), load_meta_capi_config(),
    load_whatsapp_config()
"""
from chatcore.config.integrations import (
    MetaCapiConfig,
    NotifierConfig,
    WhatsAppConfig,
    load_meta_capi_config,
    load_notifier_config,
    load_whatsapp_config,
)
from chatcore.config.llm import LLMConfig, load_llm_config
from chatcore.config.postgres import PostgresConfig, load_postgres_config

__all__ = [
    "PostgresConfig",
    "load_postgres_config",
    "LLMConfig",
    "load_llm_config",
    "NotifierConfig",
    "load_notifier_config",
    "MetaCapiConfig",
    "load_meta_capi_config",
    "WhatsAppConfig",
    "load_whatsapp_config",
]
