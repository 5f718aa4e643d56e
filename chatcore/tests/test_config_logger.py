"""Tests for configuration loading, logging setup and the error hierarchy."""
from __future__ import annotations

import json
import logging
import os
import unittest
from unittest.mock import patch

from chatcore.config import LLMConfig, NotifierConfig, PostgresConfig, load_postgres_config
from chatcore.core.exceptions import (
    ChatcoreError,
    ConfigurationError,
    NotFoundError,
    PersistenceError,
)
from chatcore.core.logger import JsonFormatter, LoggerConfig, PlainConsoleFormatter, TurnLoggerAdapter, configure
from chatcore.orchestrator.types import OrchestratorConfig
from chatcore.services import store_kind_from_env


class TestOrchestratorConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = OrchestratorConfig()
        self.assertEqual(cfg.intent_min_score, 0.55)
        self.assertEqual(cfg.direct_override_min_score, 0.85)
        self.assertEqual(cfg.human_override_minutes, 5)
        self.assertEqual(cfg.awaiting_ttl_minutes, 45)
        self.assertEqual(cfg.supported_channels, ["whatsapp", "facebook", "instagram"])

    def test_from_dict_coerces_and_ignores_unknown(self):
        cfg = OrchestratorConfig.from_dict({
            "intent_min_score": "0.6",
            "human_override_minutes": "10",
            "serialize_turns": "false",
            "external_timeout_seconds": None,
            "whatever": 1,
        })
        self.assertEqual(cfg.intent_min_score, 0.6)
        self.assertEqual(cfg.human_override_minutes, 10)
        self.assertFalse(cfg.serialize_turns)
        self.assertIsNone(cfg.external_timeout_seconds)

    def test_round_trip(self):
        cfg = OrchestratorConfig(multi_intent_max=2)
        self.assertEqual(OrchestratorConfig.from_dict(cfg.to_dict()), cfg)

    def test_invalid_values(self):
        with self.assertRaises(ConfigurationError):
            OrchestratorConfig(direct_override_min_score=0.4)
        with self.assertRaises(ConfigurationError):
            OrchestratorConfig(followup_min_wait_minutes=2000)
        with self.assertRaises(ConfigurationError):
            OrchestratorConfig.from_dict({"awaiting_ttl_minutes": "soon"})

    @patch.dict(os.environ, {
        "CHATCORE_SUPPORTED_CHANNELS": "whatsapp, instagram",
        "CHATCORE_AWAITING_TTL_MINUTES": "30",
    })
    def test_from_env(self):
        cfg = OrchestratorConfig.from_env()
        self.assertEqual(cfg.supported_channels, ["whatsapp", "instagram"])
        self.assertEqual(cfg.awaiting_ttl_minutes, 30)


class TestIntegrationConfig(unittest.TestCase):
    @patch.dict(os.environ, {"DATABASE_URL": "postgres://u:p@db/chat"})
    def test_postgres_async_url(self):
        self.assertEqual(load_postgres_config().async_url, "postgresql+asyncpg://u:p@db/chat")

    def test_postgres_rejects_other_schemes(self):
        with self.assertRaises(ConfigurationError):
            PostgresConfig(url="mysql://db/chat")

    @patch.dict(os.environ, {"NOTIFY_WEBHOOK_URL": "ftp://relay"})
    def test_notifier_url_must_be_http(self):
        with self.assertRaises(ConfigurationError):
            NotifierConfig.from_env()

    @patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test", "LLM_MODEL": "gpt-4o"})
    def test_llm_config_hides_key(self):
        cfg = LLMConfig.from_env()
        self.assertTrue(cfg.enabled)
        self.assertNotIn("api_key", cfg.to_dict())

    @patch.dict(os.environ, {"CHATCORE_STORE": "Memory"})
    def test_store_kind(self):
        self.assertEqual(store_kind_from_env(), "memory")

    @patch.dict(os.environ, {"CHATCORE_STORE": "redis"})
    def test_unknown_store_kind(self):
        with self.assertRaises(ConfigurationError):
            store_kind_from_env()


class TestErrors(unittest.TestCase):
    def test_status_and_dict(self):
        err = NotFoundError("Tenant x not found", details={"tenant_id": "x"})
        self.assertEqual(err.http_status, 404)
        self.assertEqual(err.to_dict(), {
            "code": err.code,
            "message": "Tenant x not found",
            "details": {"tenant_id": "x"},
        })
        self.assertEqual(PersistenceError("db").http_status, 503)

    def test_cause_is_chained(self):
        cause = ValueError("bad")
        err = ConfigurationError("wrapped", cause=cause)
        self.assertIsInstance(err, ChatcoreError)
        self.assertIs(err.__cause__, cause)
        self.assertIn("ValueError: bad", err.to_dict(include_cause=True)["cause"])


class TestLogger(unittest.TestCase):
    def tearDown(self) -> None:
        logging.getLogger("chatcore-test").handlers.clear()

    def test_adapter_fields_reach_json(self):
        record_logger = logging.getLogger("chatcore-test.turn")
        adapter = TurnLoggerAdapter(record_logger, tenant_id="t1", canal="whatsapp", contact="+1", message_id="m1")
        msg, kwargs = adapter.process("hello", {"extra": {"gate": "payment_guard"}})

        record = record_logger.makeRecord(
            record_logger.name, logging.INFO, __file__, 1, msg, (), None, extra=kwargs["extra"]
        )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "hello")
        self.assertEqual(payload["extra"]["tenant_id"], "t1")
        self.assertEqual(payload["extra"]["gate"], "payment_guard")

    def test_plain_formatter_appends_turn_key(self):
        record = logging.LogRecord("chatcore", logging.INFO, __file__, 1, "sent", (), None)
        record.tenant_id, record.canal, record.contact = "t1", "whatsapp", "+1"
        self.assertTrue(PlainConsoleFormatter().format(record).endswith("[t1/whatsapp/+1]"))

    def test_configure_replaces_handlers(self):
        config = LoggerConfig(level="DEBUG", console_format="json", root_name="chatcore-test")
        configure(config)
        configure(config)
        root = logging.getLogger("chatcore-test")
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)
        self.assertEqual(root.level, logging.DEBUG)
        self.assertFalse(root.propagate)

    @patch.dict(os.environ, {"LOG_FORMAT": "xml", "LOG_LEVEL": "warning"})
    def test_config_from_env(self):
        cfg = LoggerConfig.from_env()
        self.assertEqual(cfg.console_format, "plain")
        self.assertEqual(cfg.level, "WARNING")


if __name__ == "__main__":
    unittest.main()
