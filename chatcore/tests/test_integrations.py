"""Tests for the HTTP integrations using httpx.MockTransport."""
from __future__ import annotations

import asyncio
import json
import unittest
from datetime import datetime, timezone

import httpx

from chatcore.config import MetaCapiConfig, NotifierConfig, WhatsAppConfig
from chatcore.core.exceptions import ExternalServiceError
from chatcore.integrations.meta_capi import MetaCapiSink, pixel_settings
from chatcore.integrations.notifier import WebhookNotifier, build_payloads
from chatcore.integrations.whatsapp import WhatsAppCloudSender
from chatcore.orchestrator.ports import AnalyticsEvent, NotificationRequest
from chatcore.orchestrator.types import Tenant

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


def _recording_transport(status: int = 200, body=None):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status, json=body or {})

    return httpx.MockTransport(handler), requests


# ─── Meta CAPI ───────────────────────────────────────────────────────────────

class TestMetaCapiSink(unittest.TestCase):
    TENANT = Tenant(
        id="t1",
        settings={"meta": {"pixel_enabled": True, "pixel_id": "px1", "capi_token": "tok"}},
    )
    EVENT = AnalyticsEvent(
        event_name="Lead",
        event_id="leadstrong:t1:abc:b7:2880",
        event_time=NOW,
        contact_hash="abc",
        user_data={"external_id": "e", "ph": "p"},
        custom_data={"intent": "agendar"},
    )

    def test_pixel_settings(self):
        self.assertEqual(pixel_settings(self.TENANT), ("px1", "tok"))
        self.assertIsNone(pixel_settings(Tenant(id="t2")))
        self.assertIsNone(pixel_settings(Tenant(id="t3", settings={"meta": {"pixel_enabled": True}})))

    def test_posts_event(self):
        transport, requests = _recording_transport()
        sink = MetaCapiSink(MetaCapiConfig(), transport=transport)

        self.assertTrue(_run(sink.send_event(self.TENANT, "whatsapp", self.EVENT)))

        request = requests[0]
        self.assertEqual(request.url.path, "/v19.0/px1/events")
        self.assertEqual(request.url.params["access_token"], "tok")
        data = json.loads(request.content)["data"][0]
        self.assertEqual(data["event_id"], self.EVENT.event_id)
        self.assertEqual(data["event_time"], int(NOW.timestamp()))
        self.assertEqual(data["custom_data"], {"channel": "whatsapp", "intent": "agendar"})

    def test_rejected_event(self):
        transport, _ = _recording_transport(status=400, body={"error": "bad"})
        sink = MetaCapiSink(MetaCapiConfig(), transport=transport)
        self.assertFalse(_run(sink.send_event(self.TENANT, "whatsapp", self.EVENT)))

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        sink = MetaCapiSink(MetaCapiConfig(), transport=httpx.MockTransport(handler))
        self.assertFalse(_run(sink.send_event(self.TENANT, "whatsapp", self.EVENT)))

    def test_tenant_without_pixel_is_skipped(self):
        transport, requests = _recording_transport()
        sink = MetaCapiSink(MetaCapiConfig(), transport=transport)
        self.assertFalse(_run(sink.send_event(Tenant(id="t2"), "whatsapp", self.EVENT)))
        self.assertEqual(requests, [])


# ─── notifier ────────────────────────────────────────────────────────────────

class TestWebhookNotifier(unittest.TestCase):
    REQUEST = NotificationRequest(
        tenant_id="t1",
        canal="whatsapp",
        contact="+15550001111",
        reason="pago_confirmado_por_usuario",
        source="payment_guard",
        message_id="wamid.1",
        snippet="ya pague",
        full_text="ya pague",
        until=NOW,
        minutes=5,
        tenant_name="Studio Uno",
        phone="+15559990000",
        email="owner@studio.example.com",
    )

    def test_payloads(self):
        payloads = build_payloads(self.REQUEST)
        self.assertEqual([p["kind"] for p in payloads], ["sms", "email"])
        self.assertIn("[Studio Uno]", payloads[0]["body"])
        self.assertIn("Message id: wamid.1", payloads[1]["body"])

    def test_posts_each_payload_with_token(self):
        transport, requests = _recording_transport()
        notifier = WebhookNotifier(
            NotifierConfig(webhook_url="https://relay.example.com/notify", token="s3cret"),
            transport=transport,
        )
        _run(notifier.notify(self.REQUEST))

        self.assertEqual(len(requests), 2)
        self.assertEqual(requests[0].headers["Authorization"], "Bearer s3cret")
        self.assertEqual(json.loads(requests[1].content)["to"], "owner@studio.example.com")

    def test_relay_failure_raises(self):
        transport, _ = _recording_transport(status=500)
        notifier = WebhookNotifier(NotifierConfig(webhook_url="https://relay.example.com/notify"), transport=transport)
        with self.assertRaises(ExternalServiceError):
            _run(notifier.notify(self.REQUEST))

    def test_disabled_does_nothing(self):
        transport, requests = _recording_transport()
        _run(WebhookNotifier(NotifierConfig(), transport=transport).notify(self.REQUEST))
        self.assertEqual(requests, [])


# ─── WhatsApp ────────────────────────────────────────────────────────────────

class TestWhatsAppCloudSender(unittest.TestCase):
    CONFIG = WhatsAppConfig(access_token="tok", phone_number_id="123")

    def test_sends_text(self):
        transport, requests = _recording_transport()
        sender = WhatsAppCloudSender(self.CONFIG, transport=transport)

        self.assertTrue(_run(sender.send("t1", "whatsapp", "15550001111", "hola")))

        request = requests[0]
        self.assertEqual(request.url.path, "/v21.0/123/messages")
        self.assertEqual(request.headers["Authorization"], "Bearer tok")
        self.assertEqual(json.loads(request.content)["text"], {"body": "hola"})

    def test_long_text_is_chunked(self):
        transport, requests = _recording_transport()
        sender = WhatsAppCloudSender(self.CONFIG, transport=transport)
        self.assertTrue(_run(sender.send("t1", "whatsapp", "1555", "x" * 5000)))
        self.assertEqual(len(requests), 2)

    def test_error_status(self):
        transport, _ = _recording_transport(status=401)
        sender = WhatsAppCloudSender(self.CONFIG, transport=transport)
        self.assertFalse(_run(sender.send("t1", "whatsapp", "1555", "hola")))


if __name__ == "__main__":
    unittest.main()
