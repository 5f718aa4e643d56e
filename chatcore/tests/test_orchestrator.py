"""End-to-end turn tests: TurnOrchestrator and TurnService over the in-memory store."""
from __future__ import annotations

import asyncio
import random
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from chatcore.clients.llm import NoOpLLMClient
from chatcore.core.exceptions import NotFoundError, ValidationError
from chatcore.infra.memory import InMemoryStore
from chatcore.integrations.sender import DedupedSender, RecordingSender
from chatcore.orchestrator.classifiers.intent_classifier import KeywordIntentClassifier
from chatcore.orchestrator.generation import FALLBACK_TEXTS, ReplyGenerator
from chatcore.orchestrator.locks import KeyedLock
from chatcore.orchestrator.orchestrator import TurnOrchestrator
from chatcore.orchestrator.types import FaqEntry, OrchestratorConfig, Tenant, TurnContext
from chatcore.services import InboundMessage, TurnService

T0 = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)
CONTACT = "+15550001111"
KEY = ("t1", "whatsapp", CONTACT)


def _run(coro):
    return asyncio.run(coro)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ─── helpers ─────────────────────────────────────────────────────────────────

class _OrchestratorCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.tenant = self.store.add_tenant(Tenant(
            id="t1",
            name="Studio Uno",
            cta_text="Reserva tu clase",
            cta_url="https://studio.example.com/reservar",
            notify_phone="+15559990000",
            prompt="Eres el asistente de Studio Uno.\nPRECIOS_URL: https://studio.example.com/precios",
        ))
        self.transport = RecordingSender()
        self.clock = FrozenClock(T0)
        self.notifier = AsyncMock()
        self.orchestrator = self._build()

    def _build(self, stores=None, **config) -> TurnOrchestrator:
        stores = stores or self.store.as_stores()
        return TurnOrchestrator(
            stores,
            sender=DedupedSender(self.transport, stores.dedup, stores.usage),
            generator=ReplyGenerator(None),
            classifier=KeywordIntentClassifier(),
            notifier=self.notifier,
            config=OrchestratorConfig(**config),
            clock=self.clock,
            rng=random.Random(3),
        )

    def _turn(self, text: str, message_id: str = "wamid.1") -> TurnContext:
        return TurnContext(
            tenant=self.tenant, canal="whatsapp", contact=CONTACT, text=text,
            message_id=message_id, prompt=self.tenant.prompt,
        )

    def _process(self, text: str, message_id: str = "wamid.1"):
        return _run(self.orchestrator.process(self._turn(text, message_id)))


# ─── turns ───────────────────────────────────────────────────────────────────

class TestDefaultReply(_OrchestratorCase):
    def test_greeting_gets_default_reply(self):
        outcome = self._process("Hola")

        self.assertTrue(outcome.handled)
        self.assertTrue(outcome.sent)
        self.assertEqual(outcome.source, "llm-default")
        self.assertIsNone(outcome.intent)
        self.assertEqual(outcome.reply, FALLBACK_TEXTS["GENERIC"]["es"])
        self.assertEqual([m.to for m in self.transport.sent], [CONTACT])
        self.assertEqual([m.message_id for m in self.store.messages], ["wamid.1-bot"])
        _, _, ctx = self.store.states[KEY]
        self.assertEqual(ctx["last_reply_source"], "llm-default")

    def test_sales_intent_gets_cta_and_followup(self):
        outcome = self._process("cuanto cuesta la clase?")

        self.assertEqual(outcome.intent, "precio")
        self.assertEqual(outcome.nivel, 2)
        self.assertTrue(outcome.reply.endswith("Reserva tu clase: https://studio.example.com/reservar"))
        self.assertIn(("t1", "whatsapp", "wamid.1"), self.store.sales)
        self.assertEqual(len(self.store.pending_followups(*KEY)), 1)

    def test_non_sales_intent_has_no_cta(self):
        outcome = self._process("a que hora abren el sabado?")
        self.assertEqual(outcome.intent, "horario")
        self.assertNotIn("https://studio.example.com/reservar", outcome.reply)

    def test_multi_intent_uses_faq_answers(self):
        self.store.add_faq("t1", FaqEntry("precio", "La clase cuesta 30 USD."))
        self.store.add_faq("t1", FaqEntry("ubicacion", "Estamos en Av. Central 123."))

        outcome = self._process("cuánto cuesta y dónde están ubicados")

        self.assertEqual(outcome.source, "multi-intent")
        self.assertIn("La clase cuesta 30 USD.", outcome.reply)
        self.assertIn("https://studio.example.com/precios", outcome.reply)
        # pricing turns leave memory alone
        self.assertEqual(self.store.memory, {})

    def test_thread_language_is_kept(self):
        _run(self.store.set_state(*KEY, flow=None, step=None, context={"thread_lang": "en"}))
        outcome = self._process("hola, necesito información por favor")
        self.assertEqual(outcome.lang, "en")
        self.assertEqual(outcome.reply, FALLBACK_TEXTS["GENERIC"]["en"])


class TestSilence(_OrchestratorCase):
    def test_empty_message_without_pending_state(self):
        outcome = self._process("   ")
        self.assertFalse(outcome.handled)
        self.assertEqual(outcome.silence_reason, "empty_message")
        self.assertEqual(self.transport.sent, [])

    def test_active_override_silences_and_persists_nothing(self):
        _run(self.store.set_human_override(*KEY, until=T0 + timedelta(minutes=5)))
        outcome = self._process("hola?")
        self.assertEqual(outcome.silence_reason, "human_override")
        self.assertEqual(self.transport.sent, [])
        self.assertEqual(self.store.states, {})
        self.assertEqual(self.store.messages, [])

    def test_lapsed_override_answers_again(self):
        _run(self.store.set_human_override(*KEY, until=T0 - timedelta(seconds=1)))
        outcome = self._process("hola?")
        self.assertTrue(outcome.sent)
        self.assertFalse(self.store.clients[KEY].human_override)

    def test_unexpected_failure_is_internal_error(self):
        stores = self.store.as_stores()
        stores.states = AsyncMock()
        stores.states.get_state.side_effect = RuntimeError("boom")
        outcome = _run(self._build(stores).process(self._turn("hola")))

        self.assertFalse(outcome.handled)
        self.assertEqual(outcome.silence_reason, "internal_error")
        self.assertEqual(self.transport.sent, [])


class TestGateScenarios(_OrchestratorCase):
    def test_payment_confirmation_then_silence(self):
        first = self._process("ya pague", "wamid.1")

        self.assertTrue(first.sent)
        self.assertEqual(first.source, "pago-confirm")
        self.assertEqual(first.reply, FALLBACK_TEXTS["PAYMENT_CONFIRMED_BY_USER"]["es"])
        self.assertEqual(first.facts["EVENT"], "PAYMENT_CONFIRMED_BY_USER")
        self.notifier.notify.assert_awaited_once()

        self.clock.advance(minutes=2)
        second = self._process("hola? ya quedó?", "wamid.2")

        self.assertFalse(second.handled)
        self.assertEqual(len(self.transport.sent), 1)

    def test_human_request_hands_off(self):
        outcome = self._process("quiero hablar con una persona")
        self.assertEqual(outcome.source, "human-handoff")
        self.assertTrue(self.store.clients[KEY].human_override)
        _, _, ctx = self.store.states[KEY]
        self.assertTrue(ctx["human_handoff"])

    def test_awaiting_email_is_captured(self):
        _run(self.store.set_awaiting(*KEY, field_name="email", payload={"next_step": "confirm"}, at=T0))
        self.clock.advance(minutes=1)

        outcome = self._process("ana@example.com")

        self.assertTrue(outcome.sent)
        record = self.store.clients[KEY]
        self.assertEqual(record.email, "ana@example.com")
        self.assertIsNone(record.awaiting_field)
        _, step, ctx = self.store.states[KEY]
        self.assertEqual(step, "confirm")
        self.assertEqual(ctx["captured"], {"email": "ana@example.com"})

    def test_empty_message_while_awaiting_is_silenced(self):
        _run(self.store.set_awaiting(*KEY, field_name="email", payload={}, at=T0))
        outcome = self._process("")
        self.assertEqual(outcome.silence_reason, "awaiting_field_but_empty")


class TestDelivery(_OrchestratorCase):
    def test_duplicate_delivery_answers_once(self):
        first = self._process("Hola", "wamid.9")
        second = self._process("Hola", "wamid.9")

        self.assertTrue(first.sent)
        self.assertTrue(second.handled)
        self.assertFalse(second.sent)
        self.assertEqual(len(self.transport.sent), 1)
        self.assertEqual(len(self.store.messages), 1)

    def test_concurrent_turns_of_one_contact(self):
        async def both():
            return await asyncio.gather(
                self.orchestrator.process(self._turn("Hola", "a")),
                self.orchestrator.process(self._turn("cuanto cuesta?", "b")),
            )

        outcomes = _run(both())
        self.assertTrue(all(o.sent for o in outcomes))
        self.assertEqual(len(self.transport.sent), 2)
        self.assertEqual(len(self.store.pending_followups(*KEY)), 1)

    def test_storage_error_after_send_still_reports_reply(self):
        stores = self.store.as_stores()
        stores.messages = AsyncMock()
        stores.messages.save_message.side_effect = OSError("connection reset by peer")

        outcome = _run(self._build(stores).process(self._turn("cuanto cuesta la clase?")))

        self.assertTrue(outcome.sent)
        self.assertIsNone(outcome.silence_reason)
        self.assertEqual(len(self.transport.sent), 1)
        self.assertIn(("t1", "whatsapp", "wamid.1"), self.store.sales)

    def test_failed_send_skips_post_reply(self):
        transport = AsyncMock()
        transport.send.return_value = False
        self.transport = transport
        outcome = _run(self._build().process(self._turn("cuanto cuesta la clase?")))

        self.assertTrue(outcome.handled)
        self.assertFalse(outcome.sent)
        self.assertEqual(self.store.sales, {})
        self.assertEqual(self.store.followups, [])
        self.assertEqual(self.store.states, {})


class TestKeyedLock(unittest.TestCase):
    def test_serializes_same_key(self):
        lock = KeyedLock()
        events = []

        async def worker(name):
            async with lock.hold("k"):
                events.append(f"{name}-in")
                await asyncio.sleep(0)
                events.append(f"{name}-out")

        async def main():
            await asyncio.gather(worker("a"), worker("b"))

        _run(main())
        self.assertEqual(events, ["a-in", "a-out", "b-in", "b-out"])
        self.assertEqual(len(lock), 0)


# ─── service ─────────────────────────────────────────────────────────────────

class TestTurnService(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.store.add_tenant(Tenant(id="t1", prompt="Eres el asistente."))
        self.transport = RecordingSender()
        self.service = TurnService.build(
            self.store.as_stores(), sender=self.transport, clock=lambda: T0,
        )

    def test_unknown_tenant(self):
        with self.assertRaises(NotFoundError):
            _run(self.service.handle(InboundMessage(tenant_id="nope", canal="whatsapp", contact=CONTACT)))

    def test_message_without_sender_is_rejected(self):
        with self.assertRaises(ValidationError):
            _run(self.service.handle(InboundMessage(tenant_id="t1", canal="whatsapp", contact="  ")))
        self.assertEqual(self.transport.sent, [])

    def test_handle_and_dispatch(self):
        outcome = _run(self.service.handle(InboundMessage(
            tenant_id="t1", canal="whatsapp", contact=CONTACT, text="cuanto cuesta?", message_id="m1",
        )))
        self.assertTrue(outcome.sent)

        row = self.store.pending_followups(*KEY)[0]
        report = _run(self.service.dispatch_followups(row.fecha_envio))
        self.assertEqual((report.due, report.sent), (1, 1))
        self.assertEqual(self.transport.sent[-1].text, row.contenido)

    def test_noop_llm_is_ignored(self):
        service = TurnService.build(self.store.as_stores(), llm=NoOpLLMClient(), sender=self.transport)
        self.assertEqual(
            service.orchestrator.pipeline.gate_names,
            ["human_override", "human_request", "payment_guard", "awaiting_field", "yes_no"],
        )


if __name__ == "__main__":
    unittest.main()
