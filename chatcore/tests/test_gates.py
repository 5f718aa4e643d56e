"""Unit tests for the turn gates against the in-memory store."""
from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from chatcore.core.exceptions import PersistenceError
from chatcore.infra.memory import InMemoryStore
from chatcore.orchestrator.gates.awaiting_field import AwaitingFieldGate, validate
from chatcore.orchestrator.gates.human_override import HumanOverrideGate, is_resume_phrase
from chatcore.orchestrator.gates.human_request import HumanRequestGate, asks_for_human
from chatcore.orchestrator.gates.payment import (
    ESTADO_AWAITING_PAYMENT,
    ESTADO_CONFIRMING_PAYMENT,
    PaymentGuardGate,
    is_payment_confirmation,
)
from chatcore.orchestrator.gates.yes_no import YesNoGate, parse_yes_no
from chatcore.orchestrator.override import HumanOverride
from chatcore.orchestrator.types import (
    AwaitingKind,
    Continue,
    ConversationContext,
    ConversationState,
    OrchestratorConfig,
    Reply,
    Silence,
    Tenant,
    Transition,
    TurnContext,
    TurnEvent,
)

T0 = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)
CONTACT = "+15550001111"
KEY = ("t1", "whatsapp", CONTACT)


def _run(coro):
    return asyncio.run(coro)


def _tenant(**kwargs) -> Tenant:
    defaults = {"id": "t1", "name": "Studio Uno", "notify_phone": "+15559990000"}
    defaults.update(kwargs)
    return Tenant(**defaults)


def _event(text: str, *, now: datetime = T0, state: ConversationState | None = None,
           tenant: Tenant | None = None, prompt: str = "") -> TurnEvent:
    turn = TurnContext(
        tenant=tenant or _tenant(),
        canal="whatsapp",
        contact=CONTACT,
        text=text,
        message_id="wamid.1",
        prompt=prompt,
    )
    return TurnEvent(turn=turn, state=state or ConversationState(), lang="es", now=now)


# ─── human override ──────────────────────────────────────────────────────────

class TestHumanOverrideGate(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.config = OrchestratorConfig()
        self.notifier = AsyncMock()
        self.override = HumanOverride(self.store, self.notifier, self.config)
        self.gate = HumanOverrideGate(self.store)

    def _activate(self, minutes: int) -> None:
        _run(self.override.activate(
            tenant=_tenant(), canal="whatsapp", contact=CONTACT, now=T0,
            reason="test", source="test", minutes=minutes,
        ))

    def test_no_record_continues(self):
        self.assertIsInstance(_run(self.gate.check(_event("hola"))), Continue)

    def test_silences_one_second_before_expiry(self):
        self._activate(5)
        result = _run(self.gate.check(_event("hola", now=T0 + timedelta(minutes=5, seconds=-1))))
        self.assertEqual(result, Silence("human_override"))

    def test_lapsed_one_second_after_expiry_clears_flag(self):
        self._activate(5)
        result = _run(self.gate.check(_event("hola", now=T0 + timedelta(minutes=5, seconds=1))))

        self.assertNotIsInstance(result, (Silence, Reply))
        self.assertIsInstance(result, Transition)
        self.assertIn("human_handoff", result.transition.patch)
        self.assertIsNone(result.transition.patch["human_handoff"])
        self.assertFalse(self.store.clients[KEY].human_override)
        self.assertIsNone(self.store.clients[KEY].human_override_until)

    def test_resume_phrase_clears_active_override(self):
        self._activate(5)
        result = _run(self.gate.check(_event("Volver al bot!", now=T0 + timedelta(minutes=1))))
        self.assertIsInstance(result, Transition)
        self.assertFalse(self.store.clients[KEY].human_override)

    def test_resume_phrases(self):
        self.assertTrue(is_resume_phrase("continuar"))
        self.assertTrue(is_resume_phrase("  Reactivar bot. "))
        self.assertFalse(is_resume_phrase("quiero continuar con el pago"))

    def test_read_failure_continues(self):
        clients = AsyncMock()
        clients.get_client.side_effect = PersistenceError("db down")
        result = _run(HumanOverrideGate(clients).check(_event("hola")))
        self.assertIsInstance(result, Continue)


class TestHumanOverrideActivation(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.notifier = AsyncMock()
        self.override = HumanOverride(self.store, self.notifier, OrchestratorConfig())

    def _activate(self, now: datetime, **kwargs):
        return _run(self.override.activate(
            tenant=_tenant(), canal="whatsapp", contact=CONTACT, now=now,
            reason="r", source="s", user_text="x" * 500, **kwargs,
        ))

    def test_first_activation_notifies_once(self):
        first = self._activate(T0)
        second = self._activate(T0 + timedelta(minutes=2))

        self.assertTrue(first.activated_now)
        self.assertFalse(second.activated_now)
        self.assertTrue(second.was_active)
        self.assertEqual(second.until, T0 + timedelta(minutes=7))
        self.notifier.notify.assert_awaited_once()
        request = self.notifier.notify.await_args.args[0]
        self.assertLessEqual(len(request.snippet), 240)
        self.assertEqual(request.phone, "+15559990000")

    def test_reactivation_after_lapse_notifies_again(self):
        self._activate(T0, minutes=1)
        again = self._activate(T0 + timedelta(minutes=3), minutes=1)
        self.assertTrue(again.activated_now)
        self.assertEqual(self.notifier.notify.await_count, 2)

    def test_notifier_failure_is_swallowed(self):
        self.notifier.notify.side_effect = RuntimeError("relay down")
        activation = self._activate(T0)
        self.assertTrue(activation.activated_now)
        self.assertTrue(self.store.clients[KEY].human_override)

    def test_tenant_without_contacts_is_not_notified(self):
        _run(self.override.activate(
            tenant=_tenant(notify_phone=None), canal="whatsapp", contact=CONTACT,
            now=T0, reason="r", source="s",
        ))
        self.notifier.notify.assert_not_awaited()


# ─── human request ───────────────────────────────────────────────────────────

class TestHumanRequestGate(unittest.TestCase):
    def test_detects_explicit_requests(self):
        self.assertTrue(asks_for_human("Quiero hablar con una persona"))
        self.assertTrue(asks_for_human("can I talk to a real person?"))
        self.assertFalse(asks_for_human("gracias"))
        self.assertFalse(asks_for_human("cuanto cuesta la clase"))

    def test_declined_requests_do_not_escalate(self):
        self.assertFalse(asks_for_human("no quiero hablar con un humano"))
        self.assertFalse(asks_for_human("No necesito un asesor, gracias"))
        self.assertFalse(asks_for_human("I don't want a human"))
        self.assertFalse(asks_for_human("I don’t need an agent"))
        self.assertTrue(asks_for_human("no, quiero hablar con una persona"))

    def test_declined_request_keeps_the_bot_answering(self):
        store = InMemoryStore()
        gate = HumanRequestGate(HumanOverride(store, None, OrchestratorConfig()))

        result = _run(gate.check(_event("no quiero hablar con un humano")))

        self.assertIsInstance(result, Continue)
        self.assertNotIn(KEY, store.clients)

    def test_request_activates_override_and_replies(self):
        store = InMemoryStore()
        gate = HumanRequestGate(HumanOverride(store, None, OrchestratorConfig()))

        result = _run(gate.check(_event("necesito hablar con un asesor")))

        self.assertIsInstance(result, Reply)
        self.assertEqual(result.facts["EVENT"], "HUMAN_HANDOFF_REQUESTED")
        self.assertTrue(store.clients[KEY].human_override)
        self.assertEqual(store.clients[KEY].human_override_until, T0 + timedelta(minutes=5))


# ─── payment guard ───────────────────────────────────────────────────────────

class TestPaymentGuardGate(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.notifier = AsyncMock()
        config = OrchestratorConfig()
        self.gate = PaymentGuardGate(self.store, HumanOverride(self.store, self.notifier, config), config)

    def test_confirmation_phrases(self):
        self.assertTrue(is_payment_confirmation("ya pague"))
        self.assertTrue(is_payment_confirmation("Listo, pago realizado"))
        self.assertFalse(is_payment_confirmation("no he pagado"))
        self.assertFalse(is_payment_confirmation("aun no pague"))

    def test_english_negations_are_not_confirmations(self):
        self.assertTrue(is_payment_confirmation("I paid, payment done"))
        for text in ("I haven't paid yet", "I didn't pay", "havent paid", "not yet paid",
                     "I have not paid", "I did not pay yet, when is it paid?", "I'm yet to get it paid"):
            self.assertFalse(is_payment_confirmation(text), text)

    def test_english_negation_keeps_the_bot_answering(self):
        result = _run(self.gate.check(_event("I haven't paid yet, can you send the link?")))
        self.assertNotIsInstance(result, Reply)
        record = self.store.clients.get(KEY)
        self.assertFalse(record and record.human_override)

    def test_confirmation_sets_estado_and_activates_override(self):
        result = _run(self.gate.check(_event("ya pague")))

        self.assertIsInstance(result, Reply)
        self.assertEqual(result.facts["EVENT"], "PAYMENT_CONFIRMED_BY_USER")
        self.assertIsNone(result.text)
        record = self.store.clients[KEY]
        self.assertEqual(record.estado, ESTADO_CONFIRMING_PAYMENT)
        self.assertTrue(record.human_override)
        self.assertEqual(record.human_override_until, T0 + timedelta(minutes=5))
        self.notifier.notify.assert_awaited_once()

    def test_negated_confirmation_does_not_match(self):
        result = _run(self.gate.check(_event("no he pagado todavia")))
        self.assertIsInstance(result, Continue)
        self.assertNotIn(KEY, self.store.clients)

    def test_silent_while_confirming(self):
        _run(self.store.set_estado(*KEY, ESTADO_CONFIRMING_PAYMENT))
        self.assertEqual(_run(self.gate.check(_event("hola?"))), Silence("payment_in_confirmation"))

    def test_link_request_while_awaiting_payment(self):
        _run(self.store.set_estado(*KEY, ESTADO_AWAITING_PAYMENT))
        prompt = "Planes...\nLINK_PAGO: https://pay.example.com/abc.\n"

        result = _run(self.gate.check(_event("me pasas el link?", prompt=prompt)))

        self.assertEqual(result.source, "pago-link")
        self.assertEqual(result.facts["PAYMENT_LINK"], "https://pay.example.com/abc")

    def test_link_request_without_link(self):
        _run(self.store.set_estado(*KEY, ESTADO_AWAITING_PAYMENT))
        result = _run(self.gate.check(_event("el enlace por favor")))
        self.assertEqual(result.source, "pago-link-missing")
        self.assertFalse(result.facts["PAYMENT_LINK_AVAILABLE"])

    def test_customer_details_move_to_awaiting_payment(self):
        text = "Ana Gomez ana@example.com +1 555 123 4567 Mexico"
        result = _run(self.gate.check(_event(text, prompt="LINK_PAGO: https://pay.example.com/x")))

        self.assertEqual(result.source, "pago-datos")
        self.assertEqual(result.transition.step, "details")
        record = self.store.clients[KEY]
        self.assertEqual(record.estado, ESTADO_AWAITING_PAYMENT)
        self.assertEqual(record.email, "ana@example.com")
        self.assertEqual(record.nombre, "Ana Gomez")


# ─── awaiting field ──────────────────────────────────────────────────────────

class TestAwaitingFieldGate(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.gate = AwaitingFieldGate(self.store, OrchestratorConfig())

    def _await(self, field_name: str, age: timedelta, payload=None) -> None:
        _run(self.store.set_awaiting(*KEY, field_name=field_name, payload=payload or {}, at=T0 - age))

    def test_expired_after_45_minutes_is_absent(self):
        self._await("email", timedelta(minutes=45))
        result = _run(self.gate.check(_event("no se")))
        self.assertIsInstance(result, Continue)
        self.assertIsNone(self.store.clients[KEY].awaiting_field)

    def test_fresh_state_still_gates(self):
        self._await("email", timedelta(minutes=1))
        result = _run(self.gate.check(_event("no se")))
        self.assertIsInstance(result, Reply)
        self.assertEqual(result.facts["EVENT"], "AWAITING_FIELD_INVALID")
        self.assertEqual(self.store.clients[KEY].awaiting_field, "email")

    def test_valid_value_is_captured_and_cleared_declaratively(self):
        self._await("email", timedelta(minutes=1), payload={"next_step": "confirm", "next_patch": {"k": 1}})
        result = _run(self.gate.check(_event("mi correo es Ana@Example.com")))

        self.assertIsInstance(result, Transition)
        transition = result.transition
        self.assertEqual(transition.patch["captured"], {"email": "ana@example.com"})
        self.assertEqual(transition.patch["k"], 1)
        self.assertEqual(transition.step, "confirm")
        self.assertTrue(transition.awaiting.clears)
        self.assertEqual(self.store.clients[KEY].email, "ana@example.com")
        # cleared by the finalizer only after a successful send
        self.assertEqual(self.store.clients[KEY].awaiting_field, "email")

    def test_empty_message_is_silenced(self):
        self._await("phone", timedelta(minutes=1))
        self.assertEqual(_run(self.gate.check(_event("   "))), Silence("awaiting_field_but_empty"))

    def test_escape_phrase_clears(self):
        self._await("phone", timedelta(minutes=1))
        result = _run(self.gate.check(_event("Cancelar")))
        self.assertIsInstance(result, Transition)
        self.assertEqual(result.transition.patch, {"awaiting_cancelled": "phone"})
        self.assertIsNone(self.store.clients[KEY].awaiting_field)

    def test_validators(self):
        self.assertEqual(validate(AwaitingKind.PHONE, "+1 (555) 123-4567"), "+15551234567")
        self.assertIsNone(validate(AwaitingKind.PHONE, "12345"))
        self.assertEqual(validate(AwaitingKind.NAME, "me llamo Lucia"), "Lucia")
        self.assertIsNone(validate(AwaitingKind.NAME, "5551234567"))
        self.assertEqual(validate(AwaitingKind.CHANNEL, "por Instagram"), "instagram")
        self.assertEqual(validate(AwaitingKind.CODE, "codigo 12-34"), "1234")
        self.assertEqual(validate(AwaitingKind.CUSTOM, " lo que sea "), "lo que sea")


# ─── yes / no ────────────────────────────────────────────────────────────────

class TestYesNoGate(unittest.TestCase):
    def _state(self, **ctx) -> ConversationState:
        return ConversationState(
            active_flow="generic_sales",
            active_step="ask",
            context=ConversationContext(awaiting_yesno=True, yesno_context="want_trial", **ctx),
        )

    def test_parse(self):
        self.assertTrue(parse_yes_no("Sí, claro"))
        self.assertFalse(parse_yes_no("no gracias"))
        self.assertIsNone(parse_yes_no("tal vez"))
        self.assertIsNone(parse_yes_no(""))

    def test_single_letters_only_answer_alone(self):
        self.assertTrue(parse_yes_no("y"))
        self.assertFalse(parse_yes_no("n"))
        self.assertIsNone(parse_yes_no("y donde estan?"))
        self.assertIsNone(parse_yes_no("va a haber clase?"))

        result = _run(YesNoGate().check(_event("y donde estan?", state=self._state())))
        self.assertEqual(result.facts["EVENT"], "YESNO_REQUIRED")

    def test_not_waiting_continues(self):
        self.assertIsInstance(_run(YesNoGate().check(_event("si"))), Continue)

    def test_unknown_answer_asks_again(self):
        result = _run(YesNoGate().check(_event("mmm depende", state=self._state())))
        self.assertEqual(result.facts["EVENT"], "YESNO_REQUIRED")
        self.assertIsNone(result.transition)

    def test_empty_answer_is_silenced(self):
        result = _run(YesNoGate().check(_event("", state=self._state())))
        self.assertEqual(result, Silence("awaiting_yesno_but_empty"))

    def test_yes_applies_handler(self):
        state = self._state(on_yes={"flow": "trial", "step": "pick_day", "patch": {"trial": True}})
        result = _run(YesNoGate().check(_event("si", state=state)))

        self.assertEqual(result.facts["EVENT"], "YESNO_RECEIVED")
        self.assertEqual(result.transition.flow, "trial")
        self.assertEqual(result.transition.step, "pick_day")
        self.assertTrue(result.transition.patch["trial"])
        self.assertIsNone(result.transition.patch["awaiting_yesno"])

    def test_answer_without_handler_acknowledges(self):
        result = _run(YesNoGate().check(_event("no", state=self._state())))
        self.assertEqual(result.facts["EVENT"], "YESNO_RECEIVED_NO_HANDLER")
        self.assertEqual(result.facts["ANSWER"], "no")
        self.assertIsNone(result.transition.patch["on_yes"])


if __name__ == "__main__":
    unittest.main()
