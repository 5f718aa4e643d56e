"""Tests for analytics dedup windows and the post-reply side effects."""
from __future__ import annotations

import asyncio
import random
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from chatcore.infra.memory import InMemoryStore
from chatcore.orchestrator.analytics import (
    ANALYTICS_CANAL,
    WEEK_MS,
    AnalyticsEmitter,
    contact_hash,
    normalize_phone,
    qualified_contact_event_id,
    sha256,
    strong_lead_event_id,
    week_bucket,
)
from chatcore.orchestrator.followup import FollowUpScheduler
from chatcore.orchestrator.post_reply import PostReplyActions
from chatcore.orchestrator.types import ConversationContext, OrchestratorConfig, Tenant, TurnContext

CONTACT = "+15550001111"
T0 = datetime(2025, 3, 5, 15, 0, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


def _bucket_start(now: datetime) -> datetime:
    return datetime.fromtimestamp(week_bucket(now) * WEEK_MS / 1000, tz=timezone.utc)


def _turn(message_id="wamid.1", text="quiero reservar una clase") -> TurnContext:
    return TurnContext(
        tenant=Tenant(id="t1", name="Studio"),
        canal="whatsapp",
        contact=CONTACT,
        text=text,
        message_id=message_id,
    )


# ─── analytics ───────────────────────────────────────────────────────────────

class TestAnalyticsIds(unittest.TestCase):
    def test_normalize_phone(self):
        self.assertEqual(normalize_phone("whatsapp:+1 (555) 000-1111"), "+15550001111")
        self.assertEqual(normalize_phone(None), "")

    def test_sha256_is_trimmed_and_lowercased(self):
        self.assertEqual(sha256("  ABC "), sha256("abc"))

    def test_contact_hash_prefers_from_number(self):
        self.assertEqual(contact_hash("ig-user", "whatsapp:+15550001111"), sha256("+15550001111"))
        self.assertEqual(contact_hash("ig-user"), sha256("ig-user"))

    def test_event_ids(self):
        self.assertEqual(qualified_contact_event_id("t1", "h"), "ql:t1:h")
        self.assertEqual(strong_lead_event_id("t1", "h", T0), f"leadstrong:t1:h:b7:{week_bucket(T0)}")


class TestAnalyticsEmitter(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.sink = AsyncMock()
        self.sink.send_event.return_value = True
        self.emitter = AnalyticsEmitter(self.store, self.sink)
        self.tenant = Tenant(id="t1")

    def _lead(self, now: datetime) -> bool:
        return _run(self.emitter.strong_lead(
            tenant=self.tenant, canal="whatsapp", contact=CONTACT, from_number=None,
            message_id="m", intent="agendar", nivel=3, now=now,
        ))

    def _contact(self, now: datetime = T0) -> bool:
        return _run(self.emitter.qualified_contact(
            tenant=self.tenant, canal="whatsapp", contact=CONTACT, from_number=None,
            message_id="m", intent="precio", nivel=2, now=now,
        ))

    def test_strong_lead_once_per_weekly_bucket(self):
        start = _bucket_start(T0)
        self.assertTrue(self._lead(start + timedelta(hours=1)))
        self.assertFalse(self._lead(start + timedelta(days=6, hours=23)))
        self.assertTrue(self._lead(start + timedelta(days=7)))
        self.assertEqual(self.sink.send_event.await_count, 2)

    def test_qualified_contact_once_forever(self):
        self.assertTrue(self._contact(T0))
        self.assertFalse(self._contact(T0 + timedelta(days=400)))
        event = self.sink.send_event.await_args.args[2]
        self.assertEqual(event.event_name, "Contact")
        self.assertEqual(event.event_id, f"ql:t1:{sha256(CONTACT)}")
        self.assertEqual(event.user_data["ph"], sha256(CONTACT))
        self.assertEqual(event.user_data["external_id"], sha256(f"t1:{CONTACT}"))

    def test_reservation_lives_under_analytics_canal(self):
        self._contact()
        self.assertIn(("t1", ANALYTICS_CANAL, f"ql:t1:{sha256(CONTACT)}"), self.store.reservations)

    def test_undelivered_event_stays_claimed(self):
        event_id = f"ql:t1:{sha256(CONTACT)}"
        self.sink.send_event.return_value = False
        self.assertFalse(self._contact())
        self.assertEqual(self.store.reservations, {
            ("t1", ANALYTICS_CANAL, event_id),
            ("t1", ANALYTICS_CANAL, f"{event_id}:failed"),
        })

        self.sink.send_event.return_value = True
        self.assertFalse(self._contact())
        self.assertEqual(self.sink.send_event.await_count, 1)

    def test_undelivered_strong_lead_is_not_resent_in_same_week(self):
        self.sink.send_event.return_value = False
        self.assertFalse(self._lead(T0))
        self.sink.send_event.return_value = True
        self.assertFalse(self._lead(T0 + timedelta(hours=1)))
        self.assertEqual(self.sink.send_event.await_count, 1)

    def test_sink_exception_is_recorded_as_failure(self):
        self.sink.send_event.side_effect = RuntimeError("graph api down")
        self.assertFalse(self._contact())
        self.assertIn(("t1", ANALYTICS_CANAL, f"ql:t1:{sha256(CONTACT)}:failed"), self.store.reservations)

    def test_disabled_without_sink(self):
        emitter = AnalyticsEmitter(self.store, None)
        self.assertFalse(emitter.enabled)
        self.assertFalse(_run(emitter.qualified_contact(
            tenant=self.tenant, canal="whatsapp", contact=CONTACT, from_number=None,
            message_id="m", intent="precio", nivel=2, now=T0,
        )))
        self.assertEqual(self.store.reservations, set())


# ─── post-reply ──────────────────────────────────────────────────────────────

class TestPostReplyActions(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryStore()
        self.sink = AsyncMock()
        self.sink.send_event.return_value = True
        stores = self.store.as_stores()
        self.actions = PostReplyActions(
            stores,
            AnalyticsEmitter(stores.dedup, self.sink),
            FollowUpScheduler(stores, OrchestratorConfig(), rng=random.Random(7)),
        )

    def _run_actions(self, *, intent, nivel, turn=None, context=None):
        return _run(self.actions.run(
            turn or _turn(), intent=intent, nivel=nivel,
            context=context or ConversationContext(), lang="es", now=T0,
        ))

    def test_no_message_id_does_nothing(self):
        self.assertIsNone(self._run_actions(intent="precio", nivel=3, turn=_turn(message_id=None)))
        self.assertEqual(self.store.sales, {})

    def test_strong_pricing_intent_runs_everything(self):
        report = self._run_actions(intent="precio", nivel=3)

        self.assertEqual(report.done, ["sales_intent", "qualified_contact", "strong_lead", "followup"])
        row = self.store.sales[("t1", "whatsapp", "wamid.1")]
        self.assertEqual((row["intencion"], row["nivel_interes"]), ("precio", 3))
        self.assertEqual(len(self.store.pending_followups("t1", "whatsapp", CONTACT)), 1)

    def test_medium_interest_skips_strong_lead(self):
        report = self._run_actions(intent="precio", nivel=2)
        self.assertEqual(report.done, ["sales_intent", "qualified_contact", "followup"])

    def test_sales_intent_recorded_once_per_message(self):
        self._run_actions(intent="precio", nivel=2)
        report = self._run_actions(intent="precio", nivel=2)
        self.assertNotIn("sales_intent", report.done)
        self.assertEqual(len(self.store.sales), 1)

    def test_nivel_is_clamped(self):
        report = self._run_actions(intent="precio", nivel=9)
        self.assertEqual(report.nivel, 3)
        self.assertEqual(self._run_actions(intent="precio", nivel=None).nivel, 2)

    def test_non_sales_intent_only_schedules_followup(self):
        report = self._run_actions(intent="horario", nivel=2)
        self.assertEqual(report.done, ["followup"])
        self.sink.send_event.assert_not_awaited()

    def test_booking_intent_skips_followup(self):
        report = self._run_actions(intent="agendar", nivel=3)
        self.assertNotIn("followup", report.done)
        self.assertEqual(self.store.followups, [])

    def test_active_booking_skips_followup(self):
        context = ConversationContext(booking={"step": "pick_time"})
        report = self._run_actions(intent="precio", nivel=2, context=context)
        self.assertNotIn("followup", report.done)

    def test_completed_booking_skips_followup(self):
        context = ConversationContext(extra={"booking_completed": True})
        report = self._run_actions(intent="horario", nivel=2, context=context)
        self.assertEqual(report.done, [])

    def test_failing_step_does_not_stop_the_rest(self):
        self.sink.send_event.side_effect = RuntimeError("boom")
        sales = AsyncMock()
        sales.record.side_effect = RuntimeError("db down")
        stores = self.store.as_stores()
        stores.sales = sales
        actions = PostReplyActions(
            stores,
            AnalyticsEmitter(stores.dedup, self.sink),
            FollowUpScheduler(stores, OrchestratorConfig(), rng=random.Random(7)),
        )

        report = _run(actions.run(
            _turn(), intent="precio", nivel=3, context=ConversationContext(), lang="es", now=T0,
        ))

        self.assertEqual(report.done, ["followup"])


if __name__ == "__main__":
    unittest.main()
