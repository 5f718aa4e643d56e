"""Tests for GatePipeline ordering, short-circuiting and transition merging."""
from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timezone

from chatcore.core.exceptions import GateContractError
from chatcore.orchestrator.gates.base import BaseGate
from chatcore.orchestrator.pipeline import GatePipeline
from chatcore.orchestrator.types import (
    CONTINUE,
    ConversationState,
    Reply,
    Silence,
    StateTransition,
    Tenant,
    Transition,
    TurnContext,
    TurnEvent,
)


def _run(coro):
    return asyncio.run(coro)


def _event(text: str = "hola") -> TurnEvent:
    turn = TurnContext(tenant=Tenant(id="t1"), canal="whatsapp", contact="+1555", text=text)
    return TurnEvent(
        turn=turn,
        state=ConversationState(),
        lang="es",
        now=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class _StubGate(BaseGate):
    def __init__(self, name, result, calls):
        self.name = name
        self._result = result
        self._calls = calls

    async def check(self, event):
        self._calls.append(self.name)
        return self._result


class TestGatePipeline(unittest.TestCase):
    def setUp(self) -> None:
        self.calls = []

    def _gate(self, name, result):
        return _StubGate(name, result, self.calls)

    def test_all_continue_passes(self):
        pipeline = GatePipeline([self._gate("a", CONTINUE), self._gate("b", CONTINUE)])
        outcome = _run(pipeline.run(_event()))
        self.assertTrue(outcome.passed)
        self.assertIsNone(outcome.transition)
        self.assertEqual(self.calls, ["a", "b"])

    def test_silence_short_circuits(self):
        pipeline = GatePipeline([
            self._gate("a", Silence("busy")),
            self._gate("b", Reply(source="x", text="never")),
        ])
        outcome = _run(pipeline.run(_event()))
        self.assertEqual(outcome.stop, Silence("busy"))
        self.assertEqual(outcome.stopped_by, "a")
        self.assertEqual(self.calls, ["a"])

    def test_reply_stops_after_earlier_gates(self):
        pipeline = GatePipeline([
            self._gate("a", CONTINUE),
            self._gate("b", Reply(source="b-src", text="hi")),
            self._gate("c", Silence("late")),
        ])
        outcome = _run(pipeline.run(_event()))
        self.assertEqual(outcome.stop.source, "b-src")
        self.assertEqual(self.calls, ["a", "b"])

    def test_transitions_are_merged_into_reply(self):
        first = Transition(StateTransition(step="one", patch={"human_handoff": None, "a": 1}))
        reply = Reply(source="r", text="ok", transition=StateTransition(flow="f", patch={"b": 2}))
        pipeline = GatePipeline([self._gate("t", first), self._gate("r", reply)])

        outcome = _run(pipeline.run(_event()))

        merged = outcome.transition
        self.assertEqual(merged.flow, "f")
        self.assertEqual(merged.step, "one")
        self.assertEqual(merged.patch, {"human_handoff": None, "a": 1, "b": 2})

    def test_transition_without_stop_is_carried(self):
        pipeline = GatePipeline([
            self._gate("t1", Transition(StateTransition(patch={"x": {"k": 1}}))),
            self._gate("t2", Transition(StateTransition(patch={"x": {"j": 2}}))),
        ])
        outcome = _run(pipeline.run(_event()))
        self.assertTrue(outcome.passed)
        self.assertEqual(outcome.transition.patch, {"x": {"k": 1, "j": 2}})

    def test_unknown_result_raises(self):
        pipeline = GatePipeline([self._gate("bad", "not-a-result")])
        with self.assertRaises(GateContractError):
            _run(pipeline.run(_event()))

    def test_gate_names(self):
        pipeline = GatePipeline([self._gate("a", CONTINUE), self._gate("b", CONTINUE)])
        self.assertEqual(pipeline.gate_names, ["a", "b"])


if __name__ == "__main__":
    unittest.main()
