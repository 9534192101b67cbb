"""Tests for the lock-step engine: delivery, pool bookkeeping and halting."""

from typing import Any, Dict, List

import pytest

from canbus.engine import IDLE, Decision, Engine
from canbus.errors import (
    AlreadySent,
    ConfigurationError,
    NeverSent,
    NotInChannel,
    SenderMismatch,
    TraceComplete,
)
from canbus.messages import MessageRegistry
from canbus.network import SimChannel, fixed_delay
from canbus.nodes import ScriptedPolicy
from canbus.scheduler import StepClock, StepScheduler


@pytest.fixture
def bus() -> Dict[str, Any]:
    """Two nodes and two Data frames, one in each direction."""
    registry = MessageRegistry()
    registry.create("data", "A", ["B"], message_id="d0")
    registry.create("data", "B", ["A"], message_id="d1")
    engine = Engine(["A", "B"], registry, steps=4)
    return {"engine": engine, "registry": registry}


class RecordingPolicy:
    """Stays idle and remembers what each node was shown."""

    def __init__(self) -> None:
        self.seen: List[Dict[str, Any]] = []

    def decide(self, node, step, in_channel, available, history=None):
        self.seen.append(
            {
                "node": node,
                "step": step,
                "in_channel": {m.id for m in in_channel},
                "available": {m.id for m in available},
                "history": len(history.steps),
            }
        )
        return IDLE


def test_initial_state_has_empty_channels_and_full_pool(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    assert engine.step_index == 0
    for node in ("A", "B"):
        in_channel, available = engine.observe(node)
        assert in_channel == frozenset()
        assert {m.id for m in available} == {"d0", "d1"}


def test_sent_message_arrives_on_next_step_only(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    snap0 = engine.commit({"A": Decision(send={"d0"})})

    assert snap0.sent["A"] == {"d0"}
    assert snap0.in_channel["B"] == frozenset()
    assert snap0.available == {"d0", "d1"}

    in_channel, available = engine.observe("B")
    assert {m.id for m in in_channel} == {"d0"}
    assert {m.id for m in available} == {"d1"}
    assert bus["registry"].sent_on == {}
    assert engine.registry.sent_on == {"d0": 0}


def test_read_message_leaves_channel_on_following_step(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    engine.commit({"A": Decision(send={"d0"})})
    snap1 = engine.commit({"B": Decision(read={"d0"})})
    snap2 = engine.commit({})

    assert snap1.in_channel["B"] == {"d0"}
    assert snap1.read["B"] == {"d0"}
    assert snap2.in_channel["B"] == frozenset()
    assert engine.registry.read_on["d0"] == {"B": 1}


def test_available_pool_shrinks_by_exactly_the_sent_set(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    engine.commit({"A": Decision(send={"d0"}), "B": Decision(send={"d1"})})
    snap1 = engine.commit({})
    assert snap1.available == frozenset()
    assert engine.trace[0].all_sent() == {"d0", "d1"}


def test_reading_undelivered_message_halts(bus: Dict[str, Any]) -> None:
    """A node cannot read a message on the step it is sent."""
    engine: Engine = bus["engine"]
    with pytest.raises(NotInChannel) as exc:
        engine.commit({"A": Decision(send={"d0"}), "B": Decision(read={"d0"})})
    assert exc.value.step == 0
    assert exc.value.node == "B"

    # halted: nothing was committed, and further steps are refused
    assert len(engine.trace) == 0
    assert "d0" not in engine.registry.sent_on
    with pytest.raises(NotInChannel):
        engine.commit({})


def test_sender_must_originate_its_messages(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    with pytest.raises(SenderMismatch) as exc:
        engine.commit({"B": Decision(send={"d0"})})
    assert exc.value.message_id == "d0"
    assert exc.value.node == "B"


def test_unknown_node_in_decisions_is_rejected(bus: Dict[str, Any]) -> None:
    with pytest.raises(SenderMismatch):
        bus["engine"].commit({"Z": IDLE})


def test_double_send_is_rejected(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    engine.commit({"A": Decision(send={"d0"})})
    with pytest.raises(AlreadySent):
        engine.commit({"A": Decision(send={"d0"})})


def test_run_reports_violation_instead_of_raising(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    policy = ScriptedPolicy().plan(0, "A", send=["d0"]).plan(1, "A", read=["d1"])
    result = engine.run(policy)

    assert not result.ok
    assert isinstance(result.violation, NotInChannel)
    assert result.violation.to_dict()["invariant"] == "not_in_channel"
    assert len(result.trace) == 1


def test_nodes_only_see_earlier_steps(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    policy = RecordingPolicy()
    result = engine.run(policy)
    assert result.ok
    assert len(result.trace) == 4
    assert all(entry["history"] == entry["step"] for entry in policy.seen)
    assert {e["node"] for e in policy.seen if e["step"] == 0} == {"A", "B"}


def test_steps_are_bounded(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    for _ in range(4):
        engine.commit({})
    assert engine.done
    with pytest.raises(TraceComplete):
        engine.commit({})


def test_require_all_sent_rejects_leftovers() -> None:
    registry = MessageRegistry()
    registry.create("data", "A", ["B"], message_id="d0")
    engine = Engine(["A", "B"], registry, steps=2, require_all_sent=True)
    result = engine.run(ScriptedPolicy())
    assert isinstance(result.violation, NeverSent)
    assert result.violation.message_id == "d0"
    assert len(result.trace) == 2


def test_delivery_rules_control_arrival_step() -> None:
    registry = MessageRegistry()
    registry.create("data", "A", ["B"], message_id="d0")
    channel = SimChannel(StepScheduler(StepClock()))
    channel.add_rule(fixed_delay(3))
    engine = Engine(["A", "B"], registry, steps=5, channel=channel)
    engine.commit({"A": Decision(send={"d0"})})
    engine.commit({})
    engine.commit({})
    assert engine.trace[2].in_channel["B"] == frozenset()
    assert engine.observe("B")[0] and engine.step_index == 3


def test_fork_leaves_original_untouched(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    engine.commit({"A": Decision(send={"d0"})})
    child = engine.fork()
    child.commit({"B": Decision(read={"d0"}, send={"d1"})})

    assert len(engine.trace) == 1
    assert engine.step_index == 1
    assert engine.inbox["B"] == {"d0"}
    assert "d1" in engine.available
    assert child.inbox["B"] == set()
    assert child.registry.read_on["d0"]["B"] == 1
    assert engine.registry.read_on["d0"]["B"] is None


def test_bad_setups_are_configuration_errors() -> None:
    registry = MessageRegistry()
    registry.create("data", "A", ["B"])
    with pytest.raises(ConfigurationError):
        Engine(["A"], registry)
    with pytest.raises(ConfigurationError):
        Engine(["A", "A"], registry)
    with pytest.raises(ConfigurationError):
        Engine(["A", "C"], registry)
    with pytest.raises(ConfigurationError):
        Engine(["A", "B"], registry, steps=0)


def test_decision_accepts_messages_or_ids(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    _, available = engine.observe("A")
    d0 = next(m for m in available if m.id == "d0")
    decision = Decision(send=[d0])
    assert decision.send == {"d0"}
    assert decision.needs == {"d0"}
    assert Decision(send=["d0"], needs=[]).needs == frozenset()


def test_a_bare_string_is_a_single_message_id(bus: Dict[str, Any]) -> None:
    engine: Engine = bus["engine"]
    assert Decision(send="d0").send == {"d0"}
    assert Decision(read="d1", needs="d1").needs == {"d1"}
    result = engine.run(ScriptedPolicy().plan(0, "A", send="d0").plan(1, "B", read="d0"))
    assert result.ok
    assert result.trace[0].sent["A"] == {"d0"}
    assert result.trace[1].read["B"] == {"d0"}
