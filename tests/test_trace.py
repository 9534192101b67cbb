"""Tests for step snapshots and trace import/export."""

import json

import pytest

from canbus.errors import ConfigurationError
from canbus.simulations.scenarios import run_scenario
from canbus.trace import Trace


def test_snapshots_are_read_only() -> None:
    step = run_scenario("a").trace[0]
    with pytest.raises(TypeError):
        step.sent["A"] = frozenset()
    with pytest.raises(AttributeError):
        step.available = frozenset()


def test_extend_returns_a_new_trace() -> None:
    trace = run_scenario("a").trace
    shorter = Trace(trace.nodes, trace.messages, trace.steps[:1])
    longer = shorter.extend(trace[1])
    assert len(shorter) == 1
    assert len(longer) == 2
    assert longer.read_on("d0", "B") == 1
    assert shorter.read_on("d0", "B") is None


def test_json_export_lists_every_relation() -> None:
    data = json.loads(run_scenario("b").trace.to_json())
    assert data["nodes"] == ["A", "B"]
    assert {m["id"]: m["kind"] for m in data["messages"]} == {"r0": "remote", "d0": "data"}
    step = data["steps"][1]
    assert set(step) == {"index", "in_channel", "read", "sent", "available", "needs_to_send"}
    assert step["read"] == {"A": [], "B": ["r0"]}


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        json.dumps({"nodes": ["A", "B"]}),
        json.dumps({"nodes": ["A", "B"], "messages": [{"id": "m0"}], "steps": []}),
        json.dumps({"nodes": ["A", "B"], "messages": [], "steps": [{"index": 3}]}),
        json.dumps({"nodes": ["A", "B"], "messages": [], "steps": [{"index": 0, "sent": {"A": ["ghost"]}}]}),
        json.dumps({"nodes": ["A", "B"], "messages": [], "steps": [{"index": 0, "available": ["ghost"]}]}),
        json.dumps({"nodes": ["A", "B"], "messages": [], "steps": [{"index": 0, "read": ["A"]}]}),
    ],
)
def test_malformed_traces_are_rejected(text: str) -> None:
    with pytest.raises(ConfigurationError):
        Trace.from_json(text)


MESSAGE = {"id": "m0", "kind": "data", "from": "A", "to": ["B"]}


@pytest.mark.parametrize(
    "data",
    [
        {"nodes": ["A", "B"], "messages": [MESSAGE], "steps": [{"index": 0, "sent": {"Z": ["m0"]}}]},
        {"nodes": ["A", "B"], "messages": [MESSAGE], "steps": [{"index": 0, "needs_to_send": {"Z": []}}]},
        {"nodes": ["A", "B"], "messages": [dict(MESSAGE, to=["Z"])], "steps": []},
        {"nodes": ["A", "B"], "messages": [dict(MESSAGE, **{"from": "Z"})], "steps": []},
    ],
)
def test_unknown_nodes_are_rejected_instead_of_dropped(data) -> None:
    with pytest.raises(ConfigurationError, match="unknown nodes"):
        Trace.from_dict(data)


def test_declared_demand_may_name_messages_outside_the_pool() -> None:
    trace = Trace.from_dict(
        {
            "nodes": ["A", "B"],
            "messages": [MESSAGE],
            "steps": [{"index": 0, "available": ["m0"], "needs_to_send": {"A": ["m0", "later"]}}],
        }
    )
    assert trace[0].needs_to_send["A"] == {"m0", "later"}
