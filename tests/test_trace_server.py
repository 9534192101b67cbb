"""Tests for the HTTP trace exporter."""

import pytest
from fastapi.testclient import TestClient

from canbus.runtime.run_server import simulate
from canbus.runtime.trace_server import TraceServer
from canbus.simulations.scenarios import run_scenario


@pytest.fixture
def client() -> TestClient:
    return TestClient(TraceServer(run_scenario("a")).app)


def test_trace_and_single_steps(client: TestClient) -> None:
    trace = client.get("/trace").json()
    assert trace["nodes"] == ["A", "B"]
    assert len(trace["steps"]) == 3

    step = client.get("/steps/1").json()
    assert step["read"]["B"] == ["d0"]
    assert client.get("/steps/7").status_code == 404


def test_live_and_verdict(client: TestClient) -> None:
    assert client.get("/live/1").json() == {"step": 1, "live": ["d0"]}
    verdict = client.get("/verdict").json()
    assert verdict["ok"] is True
    assert verdict["violation"] is None
    assert verdict["findings"] == []


def test_verdict_reports_findings_of_out_of_order_trace() -> None:
    client = TestClient(TraceServer(run_scenario("d")).app)
    verdict = client.get("/verdict").json()
    assert verdict["ok"] is True
    assert [f["invariant"] for f in verdict["findings"]] == ["read_in_order"]


def test_simulate_defaults_and_rejects_unknown_policy() -> None:
    assert simulate().ok
    with pytest.raises(ValueError):
        simulate(policy_name="chaotic")
