"""Tests for the command line entry point."""

import json
from pathlib import Path

import pytest
import yaml

from canbus.cli import main
from canbus.simulations.scenarios import scenario_d


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    config, _ = scenario_d()
    path = tmp_path / "bus.yaml"
    path.write_text(yaml.safe_dump(config.to_dict()))
    return path


def test_run_exports_a_trace_that_validates(config_path: Path, tmp_path: Path, capsys) -> None:
    out = tmp_path / "trace.json"
    assert main(["run", str(config_path), "--export", str(out)]) == 0
    assert json.loads(capsys.readouterr().out.splitlines()[-1])["ok"] is True
    assert len(json.loads(out.read_text())["steps"]) == 4
    assert main(["validate", str(out)]) == 0


def test_search_finds_out_of_order_witness(config_path: Path, tmp_path: Path, capsys) -> None:
    witness = tmp_path / "witness.json"
    code = main(["search", str(config_path), "--query", "out_of_order", "--max-sends", "1", "--export", str(witness)])
    assert code == 0
    assert json.loads(capsys.readouterr().out)["status"] == "witness_found"
    assert main(["validate", str(witness)]) == 1


def test_configuration_errors_exit_with_2(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("nodes: [A]\nsteps: 1\n")
    assert main(["run", str(bad)]) == 2


def test_validate_rejects_a_trace_naming_unknown_messages(tmp_path: Path) -> None:
    trace = tmp_path / "trace.json"
    trace.write_text(json.dumps({"nodes": ["A", "B"], "messages": [], "steps": [{"index": 0, "sent": {"A": ["ghost"]}}]}))
    assert main(["validate", str(trace)]) == 2
