"""Canned bus scenarios.

Each scenario pairs a `BusConfig` with the node policy that drives it:

- A: one Data frame A->B, delivered on the next step, read, then retired.
- B: A sends a Remote frame to B; B reads it and owes a Data reply.
- C: B reads an Overload frame at step 2; the whole bus idles at step 3.
- D: two Data frames A->B read in reverse send order (`read_in_order` fails).
"""

import logging
from typing import Callable, Dict, Tuple

from canbus.config import BusConfig
from canbus.engine import Engine, SimulationResult
from canbus.nodes import EagerController, ScriptedPolicy
from canbus.validators import msgs_live_on_step, read_in_order, validate_trace

logger = logging.getLogger(__name__)


def scenario_a() -> Tuple[BusConfig, object]:
    config = BusConfig.from_dict(
        {
            "nodes": ["A", "B"],
            "steps": 3,
            "messages": [{"id": "d0", "kind": "data", "from": "A", "to": ["B"]}],
        }
    )
    return config, EagerController()


def scenario_b() -> Tuple[BusConfig, object]:
    config = BusConfig.from_dict(
        {
            "nodes": ["A", "B"],
            "steps": 3,
            "messages": [
                {"id": "r0", "kind": "remote", "from": "A", "to": ["B"]},
                {"id": "d0", "kind": "data", "from": "B", "to": ["A"]},
            ],
        }
    )
    policy = ScriptedPolicy().plan(0, "A", send=["r0"]).plan(1, "B", read=["r0"]).plan(2, "B", send=["d0"])
    return config, policy


def scenario_c() -> Tuple[BusConfig, object]:
    config = BusConfig.from_dict(
        {
            "nodes": ["A", "B", "C"],
            "steps": 5,
            "messages": [
                {"id": "d0", "kind": "data", "from": "A", "to": ["C"]},
                {"id": "o0", "kind": "overload", "from": "A", "to": ["B"]},
                {"id": "d1", "kind": "data", "from": "C", "to": ["A"]},
            ],
        }
    )
    policy = (
        ScriptedPolicy()
        .plan(0, "A", send=["d0"])
        .plan(1, "A", send=["o0"])
        .plan(1, "C", read=["d0"])
        .plan(2, "B", read=["o0"])
        .plan(4, "C", send=["d1"])
    )
    return config, policy


def scenario_d() -> Tuple[BusConfig, object]:
    config = BusConfig.from_dict(
        {
            "nodes": ["A", "B"],
            "steps": 4,
            "messages": [
                {"id": "m0", "kind": "data", "from": "A", "to": ["B"]},
                {"id": "m1", "kind": "data", "from": "A", "to": ["B"]},
                {"id": "m2", "kind": "data", "from": "B", "to": ["A"]},
            ],
        }
    )
    policy = (
        ScriptedPolicy()
        .plan(0, "A", send=["m0"])
        .plan(1, "A", send=["m1"])
        .plan(1, "B", send=["m2"])
        .plan(2, "A", read=["m2"])
        .plan(2, "B", read=["m1"])
        .plan(3, "B", read=["m0"])
    )
    return config, policy


SCENARIOS: Dict[str, Callable[[], Tuple[BusConfig, object]]] = {
    "a": scenario_a,
    "b": scenario_b,
    "c": scenario_c,
    "d": scenario_d,
}


def run_scenario(name: str) -> SimulationResult:
    config, policy = SCENARIOS[name]()
    engine = Engine.from_config(config)
    result = engine.run(policy)
    logger.info("scenario %s: ok=%s steps=%d", name, result.ok, len(result.trace))
    return result


def main():
    for name in SCENARIOS:
        result = run_scenario(name)
        trace = result.trace
        print(
            {
                "scenario": name,
                "ok": result.ok,
                "violation": str(result.violation) if result.violation else None,
                "read_in_order": read_in_order(trace),
                "findings": [f.invariant for f in validate_trace(trace)],
                "live_per_step": [sorted(msgs_live_on_step(trace, t)) for t in range(len(trace))],
            }
        )


if __name__ == "__main__":
    main()
