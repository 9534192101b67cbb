"""Toy bus traffic demo: next-step vs. jittery delivery.

This script uses the deterministic step engine to illustrate how per-pair
read order depends on propagation delay:

- next-step: every frame lands in the receiver's channel exactly one step
  after it was sent, so an eager receiver reads A's frames in send order.
- jitter: frames take 1 to 4 steps to arrive, so a later frame can overtake
  an earlier one and the receiver reads them out of order.

Workload: A sends four Data frames to B on consecutive steps; B reads
whatever has arrived every step.
"""

from canbus.config import BusConfig
from canbus.engine import Engine
from canbus.nodes import EagerController
from canbus.validators import read_in_order


def run_scenario(max_delay: int, seed: int = 3):
    config = BusConfig.from_dict(
        {
            "nodes": ["A", "B"],
            "steps": 10,
            "messages": [{"id": f"d{i}", "kind": "data", "from": "A", "to": ["B"]} for i in range(4)],
            "delivery": {"min_delay": 1, "max_delay": max_delay, "seed": seed},
        }
    )
    engine = Engine.from_config(config)
    result = engine.run(EagerController())
    trace = result.trace
    reads = [(m, trace.read_on(m, "B")) for m in sorted(trace.messages)]
    return result.ok, read_in_order(trace), reads


def main():
    for label, max_delay in (("next-step", 1), ("jitter", 4)):
        ok, in_order, reads = run_scenario(max_delay)
        print(
            {
                "delivery": label,
                "valid": ok,
                "read_in_order": in_order,
                "read_steps_on_B": reads,
            }
        )


if __name__ == "__main__":
    main()
