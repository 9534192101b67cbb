"""Entry point for serving a simulated trace over HTTP.

This file loads a configuration, runs it with the chosen node policy, and
serves the result with the FastAPI trace exporter.

Environment variables:
- TRACE_CONFIG: path to a YAML configuration (defaults to scenario A)
- TRACE_POLICY: node policy name, `eager` or `random` (default: eager)
- TRACE_SEED: seed for the random policy
- PORT: listening port (default: 8000)
"""

import logging
import os

import uvicorn

from canbus.config import load_config
from canbus.engine import Engine, SimulationResult
from canbus.nodes import POLICIES, RandomController
from canbus.runtime.trace_server import TraceServer
from canbus.simulations.scenarios import scenario_a

logger = logging.getLogger(__name__)


def simulate(config_path=None, policy_name: str = "eager", seed=None) -> SimulationResult:
    """Run one simulation from a config path (or scenario A) and a policy name."""
    if config_path:
        config = load_config(config_path)
    else:
        config, _ = scenario_a()
    if policy_name not in POLICIES:
        raise ValueError(f"unknown policy {policy_name!r}; choose from {sorted(POLICIES)}")
    if policy_name == "random":
        policy = RandomController(seed=seed)
    else:
        policy = POLICIES[policy_name]()
    return Engine.from_config(config).run(policy)


def main():
    """Run the simulation, then serve its trace."""
    config_path = os.environ.get("TRACE_CONFIG")
    policy_name = os.environ.get("TRACE_POLICY", "eager")
    seed = os.environ.get("TRACE_SEED")
    port = int(os.environ.get("PORT", "8000"))
    result = simulate(config_path, policy_name, int(seed) if seed else None)
    logger.info("serving %d-step trace (ok=%s) on port %d", len(result.trace), result.ok, port)
    app = TraceServer(result).app
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="warning")


if __name__ == "__main__":
    main()
