"""Command line entry point.

    canbus run CONFIG [--policy eager|random] [--seed N] [--export trace.json]
    canbus search CONFIG --query out_of_order [--steps N] [--limit N]
    canbus validate TRACE.json
    canbus scenarios
    canbus serve [CONFIG] [--port 8000]

Exit status is 0 on success, 1 when a run halts on a violation, a search
finds no witness or a trace fails validation, and 2 on configuration errors.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from canbus.config import load_config
from canbus.engine import Engine
from canbus.errors import ConfigurationError
from canbus.network import summary
from canbus.nodes import POLICIES, RandomController
from canbus.search import QUERIES
from canbus.trace import Trace
from canbus.validators import validate_trace

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _policy(name: str, seed):
    if name == "random":
        return RandomController(seed=seed)
    return POLICIES[name]()


def cmd_run(args) -> int:
    config = load_config(args.config)
    engine = Engine.from_config(config)
    result = engine.run(_policy(args.policy, args.seed))
    if args.export:
        Path(args.export).write_text(result.trace.to_json(indent=2))
        logger.info("trace written to %s", args.export)
    print(json.dumps({"ok": result.ok, "violation": result.violation.to_dict() if result.violation else None}))
    logger.info("channel: %s", summary(result.stats))
    return 0 if result.ok else 1


def cmd_search(args) -> int:
    config = load_config(args.config)
    result = QUERIES[args.query](
        config,
        steps=args.steps,
        limit=args.limit,
        max_sends_per_node=args.max_sends,
    )
    out = result.to_dict()
    if args.export and result.witness is not None:
        Path(args.export).write_text(result.witness.to_json(indent=2))
        out["witness"] = args.export
    print(json.dumps(out, indent=2))
    return 0 if result.found else 1


def cmd_validate(args) -> int:
    trace = Trace.from_json(Path(args.trace).read_text())
    findings = validate_trace(trace)
    for f in findings:
        print(json.dumps(f.to_dict()))
    logger.info("%d finding(s) in %d steps", len(findings), len(trace))
    return 1 if findings else 0


def cmd_scenarios(args) -> int:
    from canbus.simulations import scenarios

    scenarios.main()
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    from canbus.runtime.run_server import simulate
    from canbus.runtime.trace_server import TraceServer

    result = simulate(args.config, args.policy, args.seed)
    uvicorn.run(TraceServer(result).app, host=args.host, port=args.port, log_level="warning")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="canbus", description="Discrete CAN bus protocol model")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="simulate a configuration")
    run.add_argument("config")
    run.add_argument("--policy", choices=sorted(POLICIES), default="eager")
    run.add_argument("--seed", type=int)
    run.add_argument("--export", help="write the trace as JSON")
    run.set_defaults(func=cmd_run)

    search = sub.add_parser("search", help="bounded search for a witness trace")
    search.add_argument("config")
    search.add_argument("--query", choices=sorted(QUERIES), default="out_of_order")
    search.add_argument("--steps", type=int)
    search.add_argument("--limit", type=int, default=100_000)
    search.add_argument("--max-sends", type=int, dest="max_sends")
    search.add_argument("--export", help="write the witness trace as JSON")
    search.set_defaults(func=cmd_search)

    validate = sub.add_parser("validate", help="check a trace JSON file")
    validate.add_argument("trace")
    validate.set_defaults(func=cmd_validate)

    scen = sub.add_parser("scenarios", help="run the built-in scenarios")
    scen.set_defaults(func=cmd_scenarios)

    serve = sub.add_parser("serve", help="simulate and serve the trace over HTTP")
    serve.add_argument("config", nargs="?")
    serve.add_argument("--policy", choices=sorted(POLICIES), default="eager")
    serve.add_argument("--seed", type=int)
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error("configuration error: %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
