"""Read-only HTTP exporter for a finished simulation.

This module exposes the trace of one run via FastAPI:
- GET /trace: the whole trace (nodes, message catalogue, step snapshots).
- GET /steps/{index}: one step snapshot.
- GET /live/{index}: messages live on that step.
- GET /verdict: the halting violation (if any) and every validator finding.

The server never mutates the result; dashboards and other consumers poll it.
"""

from fastapi import FastAPI, HTTPException

from canbus.engine import SimulationResult
from canbus.validators import msgs_live_on_step, validate_trace


class TraceServer:
    """FastAPI wrapper around one `SimulationResult`."""

    def __init__(self, result: SimulationResult, title: str = "CAN bus trace"):
        self.app = FastAPI(title=title)
        self.result = result

        @self.app.get("/trace")
        async def trace():
            return self.result.trace.to_dict()

        @self.app.get("/steps/{index}")
        async def step(index: int):
            return self._step(index).to_dict()

        @self.app.get("/live/{index}")
        async def live(index: int):
            self._step(index)
            return {"step": index, "live": sorted(msgs_live_on_step(self.result.trace, index))}

        @self.app.get("/verdict")
        async def verdict():
            return {
                "ok": self.result.ok,
                "violation": self.result.violation.to_dict() if self.result.violation else None,
                "findings": [f.to_dict() for f in validate_trace(self.result.trace)],
                "stats": dict(self.result.stats),
            }

    def _step(self, index: int):
        steps = self.result.trace.steps
        if not 0 <= index < len(steps):
            raise HTTPException(status_code=404, detail=f"no step {index}")
        return steps[index]
