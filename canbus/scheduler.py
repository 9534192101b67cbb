"""Deterministic step clock and scheduler for the bus simulation.

Time on the bus is a totally ordered sequence of discrete steps. Use these
helpers to control it explicitly:

- `StepClock`: monotonically increasing step counter; you call `advance()`
  to move to the next step.
- `StepScheduler`: queues payloads (pending deliveries) for a future step
  and hands them back from `pop_due()` once the clock reaches that step.

Typical loop:

    for payload in scheduler.pop_due():
        ...
    clock.advance()

No threads and no wall clock are involved, so every run is reproducible.
"""

import heapq
from typing import Any, List


class StepClock:
    """Monotonic simulated clock measured in steps."""

    def __init__(self, start: int = 0) -> None:
        self.t = start

    def now_step(self) -> int:
        """Return the current step index."""
        return self.t

    def advance(self, steps: int = 1) -> None:
        """Advance simulated time by `steps` (non-negative)."""
        if steps < 0:
            raise ValueError("the clock only moves forward")
        self.t += steps


class StepScheduler:
    """Scheduler backed by a min-heap of (step, counter, payload) events.

    A counter keeps FIFO order among events due on the same step.
    """

    def __init__(self, clock: StepClock) -> None:
        self.clock = clock
        self.heap: List[List[Any]] = []
        self._counter = 0  # tie-breaker for stable ordering

    def call_at(self, step: int, payload: Any) -> None:
        """Queue `payload` for `step`. Steps in the past are due immediately."""
        self._counter += 1
        heapq.heappush(self.heap, [step, self._counter, payload])

    def pop_due(self) -> List[Any]:
        """Remove and return every payload due at or before now."""
        due = []
        while self.heap and self.heap[0][0] <= self.clock.now_step():
            due.append(heapq.heappop(self.heap)[2])
        return due

    def pending(self) -> int:
        return len(self.heap)

    def fork(self, clock: StepClock) -> "StepScheduler":
        """Copy of the queue bound to `clock`."""
        other = StepScheduler(clock)
        other.heap = [list(event) for event in self.heap]
        other._counter = self._counter
        return other

    def dump_state(self, n: int = 5) -> str:
        """Return a human-readable snapshot of queued events.

        Args:
            n: Maximum number of queued events to include (default: 5).
        """
        now = self.clock.now_step()
        events = sorted(self.heap)
        shown = events[:n]
        lines = [
            f"StepScheduler @ step {now}",
            f"queued = {len(events)} (showing first {len(shown)})",
        ]
        for i, (when, counter, payload) in enumerate(shown):
            lines.append(f"#{i:02d} due @ step {when} (in {max(0, when - now)}) counter={counter} payload={payload!r}")
        return "\n".join(lines)
