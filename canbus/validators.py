"""Post-hoc predicates over a completed trace.

Every function here is read-only: it takes a `Trace` and answers a
question about it. `validate_trace` runs all property checks and reports
each failure as a `Finding`.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Callable, Dict, FrozenSet, List, Optional

from .messages import FrameKind, retransmission_targets
from .trace import Trace


@dataclass(frozen=True)
class Finding:
    """One failed property, located as precisely as the property allows."""

    invariant: str
    detail: str
    step: Optional[int] = None
    node: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "invariant": self.invariant,
            "detail": self.detail,
            "step": self.step,
            "node": self.node,
            "message_id": self.message_id,
        }


def read_in_order(trace: Trace) -> bool:
    """Messages from one sender to one receiver are read in send order."""
    return not _out_of_order_pairs(trace)


def _out_of_order_pairs(trace: Trace) -> List[Finding]:
    found = []
    by_pair: Dict[tuple, List[str]] = {}
    for msg in trace.messages.values():
        for receiver in msg.recipients:
            by_pair.setdefault((msg.sender, receiver), []).append(msg.id)
    for (sender, receiver), ids in sorted(by_pair.items()):
        for a, b in combinations(sorted(ids), 2):
            ra, rb = trace.read_on(a, receiver), trace.read_on(b, receiver)
            if ra is None or rb is None or ra == rb:
                continue
            first, second = (a, b) if ra < rb else (b, a)
            s1, s2 = trace.sent_on(first), trace.sent_on(second)
            if s1 is not None and s2 is not None and s1 > s2:
                found.append(
                    Finding(
                        "read_in_order",
                        f"{receiver} read {first} (sent {s1}) before {second} (sent {s2})",
                        step=trace.read_on(first, receiver),
                        node=receiver,
                        message_id=first,
                    )
                )
    return found


def no_message_shortage(trace: Trace) -> bool:
    """Declared demand never exceeds the available pool on a non-terminal step."""
    return not _shortages(trace)


def _shortages(trace: Trace) -> List[Finding]:
    found = []
    for step in trace.steps[:-1]:
        demand = sum(len(ids) for ids in step.needs_to_send.values())
        if demand > len(step.available):
            found.append(
                Finding(
                    "no_message_shortage",
                    f"demand {demand} exceeds available {len(step.available)}",
                    step=step.index,
                )
            )
    return found


def msgs_live_on_step(trace: Trace, t: int) -> FrozenSet[str]:
    """Messages sent at or before `t` and not read by all recipients before `t`.

    Computed as: all messages, minus those sent after `t` (or never), minus
    those every recipient had read on an earlier step.
    """
    live = set(trace.messages)
    for mid, msg in trace.messages.items():
        sent = trace.sent_on(mid)
        if sent is None or sent > t:
            live.discard(mid)
            continue
        reads = [trace.read_on(mid, n) for n in msg.recipients]
        if all(r is not None and r < t for r in reads):
            live.discard(mid)
    return frozenset(live)


def message_lifecycle(trace: Trace) -> List[Finding]:
    """Sent at most once by its own sender; each recipient reads at most once,
    strictly after the send, and only intended recipients read."""
    found = []
    sent_count: Dict[str, int] = {}
    for step in trace:
        for node, ids in step.sent.items():
            for mid in ids:
                sent_count[mid] = sent_count.get(mid, 0) + 1
                if trace.messages[mid].sender != node:
                    found.append(Finding("sender_mismatch", f"sent by {node}", step.index, node, mid))
    for mid, count in sorted(sent_count.items()):
        if count > 1:
            found.append(Finding("already_sent", f"sent {count} times", message_id=mid))

    read_count: Dict[tuple, int] = {}
    for step in trace:
        for node, ids in step.read.items():
            for mid in ids:
                read_count[(mid, node)] = read_count.get((mid, node), 0) + 1
                if node not in trace.messages[mid].recipients:
                    found.append(Finding("not_recipient", "read by a non-recipient", step.index, node, mid))
                sent = trace.sent_on(mid)
                if sent is None or sent >= step.index:
                    found.append(Finding("read_before_send", f"sent on {sent}", step.index, node, mid))
    for (mid, node), count in sorted(read_count.items()):
        if count > 1:
            found.append(Finding("already_read", f"read {count} times", node=node, message_id=mid))
    return found


def pool_conservation(trace: Trace) -> List[Finding]:
    """available(t+1) == available(t) - sent(t), and step 0 holds the whole pool."""
    found = []
    if trace.steps and trace[0].available != frozenset(trace.messages):
        found.append(Finding("pool_conservation", "step 0 does not start with the full pool", 0))
    for prev, cur in zip(trace.steps, trace.steps[1:]):
        expected = prev.available - prev.all_sent()
        if cur.available != expected:
            found.append(
                Finding(
                    "pool_conservation",
                    f"expected {sorted(expected)}, got {sorted(cur.available)}",
                    cur.index,
                )
            )
        stray = prev.all_sent() - prev.available
        if stray:
            found.append(Finding("not_available", f"sent outside the pool: {sorted(stray)}", prev.index))
    return found


def no_premature_visibility(trace: Trace) -> List[Finding]:
    """No message is in a channel on or before its send step, nor after its reader consumed it."""
    found = []
    for step in trace:
        for node, ids in step.in_channel.items():
            for mid in ids:
                sent = trace.sent_on(mid)
                if sent is None or sent >= step.index:
                    found.append(Finding("premature_visibility", f"sent on {sent}", step.index, node, mid))
                read = trace.read_on(mid, node)
                if read is not None and read < step.index:
                    found.append(Finding("visible_after_read", f"read on {read}", step.index, node, mid))
    return found


def read_after_delivery(trace: Trace) -> List[Finding]:
    """Reads only pick messages that are in the reader's channel that step."""
    found = []
    for step in trace:
        for node, ids in step.read.items():
            for mid in sorted(ids - step.in_channel[node]):
                found.append(Finding("not_in_channel", "read while not in channel", step.index, node, mid))
    return found


def overload_suppression(trace: Trace) -> List[Finding]:
    found = []
    for prev, cur in zip(trace.steps, trace.steps[1:]):
        if any(trace.messages[m].kind == FrameKind.OVERLOAD for m in prev.all_read()) and cur.total_sent():
            found.append(
                Finding("overload_not_honoured", f"{cur.total_sent()} sends after Overload", cur.index)
            )
    return found


def reaction_obligations(trace: Trace) -> List[Finding]:
    """Remote read => Data next step; Error read => Data to the same recipients next step."""
    found = []
    for prev, cur in zip(trace.steps, trace.steps[1:]):
        for node, ids in prev.read.items():
            data = [trace.messages[m] for m in cur.sent[node] if trace.messages[m].kind == FrameKind.DATA]
            for mid in sorted(ids):
                msg = trace.messages[mid]
                if msg.kind == FrameKind.REMOTE and not data:
                    found.append(Finding("remote_not_answered", "no Data reply", cur.index, node, mid))
                elif msg.kind == FrameKind.ERROR:
                    targets = retransmission_targets(msg, trace.messages)
                    if not any(d.recipients == targets for d in data):
                        found.append(
                            Finding(
                                "error_not_retransmitted",
                                f"no Data to {sorted(targets)}",
                                cur.index,
                                node,
                                mid,
                            )
                        )
    return found


CHECKS: Dict[str, Callable[[Trace], List[Finding]]] = {
    "message_lifecycle": message_lifecycle,
    "pool_conservation": pool_conservation,
    "no_premature_visibility": no_premature_visibility,
    "read_after_delivery": read_after_delivery,
    "overload_suppression": overload_suppression,
    "reaction_obligations": reaction_obligations,
    "read_in_order": _out_of_order_pairs,
    "no_message_shortage": _shortages,
}


def validate_trace(trace: Trace, checks=None) -> List[Finding]:
    """Run the named checks (all by default) and return every finding."""
    findings: List[Finding] = []
    for name in checks or CHECKS:
        findings.extend(CHECKS[name](trace))
    return findings
