"""Lock-step engine that advances the bus one discrete step at a time.

Each transition runs three phases so that nodes act "simultaneously":

1. decide: every node policy sees only its own in-channel, the available
   pool and earlier steps, and returns a `Decision`.
2. validate: sends and reads are checked against the registry (sender,
   availability, double send, recipient, in-channel, double read) and the
   frame-type reaction rules, on a staged copy of the bookkeeping.
3. commit: the snapshot is appended to the trace, the pool shrinks by the
   step's sends, read messages leave their readers' channels, and the
   channel schedules deliveries of the new sends.

A violation in phase 2 halts the engine. `run` reports it inside a
`SimulationResult` rather than raising, so callers can inspect (or search
for) invalid traces.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union

from .errors import (
    ConfigurationError,
    NeverSent,
    ProtocolViolation,
    SenderMismatch,
    TraceComplete,
)
from .messages import Message, MessageRegistry
from .network import SimChannel
from .protocols import NodePolicy
from .rules import RuleChecker
from .scheduler import StepClock, StepScheduler
from .trace import TimeStep, Trace, freeze

logger = logging.getLogger(__name__)


def _ids(items: Optional[Iterable[Any]]) -> FrozenSet[str]:
    if items is None:
        return frozenset()
    if isinstance(items, (str, Message)):
        items = (items,)
    return frozenset(getattr(m, "id", m) for m in items)


@dataclass(frozen=True)
class Decision:
    """A node's choice for one step: what to send, what to read, what it needs.

    Items may be message ids or `Message` objects. `needs` defaults to
    `send` when omitted.
    """

    send: FrozenSet[str] = frozenset()
    read: FrozenSet[str] = frozenset()
    needs: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        object.__setattr__(self, "send", _ids(self.send))
        object.__setattr__(self, "read", _ids(self.read))
        if self.needs is None:
            object.__setattr__(self, "needs", self.send)
        else:
            object.__setattr__(self, "needs", _ids(self.needs))


IDLE = Decision()


@dataclass
class SimulationResult:
    """Outcome of a run: the trace produced and the violation that halted it."""

    trace: Trace
    violation: Optional[ProtocolViolation] = None
    stats: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.violation is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "violation": self.violation.to_dict() if self.violation else None,
            "stats": dict(self.stats),
            "trace": self.trace.to_dict(),
        }


Policies = Union[NodePolicy, Mapping[str, NodePolicy]]


class Engine:
    """
    Owns step sequencing, per-node in-channels and the available pool.

    Parameters
    ----------
    nodes:
        Bus participants (at least two, unique).
    registry:
        `MessageRegistry` holding the whole message pool. Every registered
        message starts out available.
    steps:
        Number of steps to generate; `None` leaves the trace open-ended for
        manual `commit` calls.
    channel:
        `SimChannel` deciding delivery timing; next-step delivery when
        omitted.
    checker:
        `RuleChecker` for reaction obligations and shortage.
    require_all_sent:
        When set, `finish` rejects a trace that leaves messages unsent.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        registry: MessageRegistry,
        steps: Optional[int] = None,
        channel: Optional[SimChannel] = None,
        checker: Optional[RuleChecker] = None,
        require_all_sent: bool = False,
    ) -> None:
        nodes = tuple(nodes)
        if len(nodes) < 2:
            raise ConfigurationError("a bus needs at least two nodes")
        if len(set(nodes)) != len(nodes):
            raise ConfigurationError(f"duplicate node ids in {list(nodes)}")
        for msg in registry:
            unknown = ({msg.sender} | msg.recipients) - set(nodes)
            if unknown:
                raise ConfigurationError(f"message {msg.id} references unknown nodes {sorted(unknown)}")
        if steps is not None and steps < 1:
            raise ConfigurationError("steps must be at least 1")

        self.nodes = nodes
        self.registry = registry
        self.steps = steps
        if channel is None:
            channel = SimChannel(StepScheduler(StepClock()))
        self.channel = channel
        self.clock = channel.scheduler.clock
        self.checker = checker or RuleChecker()
        self.require_all_sent = require_all_sent
        self.catalogue = MappingProxyType(registry.catalogue())
        self.available: FrozenSet[str] = frozenset(registry.unsent())
        self.inbox: Dict[str, set] = {n: set() for n in nodes}
        self.trace = Trace(nodes, self.catalogue)
        self.halted: Optional[ProtocolViolation] = None
        self._receive()

    @classmethod
    def from_config(cls, config, channel: Optional[SimChannel] = None) -> "Engine":
        """Build an engine (and its registry) from a `BusConfig`."""
        if channel is None:
            channel = SimChannel(StepScheduler(StepClock()))
            for rule in config.delivery.rules():
                channel.add_rule(rule)
        return cls(
            config.nodes,
            config.build_registry(),
            steps=config.steps,
            channel=channel,
            checker=RuleChecker(enforce_shortage=config.enforce_shortage),
            require_all_sent=config.require_all_sent,
        )

    @property
    def step_index(self) -> int:
        return self.clock.now_step()

    @property
    def done(self) -> bool:
        return self.steps is not None and self.step_index >= self.steps

    def observe(self, node: str) -> Tuple[FrozenSet[Message], FrozenSet[Message]]:
        """Return (in-channel, available) for `node` at the current step."""
        in_channel = frozenset(self.catalogue[mid] for mid in self.inbox[node])
        available = frozenset(self.catalogue[mid] for mid in self.available)
        return in_channel, available

    def decide(self, policies: Policies) -> Dict[str, Decision]:
        """Collect every node's decision before any of them is applied."""
        decisions = {}
        history = self.trace
        for node in self.nodes:
            policy = policies[node] if isinstance(policies, Mapping) else policies
            in_channel, available = self.observe(node)
            decisions[node] = policy.decide(node, self.step_index, in_channel, available, history=history)
        return decisions

    def commit(self, decisions: Mapping[str, Decision]) -> TimeStep:
        """Validate and apply one step's decisions; returns the new snapshot."""
        if self.halted is not None:
            raise self.halted
        if self.done:
            raise TraceComplete(f"all {self.steps} steps already generated")
        t = self.step_index
        try:
            snapshot, staged = self._validate(t, decisions)
        except ProtocolViolation as v:
            self.halted = v
            logger.debug("step %d rejected: %s", t, v)
            raise

        self.registry = staged
        self.trace = self.trace.extend(snapshot)
        sent = snapshot.all_sent()
        self.available = self.available - sent
        for node, ids in snapshot.read.items():
            self.inbox[node] -= ids
        for mid in sorted(sent):
            self.channel.transmit(self.catalogue[mid], t)
        logger.debug(
            "step %d: sent=%s read=%s available=%d in_flight=%d",
            t,
            sorted(sent),
            sorted(snapshot.all_read()),
            len(self.available),
            self.channel.scheduler.pending(),
        )
        self.clock.advance()
        self._receive()
        return snapshot

    def _validate(self, t: int, decisions: Mapping[str, Decision]) -> Tuple[TimeStep, MessageRegistry]:
        for node in decisions:
            if node not in self.inbox:
                raise SenderMismatch(node=node, step=t, detail="not a node on this bus")
        sends = {n: decisions.get(n, IDLE).send for n in self.nodes}
        reads = {n: decisions.get(n, IDLE).read for n in self.nodes}
        needs = {n: decisions.get(n, IDLE).needs for n in self.nodes}

        staged = self.registry.fork()
        for node in self.nodes:
            for mid in sorted(sends[node]):
                msg = staged.get(mid)
                if msg.sender != node:
                    raise SenderMismatch(mid, node, t, f"message originates from {msg.sender}")
                staged.mark_sent(mid, t, self.available)
        for node in self.nodes:
            for mid in sorted(reads[node]):
                staged.mark_read(mid, node, t, self.inbox[node])
        self.checker.check_transition(self.trace.last, sends, self.catalogue, t)

        snapshot = TimeStep(
            index=t,
            in_channel=freeze(self.inbox, self.nodes),
            read=freeze(reads, self.nodes),
            sent=freeze(sends, self.nodes),
            available=self.available,
            needs_to_send=freeze(needs, self.nodes),
        )
        terminal = self.steps is not None and t == self.steps - 1
        self.checker.check_shortage(snapshot, terminal)
        return snapshot, staged

    def _receive(self) -> None:
        for node, mid in self.channel.deliver_due():
            if self.registry.read_on[mid][node] is None:
                self.inbox[node].add(mid)

    def step(self, policies: Policies) -> TimeStep:
        return self.commit(self.decide(policies))

    def finish(self) -> None:
        """End-of-trace checks."""
        if self.require_all_sent:
            unsent = sorted(self.registry.unsent())
            if unsent:
                v = NeverSent(unsent[0], step=self.step_index - 1, detail=f"unsent at end of trace: {unsent}")
                self.halted = v
                logger.debug("trace rejected: %s", v)
                raise v

    def run(self, policies: Policies) -> SimulationResult:
        """Generate every remaining step; stop at the first violation."""
        if self.steps is None:
            raise ConfigurationError("run() needs a step bound")
        try:
            while not self.done:
                self.step(policies)
            self.finish()
        except ProtocolViolation as v:
            logger.warning("run halted after %d steps: %s", len(self.trace), v)
            logger.debug("deliveries still queued:\n%s", self.channel.scheduler.dump_state())
            return SimulationResult(self.trace, v, dict(self.channel.stats))
        logger.info(
            "run complete: %d steps, %d/%d messages sent",
            len(self.trace),
            len(self.registry.sent_on),
            len(self.registry),
        )
        return SimulationResult(self.trace, None, dict(self.channel.stats))

    def fork(self) -> "Engine":
        """Independent copy for exploring alternative continuations."""
        other = Engine.__new__(Engine)
        other.nodes = self.nodes
        other.steps = self.steps
        other.clock = StepClock(self.clock.now_step())
        other.channel = self.channel.fork(other.clock)
        other.registry = self.registry.fork()
        other.checker = self.checker
        other.require_all_sent = self.require_all_sent
        other.catalogue = self.catalogue
        other.available = self.available
        other.inbox = {n: set(ids) for n, ids in self.inbox.items()}
        other.trace = self.trace
        other.halted = self.halted
        return other
