"""Immutable step snapshots and the trace that strings them together.

A `TimeStep` is created once by the engine and never modified. A `Trace`
pairs the ordered steps with the message catalogue, which is enough to
reconstruct the lifecycle of every message (`sent_on`, `read_on`), to replay
the run, and to export it as JSON.
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple

from .errors import ConfigurationError
from .messages import Message

NodeSets = Mapping[str, FrozenSet[str]]

RELATIONS = ("in_channel", "read", "sent", "needs_to_send")


def freeze(relation: Mapping[str, Iterable[str]], nodes: Iterable[str]) -> NodeSets:
    """Read-only node -> frozenset mapping with an entry for every node."""
    return MappingProxyType({n: frozenset(relation.get(n, ())) for n in nodes})


@dataclass(frozen=True)
class TimeStep:
    """
    Snapshot of one tick of the bus.

    Attributes
    ----------
    index:
        Position in the trace (0 is the first step).
    in_channel:
        node -> messages receivable by that node at this step.
    read:
        node -> messages consumed at this step (subset of `in_channel`).
    sent:
        node -> messages put on the bus at this step.
    available:
        global pool of messages not yet sent at the start of this step.
    needs_to_send:
        node -> messages the node declared it needs to transmit.
    """

    index: int
    in_channel: NodeSets
    read: NodeSets
    sent: NodeSets
    available: FrozenSet[str]
    needs_to_send: NodeSets

    @property
    def nodes(self) -> Tuple[str, ...]:
        return tuple(self.in_channel)

    def all_sent(self) -> FrozenSet[str]:
        return frozenset().union(*self.sent.values())

    def all_read(self) -> FrozenSet[str]:
        return frozenset().union(*self.read.values())

    def total_sent(self) -> int:
        return sum(len(s) for s in self.sent.values())

    def to_dict(self) -> Dict[str, Any]:
        def rel(r):
            return {n: sorted(ids) for n, ids in r.items()}

        return {
            "index": self.index,
            "in_channel": rel(self.in_channel),
            "read": rel(self.read),
            "sent": rel(self.sent),
            "available": sorted(self.available),
            "needs_to_send": rel(self.needs_to_send),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], nodes: Iterable[str]) -> "TimeStep":
        nodes = list(nodes)
        relations = {}
        for name in RELATIONS:
            raw = data.get(name, {})
            unknown = set(raw) - set(nodes)
            if unknown:
                raise ConfigurationError(f"step {data.get('index')} {name} names unknown nodes {sorted(unknown)}")
            relations[name] = freeze(raw, nodes)
        return cls(
            index=int(data["index"]),
            available=frozenset(data.get("available", ())),
            **relations,
        )


@dataclass(frozen=True)
class Trace:
    """Message catalogue plus the ordered, immutable step sequence."""

    nodes: Tuple[str, ...]
    messages: Mapping[str, Message]
    steps: Tuple[TimeStep, ...] = ()
    _sent_on: Dict[str, int] = field(default_factory=dict, init=False, repr=False, compare=False)
    _read_on: Dict[str, Dict[str, int]] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        for step in self.steps:
            for ids in step.sent.values():
                for mid in ids:
                    self._sent_on.setdefault(mid, step.index)
            for node, ids in step.read.items():
                for mid in ids:
                    self._read_on.setdefault(mid, {}).setdefault(node, step.index)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> Iterator[TimeStep]:
        return iter(self.steps)

    def __getitem__(self, index: int) -> TimeStep:
        return self.steps[index]

    @property
    def last(self) -> Optional[TimeStep]:
        return self.steps[-1] if self.steps else None

    def extend(self, step: TimeStep) -> "Trace":
        """New trace with `step` appended."""
        return Trace(self.nodes, self.messages, self.steps + (step,))

    def sent_on(self, message_id: str) -> Optional[int]:
        return self._sent_on.get(message_id)

    def read_on(self, message_id: str, node: str) -> Optional[int]:
        return self._read_on.get(message_id, {}).get(node)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "messages": [m.to_dict() for m in self.messages.values()],
            "steps": [s.to_dict() for s in self.steps],
        }

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trace":
        try:
            nodes = tuple(data["nodes"])
            messages = {}
            for raw in data["messages"]:
                msg = Message.from_dict(raw)
                messages[msg.id] = msg
            steps = tuple(TimeStep.from_dict(s, nodes) for s in data["steps"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"malformed trace: {e}") from e
        for msg in messages.values():
            unknown = ({msg.sender} | msg.recipients) - set(nodes)
            if unknown:
                raise ConfigurationError(f"message {msg.id} references unknown nodes {sorted(unknown)}")
        for i, step in enumerate(steps):
            if step.index != i:
                raise ConfigurationError(f"trace step {i} is labelled {step.index}")
            # needs_to_send is declared demand and may name messages outside the pool
            named = step.available.union(*step.in_channel.values(), *step.read.values(), *step.sent.values())
            unknown = named - set(messages)
            if unknown:
                raise ConfigurationError(f"trace step {i} names unknown messages {sorted(unknown)}")
        return cls(nodes, MappingProxyType(messages), steps)

    @classmethod
    def from_json(cls, text: str) -> "Trace":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"trace is not valid JSON: {e}") from e
        return cls.from_dict(data)
