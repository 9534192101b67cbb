"""Run configuration: nodes, message pool, step count and delivery timing.

Configurations are plain dataclasses. They can be built in code, from a
dict, or from a YAML file:

    nodes: [A, B]
    steps: 4
    messages:
      - {id: m0, kind: data, from: A, to: [B]}
      - {id: e0, kind: error, from: B, to: [A], concerns: m0}
    delivery: {min_delay: 1, max_delay: 2, seed: 7}
    enforce_shortage: false
    require_all_sent: false

Everything is validated up front; a bad setup raises `ConfigurationError`
before any step is simulated.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError
from .messages import FrameKind, MessageRegistry
from .network import build_rules


@dataclass(frozen=True)
class MessageSpec:
    """One message of the initial pool."""

    id: str
    kind: FrameKind
    sender: str
    recipients: Tuple[str, ...]
    concerns: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], index: int) -> "MessageSpec":
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"message #{index} must be a mapping, got {data!r}")
        try:
            kind = FrameKind(str(data.get("kind", "data")).lower())
        except ValueError:
            raise ConfigurationError(f"message #{index} has unknown kind {data.get('kind')!r}") from None
        if "from" not in data or "to" not in data:
            raise ConfigurationError(f"message #{index} needs 'from' and 'to'")
        to = data["to"]
        if isinstance(to, str):
            to = [to]
        return cls(
            id=str(data.get("id", f"m{index}")),
            kind=kind,
            sender=str(data["from"]),
            recipients=tuple(str(n) for n in to),
            concerns=None if data.get("concerns") is None else str(data["concerns"]),
        )


@dataclass(frozen=True)
class DeliverySettings:
    """Propagation delay bounds, in steps, and an optional drop probability."""

    min_delay: int = 1
    max_delay: int = 1
    drop_prob: float = 0.0
    seed: Optional[int] = None

    def __post_init__(self):
        if self.min_delay < 1:
            raise ConfigurationError("min_delay must be at least 1 step")
        if self.max_delay < self.min_delay:
            raise ConfigurationError("max_delay must not be below min_delay")
        if not 0.0 <= self.drop_prob <= 1.0:
            raise ConfigurationError("drop_prob must be within [0, 1]")

    def rules(self) -> list:
        return build_rules(self.min_delay, self.max_delay, self.drop_prob, self.seed)


@dataclass(frozen=True)
class BusConfig:
    nodes: Tuple[str, ...]
    messages: Tuple[MessageSpec, ...]
    steps: int
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    enforce_shortage: bool = False
    require_all_sent: bool = False

    def __post_init__(self):
        if len(self.nodes) < 2:
            raise ConfigurationError("a bus needs at least two nodes")
        if len(set(self.nodes)) != len(self.nodes):
            raise ConfigurationError(f"duplicate node ids in {list(self.nodes)}")
        if self.steps < 1:
            raise ConfigurationError("steps must be at least 1")
        known = set(self.nodes)
        seen = set()
        for spec in self.messages:
            if spec.id in seen:
                raise ConfigurationError(f"duplicate message id {spec.id!r}")
            seen.add(spec.id)
            if spec.sender not in known:
                raise ConfigurationError(f"message {spec.id} sent by unknown node {spec.sender!r}")
            unknown = set(spec.recipients) - known
            if unknown:
                raise ConfigurationError(f"message {spec.id} addressed to unknown nodes {sorted(unknown)}")
            if not spec.recipients or spec.sender in spec.recipients:
                raise ConfigurationError(f"message {spec.id} has an invalid recipient set")
        for spec in self.messages:
            if spec.concerns is not None and spec.concerns not in seen:
                raise ConfigurationError(f"message {spec.id} concerns unknown message {spec.concerns!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BusConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration must be a mapping")
        nodes = data.get("nodes")
        if isinstance(nodes, int):
            nodes = [f"n{i}" for i in range(nodes)]
        if not nodes:
            raise ConfigurationError("configuration needs 'nodes'")
        raw_messages = data.get("messages") or []
        messages = tuple(MessageSpec.from_dict(m, i) for i, m in enumerate(raw_messages))
        delivery = data.get("delivery") or {}
        try:
            settings = DeliverySettings(**delivery)
        except TypeError as e:
            raise ConfigurationError(f"bad delivery settings: {e}") from e
        return cls(
            nodes=tuple(str(n) for n in nodes),
            messages=messages,
            steps=int(data.get("steps", 1)),
            delivery=settings,
            enforce_shortage=bool(data.get("enforce_shortage", False)),
            require_all_sent=bool(data.get("require_all_sent", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "steps": self.steps,
            "messages": [
                {
                    "id": m.id,
                    "kind": m.kind.value,
                    "from": m.sender,
                    "to": list(m.recipients),
                    "concerns": m.concerns,
                }
                for m in self.messages
            ],
            "delivery": {
                "min_delay": self.delivery.min_delay,
                "max_delay": self.delivery.max_delay,
                "drop_prob": self.delivery.drop_prob,
                "seed": self.delivery.seed,
            },
            "enforce_shortage": self.enforce_shortage,
            "require_all_sent": self.require_all_sent,
        }

    def build_registry(self) -> MessageRegistry:
        """Fresh registry holding the configured pool, concerned messages first."""
        registry = MessageRegistry()
        pending: List[MessageSpec] = list(self.messages)
        while pending:
            rest = []
            for spec in pending:
                if spec.concerns is not None and spec.concerns not in registry:
                    rest.append(spec)
                    continue
                registry.create(spec.kind, spec.sender, spec.recipients, spec.concerns, spec.id)
            if len(rest) == len(pending):
                raise ConfigurationError(f"circular 'concerns' references among {[s.id for s in rest]}")
            pending = rest
        return registry


def load_config(path: Union[str, Path]) -> BusConfig:
    """Read a YAML configuration file."""
    try:
        with open(path) as fh:
            data = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigurationError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path} is not valid YAML: {e}") from e
    return BusConfig.from_dict(data or {})
