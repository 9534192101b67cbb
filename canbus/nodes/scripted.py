from dataclasses import dataclass, field
from typing import Dict, Iterable, Tuple

from canbus.engine import IDLE, Decision

Script = Dict[int, Dict[str, Tuple[Iterable[str], Iterable[str]]]]


def _as_ids(items) -> Tuple[str, ...]:
    # a bare string is one message id
    return (items,) if isinstance(items, str) else tuple(items)


@dataclass
class ScriptedPolicy:
    """
    Replays a fixed plan: script[step][node] = (ids to send, ids to read).
    Nodes without an entry for a step stay idle.
    """

    script: Script = field(default_factory=dict)

    def plan(self, step: int, node: str, send=(), read=()) -> "ScriptedPolicy":
        self.script.setdefault(step, {})[node] = (_as_ids(send), _as_ids(read))
        return self

    def decide(self, node, step, in_channel, available, history=None):
        entry = self.script.get(step, {}).get(node)
        if entry is None:
            return IDLE
        send, read = entry
        return Decision(send=send, read=read)
