"""Frame-type reaction rules.

Reading certain frames creates obligations for the very next step:

- Overload read by anyone at t: nobody sends at t+1.
- Remote read by node n at t: n sends a Data frame at t+1.
- Error read by node n at t: n sends, at t+1, a Data frame addressed to the
  recipients of the message the error concerns.

The checker verifies an obligation by looking at the sends proposed for the
next step. An obligation created on the final step of a trace has no next
step to be checked against.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional, Set

from .errors import (
    ErrorNotRetransmitted,
    MessageShortage,
    OverloadNotHonoured,
    RemoteNotAnswered,
)
from .messages import FrameKind, Message, retransmission_targets
from .trace import TimeStep

logger = logging.getLogger(__name__)


@dataclass
class Obligations:
    """What one node owes on the step after `previous`."""

    idle: bool = False
    reply_to: Set[str] = field(default_factory=set)
    retransmit_to: Set[FrozenSet[str]] = field(default_factory=set)

    def __bool__(self) -> bool:
        return self.idle or bool(self.reply_to) or bool(self.retransmit_to)


def bus_overloaded(previous: Optional[TimeStep], catalogue: Mapping[str, Message]) -> bool:
    """True when some node read an Overload frame on `previous`."""
    if previous is None:
        return False
    return any(catalogue[mid].kind == FrameKind.OVERLOAD for mid in previous.all_read())


def pending_obligations(
    node: str, previous: Optional[TimeStep], catalogue: Mapping[str, Message]
) -> Obligations:
    ob = Obligations(idle=bus_overloaded(previous, catalogue))
    if previous is None:
        return ob
    for mid in previous.read.get(node, ()):
        msg = catalogue[mid]
        if msg.kind == FrameKind.REMOTE:
            ob.reply_to.add(msg.sender)
        elif msg.kind == FrameKind.ERROR:
            ob.retransmit_to.add(retransmission_targets(msg, catalogue))
    return ob


class RuleChecker:
    """Validates the sends of step t+1 against the reads of step t.

    `enforce_shortage` additionally rejects a step whose declared demand
    (`needs_to_send` summed over nodes) exceeds the available pool.
    """

    def __init__(self, enforce_shortage: bool = False) -> None:
        self.enforce_shortage = enforce_shortage

    def check_transition(
        self,
        previous: Optional[TimeStep],
        sends: Mapping[str, FrozenSet[str]],
        catalogue: Mapping[str, Message],
        step: int,
    ) -> None:
        if previous is None:
            return

        if bus_overloaded(previous, catalogue):
            logger.debug("step %d: bus idle after Overload read on step %d", step, previous.index)
            for node, ids in sorted(sends.items()):
                if ids:
                    raise OverloadNotHonoured(
                        min(ids), node, step, "bus must stay idle after an Overload frame"
                    )

        for node in previous.read:
            ob = pending_obligations(node, previous, catalogue)
            data_sent = [catalogue[mid] for mid in sends.get(node, ()) if catalogue[mid].kind == FrameKind.DATA]
            if ob.reply_to and not data_sent:
                raise RemoteNotAnswered(
                    node=node,
                    step=step,
                    detail=f"owes a Data frame after Remote from {sorted(ob.reply_to)}",
                )
            for targets in sorted(ob.retransmit_to, key=sorted):
                if not any(m.recipients == targets for m in data_sent):
                    raise ErrorNotRetransmitted(
                        node=node,
                        step=step,
                        detail=f"owes a Data retransmission to {sorted(targets)}",
                    )

    def check_shortage(self, snapshot: TimeStep, terminal: bool) -> None:
        if not self.enforce_shortage or terminal:
            return
        demand = sum(len(ids) for ids in snapshot.needs_to_send.values())
        if demand > len(snapshot.available):
            raise MessageShortage(
                step=snapshot.index,
                detail=f"demand {demand} exceeds available pool {len(snapshot.available)}",
            )
