"""Interfaces (Protocols) that decouple node behaviour and delivery timing
from the step engine.

The engine only depends on these minimal abstractions, so scripted,
reactive or randomised nodes, and any delivery-delay model, can be swapped
in without touching the bookkeeping.
"""

from typing import TYPE_CHECKING, FrozenSet, List, Optional, Protocol

if TYPE_CHECKING:
    from .engine import Decision
    from .messages import Message
    from .trace import Trace


class NodePolicy(Protocol):
    """Decides, per node per step, what to transmit and what to consume."""

    def decide(
        self,
        node: str,
        step: int,
        in_channel: FrozenSet["Message"],
        available: FrozenSet["Message"],
        history: Optional["Trace"] = None,
    ) -> "Decision":
        """Return the node's `Decision` for `step`.

        `in_channel` holds the messages currently receivable by `node`;
        `available` is the global pool of not-yet-sent messages. `history`
        is the trace of earlier steps only (with the message catalogue): a
        node never observes another node's choice for the same step.
        """
        raise NotImplementedError


class DeliveryRule(Protocol):
    """Rewrites the pending delivery steps of one message to one recipient.

    `deliveries` is a list of step indices at which the message should land
    in the recipient's in-channel. Rules may push them later, or drop them;
    the channel discards anything not strictly after `sent_on`.
    """

    def __call__(
        self,
        sender: str,
        recipient: str,
        message: "Message",
        deliveries: List[int],
        stats=None,
    ) -> List[int]:
        raise NotImplementedError
