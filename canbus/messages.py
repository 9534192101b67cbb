"""Message records and the registry that tracks their lifecycle.

A message is created once with a fixed kind, sender and recipient set, and
is never deleted: it only moves forward through

    available -> sent -> in transit -> read -> retired

The registry stores the two timestamps that drive this progression
(`sent_on`, set exactly once, and a per-recipient `read_on`). Everything
else, including retirement, is derived from them.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional

from .errors import (
    AlreadyRead,
    AlreadySent,
    ConfigurationError,
    DuplicateMessage,
    InvalidRecipientSet,
    NotAvailable,
    NotInChannel,
    NotRecipient,
    UnknownMessage,
)

logger = logging.getLogger(__name__)


class FrameKind(str, Enum):
    """
    CAN frame types. Mutually exclusive and fixed at creation.

    ``DATA``
        Carries a payload; the only kind that satisfies reply and
        retransmission obligations.

    ``REMOTE``
        Requests data; the reader owes a Data frame on the next step.

    ``ERROR``
        Reports a failed transfer; the reader owes a Data retransmission to
        the recipients of the failed message on the next step.

    ``OVERLOAD``
        Asks for a pause; nobody may transmit on the step after it is read.
    """

    DATA = "data"
    REMOTE = "remote"
    ERROR = "error"
    OVERLOAD = "overload"


class Lifecycle(str, Enum):
    AVAILABLE = "available"
    SENT = "sent"
    IN_TRANSIT = "in_transit"
    READ = "read"
    RETIRED = "retired"


@dataclass(frozen=True)
class MessageState:
    """Sender and intended recipients of a message."""

    sender: str
    recipients: FrozenSet[str]


@dataclass(frozen=True)
class Message:
    """
    Immutable identity and content of one frame.

    Parameters
    ----------
    id:
        Unique message identifier within a run.
    kind:
        The `FrameKind`.
    state:
        `MessageState` with sender and recipients.
    concerns:
        For Error frames, the id of the message whose transfer failed. The
        retransmission obligation targets that message's recipients.
    """

    id: str
    kind: FrameKind
    state: MessageState
    concerns: Optional[str] = None

    @property
    def sender(self) -> str:
        return self.state.sender

    @property
    def recipients(self) -> FrozenSet[str]:
        return self.state.recipients

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "from": self.sender,
            "to": sorted(self.recipients),
            "concerns": self.concerns,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "Message":
        return cls(
            id=str(data["id"]),
            kind=FrameKind(data["kind"]),
            state=MessageState(str(data["from"]), frozenset(data["to"])),
            concerns=data.get("concerns"),
        )


def retransmission_targets(error: Message, catalogue: Mapping[str, Message]) -> FrozenSet[str]:
    """Recipient set an Error frame asks to be served again.

    The recipients of the concerned message when the frame names one,
    otherwise the node that raised the error.
    """
    if error.concerns is not None and error.concerns in catalogue:
        return catalogue[error.concerns].recipients
    return frozenset({error.sender})


@dataclass
class MessageRegistry:
    """
    Owns every message of a run and its lifecycle timestamps.

    Attributes
    ----------
    sent_on:
        message id -> step at which it went onto the bus.
    read_on:
        message id -> {recipient -> step or None}. Only intended recipients
        have an entry.
    """

    _messages: Dict[str, Message] = field(default_factory=dict)
    sent_on: Dict[str, int] = field(default_factory=dict)
    read_on: Dict[str, Dict[str, Optional[int]]] = field(default_factory=dict)
    _counter: int = 0

    def create(
        self,
        kind,
        sender: str,
        recipients: Iterable[str],
        concerns: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> str:
        """Register a new message and return its id."""
        to = frozenset(recipients)
        if not to:
            raise InvalidRecipientSet(message_id, sender, detail="recipient set is empty")
        if sender in to:
            raise InvalidRecipientSet(
                message_id, sender, detail="sender cannot be one of its own recipients"
            )
        if concerns is not None and concerns not in self._messages:
            raise ConfigurationError(
                f"message {message_id!r} concerns unknown message {concerns!r}"
            )
        if message_id is None:
            while f"m{self._counter}" in self._messages:
                self._counter += 1
            message_id = f"m{self._counter}"
            self._counter += 1
        elif message_id in self._messages:
            raise DuplicateMessage(f"message id {message_id!r} already registered")

        self._messages[message_id] = Message(
            message_id, FrameKind(kind), MessageState(sender, to), concerns
        )
        self.read_on[message_id] = {n: None for n in to}
        logger.debug("created %s %s %s -> %s", message_id, FrameKind(kind).value, sender, sorted(to))
        return message_id

    def get(self, message_id: str) -> Message:
        try:
            return self._messages[message_id]
        except KeyError:
            raise UnknownMessage(message_id, detail="no such message") from None

    def __contains__(self, message_id) -> bool:
        return message_id in self._messages

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages.values())

    def __len__(self) -> int:
        return len(self._messages)

    def ids(self) -> List[str]:
        return list(self._messages)

    def catalogue(self) -> Dict[str, Message]:
        return dict(self._messages)

    def mark_sent(self, message_id: str, step: int, available: Iterable[str]) -> None:
        """Record that `message_id` went onto the bus at `step`."""
        self.get(message_id)
        if message_id in self.sent_on:
            raise AlreadySent(
                message_id,
                step=step,
                detail=f"already sent on step {self.sent_on[message_id]}",
            )
        if message_id not in available:
            raise NotAvailable(message_id, step=step, detail="not in the available pool")
        self.sent_on[message_id] = step

    def mark_read(self, message_id: str, node: str, step: int, in_channel: Iterable[str]) -> None:
        """Record that `node` consumed `message_id` at `step`."""
        msg = self.get(message_id)
        if node not in msg.recipients:
            raise NotRecipient(message_id, node, step, "node is not an intended recipient")
        if message_id not in in_channel:
            raise NotInChannel(message_id, node, step, "message is not in the node's channel")
        previous = self.read_on[message_id][node]
        if previous is not None:
            raise AlreadyRead(message_id, node, step, f"already read on step {previous}")
        self.read_on[message_id][node] = step

    def is_live(self, message_id: str, step: int) -> bool:
        """Sent at or before `step` and not read by every recipient before it."""
        self.get(message_id)
        sent = self.sent_on.get(message_id)
        if sent is None or sent > step:
            return False
        return any(r is None or r >= step for r in self.read_on[message_id].values())

    def lifecycle(self, message_id: str, step: int) -> Lifecycle:
        self.get(message_id)
        sent = self.sent_on.get(message_id)
        if sent is None or sent > step:
            return Lifecycle.AVAILABLE
        if sent == step:
            return Lifecycle.SENT
        reads = [r for r in self.read_on[message_id].values() if r is not None and r <= step]
        if not reads:
            return Lifecycle.IN_TRANSIT
        # retired from the step after the last recipient read it
        if len(reads) == len(self.read_on[message_id]) and max(reads) < step:
            return Lifecycle.RETIRED
        return Lifecycle.READ

    def unsent(self) -> List[str]:
        return [mid for mid in self._messages if mid not in self.sent_on]

    def fork(self) -> "MessageRegistry":
        """Independent copy of the bookkeeping; message records are shared."""
        return MessageRegistry(
            _messages=dict(self._messages),
            sent_on=dict(self.sent_on),
            read_on=copy.deepcopy(self.read_on),
            _counter=self._counter,
        )
