"""Error taxonomy for the bus model.

Two families matter:

- `ConfigurationError`: the setup handed to the simulator is unusable (too few
  nodes, unknown recipients, malformed files). Raised before a run starts.
- `ProtocolViolation`: an invariant breach observed while a trace is being
  generated. Every violation names the broken invariant and, where it
  applies, the offending message, node and step, so that callers (the
  engine, the search layer) can report it or prune on it.
"""

from typing import Optional


class CanBusError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(CanBusError):
    """Invalid node/message setup or unreadable configuration/trace input."""


class ProtocolViolation(CanBusError):
    """A step would break one of the bus invariants."""

    invariant = "protocol"

    def __init__(
        self,
        message_id: Optional[str] = None,
        node: Optional[str] = None,
        step: Optional[int] = None,
        detail: str = "",
    ) -> None:
        self.message_id = message_id
        self.node = node
        self.step = step
        self.detail = detail
        super().__init__(self.describe())

    def describe(self) -> str:
        parts = [self.invariant]
        if self.message_id is not None:
            parts.append(f"message={self.message_id}")
        if self.node is not None:
            parts.append(f"node={self.node}")
        if self.step is not None:
            parts.append(f"step={self.step}")
        text = " ".join(parts)
        return f"{text}: {self.detail}" if self.detail else text

    def to_dict(self):
        return {
            "invariant": self.invariant,
            "message_id": self.message_id,
            "node": self.node,
            "step": self.step,
            "detail": self.detail,
        }


class InvalidRecipientSet(ProtocolViolation, ConfigurationError):
    invariant = "invalid_recipient_set"


class DuplicateMessage(ConfigurationError):
    """A message id was registered twice."""


class UnknownMessage(ProtocolViolation):
    invariant = "unknown_message"


class AlreadySent(ProtocolViolation):
    invariant = "already_sent"


class NotAvailable(ProtocolViolation):
    invariant = "not_available"


class NotRecipient(ProtocolViolation):
    invariant = "not_recipient"


class NotInChannel(ProtocolViolation):
    invariant = "not_in_channel"


class AlreadyRead(ProtocolViolation):
    invariant = "already_read"


class SenderMismatch(ProtocolViolation):
    invariant = "sender_mismatch"


class OverloadNotHonoured(ProtocolViolation):
    invariant = "overload_not_honoured"


class RemoteNotAnswered(ProtocolViolation):
    invariant = "remote_not_answered"


class ErrorNotRetransmitted(ProtocolViolation):
    invariant = "error_not_retransmitted"


class MessageShortage(ProtocolViolation):
    invariant = "message_shortage"


class NeverSent(ProtocolViolation):
    invariant = "never_sent"


class TraceComplete(CanBusError):
    """The engine already produced every configured step."""
