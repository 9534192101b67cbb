"""Tests for message creation and lifecycle bookkeeping."""

import pytest

from canbus.errors import (
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
from canbus.messages import FrameKind, Lifecycle, MessageRegistry


@pytest.fixture
def registry() -> MessageRegistry:
    reg = MessageRegistry()
    reg.create(FrameKind.DATA, "A", ["B", "C"], message_id="d0")
    reg.create("remote", "B", ["A"], message_id="r0")
    return reg


def test_create_assigns_ids_and_fixes_identity() -> None:
    """Generated ids are unique and the recipient set is frozen."""
    reg = MessageRegistry()
    first = reg.create("data", "A", ["B"])
    second = reg.create("data", "B", {"A"})
    assert first != second
    msg = reg.get(first)
    assert msg.kind == FrameKind.DATA
    assert msg.sender == "A"
    assert msg.recipients == frozenset({"B"})
    assert reg.read_on[first] == {"B": None}


def test_create_rejects_empty_or_self_addressed_recipients() -> None:
    reg = MessageRegistry()
    with pytest.raises(InvalidRecipientSet):
        reg.create("data", "A", [])
    with pytest.raises(InvalidRecipientSet):
        reg.create("data", "A", ["A", "B"])
    assert len(reg) == 0


def test_create_rejects_duplicate_ids_and_unknown_concerns(registry: MessageRegistry) -> None:
    with pytest.raises(DuplicateMessage):
        registry.create("data", "A", ["B"], message_id="d0")
    with pytest.raises(ConfigurationError):
        registry.create("error", "B", ["A"], concerns="nope")
    err = registry.create("error", "B", ["A"], concerns="d0")
    assert registry.get(err).concerns == "d0"


def test_mark_sent_only_once_and_only_from_pool(registry: MessageRegistry) -> None:
    registry.mark_sent("d0", 0, {"d0", "r0"})
    assert registry.sent_on["d0"] == 0

    with pytest.raises(AlreadySent) as exc:
        registry.mark_sent("d0", 1, {"r0"})
    assert exc.value.message_id == "d0"
    assert exc.value.step == 1

    with pytest.raises(NotAvailable):
        registry.mark_sent("r0", 1, set())
    with pytest.raises(UnknownMessage):
        registry.mark_sent("zz", 1, {"zz"})


def test_mark_read_checks_recipient_channel_and_repeat(registry: MessageRegistry) -> None:
    registry.mark_sent("d0", 0, {"d0"})

    with pytest.raises(NotRecipient) as exc:
        registry.mark_read("d0", "A", 1, {"d0"})
    assert exc.value.node == "A"

    with pytest.raises(NotInChannel):
        registry.mark_read("d0", "B", 1, set())

    registry.mark_read("d0", "B", 1, {"d0"})
    assert registry.read_on["d0"]["B"] == 1
    with pytest.raises(AlreadyRead):
        registry.mark_read("d0", "B", 2, {"d0"})


def test_liveness_and_lifecycle_follow_reads(registry: MessageRegistry) -> None:
    """Live from the send step until the step after the last recipient read."""
    assert not registry.is_live("d0", 0)
    assert registry.lifecycle("d0", 0) == Lifecycle.AVAILABLE

    registry.mark_sent("d0", 0, {"d0"})
    registry.mark_read("d0", "B", 2, {"d0"})
    registry.mark_read("d0", "C", 3, {"d0"})

    assert [registry.is_live("d0", t) for t in range(5)] == [True, True, True, True, False]
    assert [registry.lifecycle("d0", t) for t in range(5)] == [
        Lifecycle.SENT,
        Lifecycle.IN_TRANSIT,
        Lifecycle.READ,
        Lifecycle.READ,
        Lifecycle.RETIRED,
    ]


def test_fork_is_independent(registry: MessageRegistry) -> None:
    other = registry.fork()
    other.mark_sent("d0", 0, {"d0"})
    other.mark_read("d0", "B", 1, {"d0"})
    assert "d0" not in registry.sent_on
    assert registry.read_on["d0"]["B"] is None
    assert other.get("d0") is registry.get("d0")
