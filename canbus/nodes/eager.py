from dataclasses import dataclass, field
from typing import List, Set

from canbus.engine import Decision
from canbus.messages import FrameKind
from canbus.rules import Obligations, pending_obligations


@dataclass
class EagerController:
    """
    A well-behaved CAN controller. Every step it reads everything waiting in
    its channel, honours the obligations created by what it read on the
    previous step, and otherwise transmits its own frames in id order, up to
    `max_sends` per step.

    Obligations come first: after an Overload it stays silent, after a
    Remote it answers with one of its Data frames, after an Error it
    retransmits a Data frame to the failed recipients.
    """

    max_sends: int = 1
    verbose: bool = False
    # Obligations that could not be met from the pool
    unmet: List[str] = field(default_factory=list)

    def decide(self, node, step, in_channel, available, history=None):
        read = {m.id for m in in_channel}
        if history is not None:
            ob = pending_obligations(node, history.last, history.messages)
        else:
            ob = Obligations()
        if ob.idle:
            return Decision(send=(), read=read)

        own = sorted((m for m in available if m.sender == node), key=lambda m: m.id)
        send: Set[str] = set()
        data = [m for m in own if m.kind == FrameKind.DATA]
        for targets in sorted(ob.retransmit_to, key=sorted):
            match = next((m for m in data if m.recipients == targets and m.id not in send), None)
            if match is None:
                self.unmet.append(f"step {step}: no Data frame for {sorted(targets)}")
            else:
                send.add(match.id)
        if ob.reply_to and not any(m.kind == FrameKind.DATA for m in own if m.id in send):
            # Prefer a reply addressed to the requester
            replies = [m for m in data if m.id not in send]
            replies.sort(key=lambda m: (not (ob.reply_to & m.recipients), m.id))
            if replies:
                send.add(replies[0].id)
            else:
                self.unmet.append(f"step {step}: no Data frame to answer {sorted(ob.reply_to)}")

        for m in own:
            if len(send) >= self.max_sends:
                break
            send.add(m.id)

        if self.verbose:
            print(f"NODE {node} STEP {step}: send={sorted(send)} read={sorted(read)}")
        return Decision(send=send, read=read)
