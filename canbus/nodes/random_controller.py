from dataclasses import dataclass, field
import random
from typing import Optional

from canbus.engine import Decision
from canbus.messages import FrameKind
from canbus.rules import pending_obligations


@dataclass
class RandomController:
    """
    Randomised node for fuzzing the rule checker. Sends and reads each
    candidate message with a fixed probability. With `honour_obligations`
    it still stays silent after an Overload and adds the Data frames owed
    after Remote/Error reads when the pool has them; without it, it will
    happily break the protocol.
    """

    seed: Optional[int] = None
    send_prob: float = 0.5
    read_prob: float = 0.5
    honour_obligations: bool = True
    rng: random.Random = field(init=False, repr=False)

    def __post_init__(self):
        self.rng = random.Random(self.seed)

    def decide(self, node, step, in_channel, available, history=None):
        read = {m.id for m in sorted(in_channel, key=lambda m: m.id) if self.rng.random() < self.read_prob}
        own = sorted((m for m in available if m.sender == node), key=lambda m: m.id)
        send = {m.id for m in own if self.rng.random() < self.send_prob}
        if not self.honour_obligations or history is None:
            return Decision(send=send, read=read)

        ob = pending_obligations(node, history.last, history.messages)
        if ob.idle:
            return Decision(send=(), read=read)
        data = [m for m in own if m.kind == FrameKind.DATA]
        for targets in ob.retransmit_to:
            match = next((m for m in data if m.recipients == targets), None)
            if match is not None:
                send.add(match.id)
        if ob.reply_to and data and not any(m.id in send for m in data):
            send.add(data[0].id)
        return Decision(send=send, read=read)
