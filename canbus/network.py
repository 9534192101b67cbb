"""Simulated bus channel with pluggable delivery timing.

Key ideas:

- Transmitting a message schedules, for each recipient, the step at which it
  becomes visible in that recipient's in-channel. The base delivery is the
  step right after the send.
- Propagation delay is modelled by rules that rewrite the pending delivery
  list for each (sender, recipient) pair: add delay, drop, or cut pairs off
  with a partition.
- A message never lands on or before the step it was sent; the channel
  discards any rewritten delivery that would.
"""

import logging
import random
from typing import Dict, List, Optional, Set, Tuple

from .messages import Message
from .protocols import DeliveryRule
from .scheduler import StepClock, StepScheduler

logger = logging.getLogger(__name__)

Deliveries = List[int]


class SimChannel:
    """Step-driven broadcast medium.

    - `add_rule(rule)`: install a delivery rule (delay, drop, partition...).
    - `transmit(message, step)`: schedule delivery of `message` to each of
      its recipients, applying all rules in order.
    - `deliver_due()`: pop the (recipient, message id) pairs whose delivery
      step has been reached.
    """

    def __init__(self, scheduler: StepScheduler) -> None:
        self.scheduler = scheduler
        self.rules: List[DeliveryRule] = []
        self.stats = {
            "transmitted_messages": 0,
            "delivered_messages": 0,
            "dropped_messages": 0,
            "delayed_messages": 0,
        }

    def add_rule(self, rule: DeliveryRule) -> None:
        """Append a delivery rule to the pipeline.

        Rules are called with (sender, recipient, message, deliveries) so that
        timing can depend on the pair, for example under a partition.
        """
        self.rules.append(rule)

    def transmit(self, message: Message, step: int) -> None:
        self.stats["transmitted_messages"] += 1
        for recipient in sorted(message.recipients):
            deliveries: Deliveries = [step + 1]
            for rule in self.rules:
                deliveries = rule(message.sender, recipient, message, deliveries, stats=self.stats)
            deliveries = [at for at in deliveries if at > step]
            if not deliveries:
                logger.debug("%s to %s will never arrive", message.id, recipient)
                continue
            self.scheduler.call_at(min(deliveries), (recipient, message.id))

    def deliver_due(self) -> List[Tuple[str, str]]:
        due = self.scheduler.pop_due()
        self.stats["delivered_messages"] += len(due)
        return due

    def fork(self, clock: StepClock) -> "SimChannel":
        other = SimChannel(self.scheduler.fork(clock))
        other.rules = list(self.rules)
        other.stats = dict(self.stats)
        return other


def fixed_delay(steps: int = 1) -> DeliveryRule:
    """Return a rule that delivers exactly `steps` after the send (>= 1)."""
    if steps < 1:
        raise ValueError("delivery needs at least one step")

    def _rule(sender, recipient, message, deliveries: Deliveries, stats=None):
        return [at + steps - 1 for at in deliveries]

    return _rule


def _draw(seed, salt: str, message: Message, recipient: str, i: int) -> random.Random:
    # keyed on the delivery itself so every forked channel draws the same value
    return random.Random(f"{seed}:{salt}:{message.id}:{recipient}:{i}")


def delay(min_steps: int = 0, max_steps: int = 2, seed: Optional[int] = None) -> DeliveryRule:
    """Return a rule that adds a random delay in [min_steps, max_steps].

    The delay depends only on the seed, the message and the recipient.
    """
    if seed is None:
        seed = random.randrange(2**32)

    def _rule(sender, recipient, message, deliveries: Deliveries, stats=None):
        out = []
        for i, at in enumerate(deliveries):
            extra = _draw(seed, "delay", message, recipient, i).randint(min_steps, max_steps)
            if extra and stats is not None:
                stats["delayed_messages"] += 1
            out.append(at + extra)
        return out

    return _rule


def drop(p: float = 0.1, seed: Optional[int] = None) -> DeliveryRule:
    """Return a rule that drops each pending delivery with prob `p`."""
    if seed is None:
        seed = random.randrange(2**32)

    def _rule(sender, recipient, message, deliveries: Deliveries, stats=None):
        out = [at for i, at in enumerate(deliveries) if _draw(seed, "drop", message, recipient, i).random() >= p]
        if stats is not None:
            stats["dropped_messages"] += len(deliveries) - len(out)
        return out

    return _rule


def partition(cut: Set[Tuple[str, str]]) -> DeliveryRule:
    """Return a rule that blocks traffic for pairs in `cut`.

    The `cut` set contains undirected pairs like (`A`, `B`).
    """

    def _rule(sender, recipient, message, deliveries: Deliveries, stats=None):
        blocked = (sender, recipient) in cut or (recipient, sender) in cut
        out = [] if blocked else deliveries
        if stats is not None:
            stats["dropped_messages"] += len(deliveries) - len(out)
        return out

    return _rule


def build_rules(min_delay: int = 1, max_delay: int = 1, drop_prob: float = 0.0, seed=None) -> List[DeliveryRule]:
    """Translate delivery settings into a rule list (empty = next step)."""
    rules = []
    if min_delay > 1:
        rules.append(fixed_delay(min_delay))
    if max_delay > min_delay:
        rules.append(delay(0, max_delay - min_delay, seed=seed))
    if drop_prob > 0:
        rules.append(drop(drop_prob, seed=seed))
    return rules


def summary(stats: Dict[str, int]) -> str:
    return ", ".join(f"{k}={v}" for k, v in sorted(stats.items()))
