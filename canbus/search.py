"""Bounded witness search over node decisions.

The engine produces one trace per set of policy decisions. To ask whether
*some* protocol-valid trace of a given size satisfies a predicate, we
enumerate per-step `(sent, read)` choices for every node, depth first,
forking the engine at each branch and pruning any branch the engine rejects.

The search is bounded by the step count, the message pool and an
exploration limit. Finding nothing is reported as `NO_WITNESS`, which means
"none within the bound", not a proof.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from itertools import chain, combinations, product
from typing import Callable, Iterator, List, Optional, Sequence

from .engine import Decision, Engine
from .errors import ProtocolViolation
from .rules import bus_overloaded
from .trace import Trace
from .validators import read_in_order

logger = logging.getLogger(__name__)

Predicate = Callable[[Trace], bool]


class SearchStatus(str, Enum):
    WITNESS_FOUND = "witness_found"
    NO_WITNESS = "no_witness"


@dataclass
class SearchResult:
    """
    Outcome of a bounded search.

    Attributes
    ----------
    status:
        `WITNESS_FOUND` with `witness` set, or `NO_WITNESS`.
    explored:
        Number of complete, protocol-valid traces evaluated.
    truncated:
        True when the exploration limit stopped the search early.
    """

    status: SearchStatus
    witness: Optional[Trace] = None
    explored: int = 0
    truncated: bool = False

    @property
    def found(self) -> bool:
        return self.status == SearchStatus.WITNESS_FOUND

    def to_dict(self):
        return {
            "status": self.status.value,
            "explored": self.explored,
            "truncated": self.truncated,
            "witness": self.witness.to_dict() if self.witness else None,
        }


def _subsets(items: Sequence[str], limit: Optional[int] = None) -> Iterator[frozenset]:
    top = len(items) if limit is None else min(limit, len(items))
    return (frozenset(c) for c in chain.from_iterable(combinations(items, k) for k in range(top + 1)))


def _choices(engine: Engine, node: str, max_sends: Optional[int]) -> List[Decision]:
    if bus_overloaded(engine.trace.last, engine.catalogue):
        own = []
    else:
        own = sorted(m for m in engine.available if engine.catalogue[m].sender == node)
    readable = sorted(engine.inbox[node])
    return [Decision(send=s, read=r) for s in _subsets(own, max_sends) for r in _subsets(readable)]


class _Search:
    def __init__(self, predicate: Predicate, limit: int, max_sends: Optional[int]) -> None:
        self.predicate = predicate
        self.limit = limit
        self.max_sends = max_sends
        self.explored = 0
        self.truncated = False

    def explore(self, engine: Engine) -> Optional[Trace]:
        if engine.done:
            try:
                engine.finish()
            except ProtocolViolation:
                return None
            self.explored += 1
            return engine.trace if self.predicate(engine.trace) else None

        per_node = [_choices(engine, node, self.max_sends) for node in engine.nodes]
        for combo in product(*per_node):
            if self.explored >= self.limit:
                self.truncated = True
                return None
            child = engine.fork()
            try:
                child.commit(dict(zip(engine.nodes, combo)))
            except ProtocolViolation:
                continue
            found = self.explore(child)
            if found is not None:
                return found
        return None


def find_witness(
    source,
    predicate: Predicate,
    steps: Optional[int] = None,
    limit: int = 100_000,
    max_sends_per_node: Optional[int] = None,
) -> SearchResult:
    """Search for a valid trace of `steps` steps satisfying `predicate`.

    `source` is a `BusConfig` or an `Engine`; an engine is forked, so the
    search starts from its current state and leaves it untouched.
    """
    engine = source.fork() if isinstance(source, Engine) else Engine.from_config(source)
    if steps is not None:
        engine.steps = steps
    if engine.steps is None:
        raise ValueError("search needs a step bound")

    search = _Search(predicate, limit, max_sends_per_node)
    witness = search.explore(engine)
    status = SearchStatus.WITNESS_FOUND if witness is not None else SearchStatus.NO_WITNESS
    logger.info(
        "search %s after %d traces%s",
        status.value,
        search.explored,
        " (limit reached)" if search.truncated else "",
    )
    return SearchResult(status, witness, search.explored, search.truncated)


def check_property(source, prop: Predicate, **kwargs) -> SearchResult:
    """Look for a counterexample to `prop`.

    `NO_WITNESS` means the property held on every trace within the bound.
    """
    return find_witness(source, lambda trace: not prop(trace), **kwargs)


def num_of_state(source, **kwargs) -> SearchResult:
    """Any protocol-valid trace of the requested size."""
    return find_witness(source, lambda trace: True, **kwargs)


def out_of_order(source, **kwargs) -> SearchResult:
    """A valid trace in which some receiver reads one sender's messages out of send order."""
    return find_witness(source, lambda trace: not read_in_order(trace), **kwargs)


QUERIES = {
    "num_of_state": num_of_state,
    "out_of_order": out_of_order,
}
