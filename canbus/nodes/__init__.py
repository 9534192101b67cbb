"""Node policies: how a bus participant decides what to send and read."""

from .eager import EagerController
from .random_controller import RandomController
from .scripted import ScriptedPolicy

POLICIES = {
    "eager": EagerController,
    "random": RandomController,
}

__all__ = [
    "EagerController",
    "POLICIES",
    "RandomController",
    "ScriptedPolicy",
]
