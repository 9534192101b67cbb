"""Discrete, lock-step model of message exchange on a CAN bus."""

from .engine import Decision, Engine, SimulationResult
from .errors import CanBusError, ConfigurationError, ProtocolViolation
from .messages import FrameKind, Message, MessageRegistry
from .trace import TimeStep, Trace

__all__ = [
    "CanBusError",
    "ConfigurationError",
    "Decision",
    "Engine",
    "FrameKind",
    "Message",
    "MessageRegistry",
    "ProtocolViolation",
    "SimulationResult",
    "TimeStep",
    "Trace",
]
