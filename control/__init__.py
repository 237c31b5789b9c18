"""Peer side of the UI control plane: element registry, action engine and session channel."""

from .channel import PeerChannel
from .connection_manager import ConnectionManager
from .engine import ActionEngine
from .errors import (
    ConnectionInUseError,
    ControlError,
    DuplicateElementError,
    PlanInProgressError,
    VerbTableError,
)
from .registry import ElementRegistry
from .types import (
    ActionOutcome,
    ActionPlan,
    ActionStep,
    ElementNode,
    ElementState,
    ElementType,
    NavigationGraph,
)
from .verbs import ElementHandle, VerbTable

__all__ = [
    "ActionEngine",
    "ActionOutcome",
    "ActionPlan",
    "ActionStep",
    "ConnectionInUseError",
    "ConnectionManager",
    "ControlError",
    "DuplicateElementError",
    "ElementHandle",
    "ElementNode",
    "ElementRegistry",
    "ElementState",
    "ElementType",
    "NavigationGraph",
    "PeerChannel",
    "PlanInProgressError",
    "VerbTable",
]
