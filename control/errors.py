"""Exceptions raised by the peer-side control plane.

Addressing problems (unknown element, unknown verb) are never raised; the
engine reports them as failed ``ActionOutcome`` values. Only conditions the
immediate caller must handle surface as exceptions.
"""


class ControlError(Exception):
    """Base class for control-plane errors."""


class DuplicateElementError(ControlError):
    """An element id is registered while a node with that id is still present."""

    def __init__(self, element_id: str):
        super().__init__(f"Component already registered: {element_id}")
        self.element_id = element_id


class VerbTableError(ControlError):
    """A verb table entry is malformed (bad name, not callable, shadows a native verb)."""


class PlanInProgressError(ControlError):
    """A plan was submitted while another plan is still executing."""

    def __init__(self) -> None:
        super().__init__("Navigation already in progress")


class ConnectionInUseError(ControlError):
    """A channel to a different URL was requested while the current one still has owners."""
