"""Data model of the UI graph and of actions performed on it."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import config
from .verbs import VerbTable


class ElementType(str, Enum):
    PAGE = "page"
    BUTTON = "button"
    INPUT = "input"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    TOGGLE = "toggle"
    SLIDER = "slider"
    CARD = "card"
    DIALOG = "dialog"
    MODAL = "modal"
    POPOVER = "popover"
    LIST = "list"
    FORM = "form"
    TAB = "tab"
    ACCORDION = "accordion"
    MENU = "menu"
    DROPDOWN = "dropdown"


class ElementState(str, Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"
    DISABLED = "disabled"
    LOADING = "loading"
    ERROR = "error"
    FOCUSED = "focused"


NATIVE_VERBS = frozenset({
    "click", "type", "clear", "focus", "blur", "scroll",
    "open", "close", "select", "toggle", "hover", "submit",
})

# Element types whose open/close is state driven rather than click driven
STATEFUL_CONTAINERS = frozenset({ElementType.POPOVER, ElementType.MODAL, ElementType.DIALOG})


@dataclass
class ElementNode:
    """One addressable UI element.

    ``handle`` and ``verbs`` are process-local and never leave the peer;
    everything else is projected into the snapshot.
    """
    id: str
    type: ElementType
    label: str
    state: ElementState = ElementState.VISIBLE
    parent: Optional[str] = None
    children: list[str] = field(default_factory=list)
    available_actions: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    handle: Any = None
    verbs: VerbTable = field(default_factory=VerbTable)

    def to_snapshot(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "label": self.label,
            "parent": self.parent,
            "actions": list(self.available_actions),
            "currentState": self.state.value,
            "description": self.metadata.get("description"),
            "metadata": dict(self.metadata),
        }


@dataclass
class NavigationGraph:
    nodes: dict[str, ElementNode] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    visible: set[str] = field(default_factory=set)


@dataclass
class ActionStep:
    """One instruction against one element.

    ``wait`` is the settle delay in milliseconds. ``expected_result`` is
    carried along for logging and is not checked against the outcome.
    """
    component_id: str
    action: str
    value: Any = None
    wait: Optional[int] = None
    expected_result: Optional[dict] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "ActionStep":
        return cls(
            component_id=raw.get("componentId") or raw.get("component_id", ""),
            action=raw.get("action", ""),
            value=raw.get("value"),
            wait=raw.get("wait"),
            expected_result=raw.get("expectedResult") or raw.get("expected_result"),
        )

    def to_dict(self) -> dict:
        d = {"componentId": self.component_id, "action": self.action}
        if self.value is not None:
            d["value"] = self.value
        if self.wait is not None:
            d["wait"] = self.wait
        if self.expected_result is not None:
            d["expectedResult"] = self.expected_result
        return d


@dataclass
class ActionPlan:
    steps: list[ActionStep]
    description: str = ""

    @property
    def estimated_duration(self) -> int:
        """Sum of the steps' settle delays (ms), unset waits at the configured default."""
        default = config.DEFAULT_SETTLE_MS
        return sum(s.wait if s.wait is not None else default for s in self.steps)

    @classmethod
    def from_dict(cls, raw: dict) -> "ActionPlan":
        return cls(
            steps=[ActionStep.from_dict(s) for s in raw.get("steps") or []],
            description=raw.get("description", ""),
        )


@dataclass
class ActionOutcome:
    success: bool
    executed_steps: list[ActionStep] = field(default_factory=list)
    error: Optional[str] = None
    duration: int = 0
    final_state: Optional[dict] = None

    def to_dict(self) -> dict:
        """Wire shape of an ``action_result`` payload."""
        d: dict[str, Any] = {
            "success": self.success,
            "executedSteps": [s.to_dict() for s in self.executed_steps],
            "duration": self.duration,
        }
        if self.error is not None:
            d["error"] = self.error
        if self.final_state is not None:
            d["finalState"] = self.final_state
        return d
