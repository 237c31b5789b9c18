"""Verb tables and the live-element handle interface.

A verb table maps a verb name to a closure supplied by the hosting UI layer.
Three keys are standard state setters the engine's native dispatch knows
about:

    open(bool)   - show/hide a popover, modal or dialog
    value(any)   - write the element's value
    focus()      - move focus to the element

Any other key is a custom verb, invoked by name with the step's value.
Tables are validated when they are built, so a misspelled or non-callable
entry fails at registration instead of at the first action request.
"""

from __future__ import annotations

from typing import Any, Callable, Iterator, Mapping, Optional, Protocol

from .errors import VerbTableError


# Native verb names a custom verb may not reuse (state setters excepted)
_RESERVED = frozenset({
    "click", "type", "clear", "blur", "scroll",
    "close", "select", "toggle", "hover", "submit",
})


class ElementHandle(Protocol):
    """Live element exposed by the hosting UI layer.

    Every method is optional; a missing method makes the matching native
    verb unavailable through the handle. ``kind`` names the underlying
    widget ("input", "textarea", "select", "checkbox", "form", ...).
    """

    kind: str

    def click(self) -> None: ...

    def set_value(self, value: Any) -> None:
        """Write the value and raise the change notification the UI listens to."""

    def focus(self) -> None: ...

    def blur(self) -> None: ...

    def scroll_into_view(self, options: Optional[dict] = None) -> None: ...

    def hover(self) -> None: ...

    def submit(self) -> None: ...

    def toggle(self) -> None: ...

    def select(self, value: Any) -> None: ...


class VerbTable(Mapping[str, Callable[..., Any]]):
    """Validated, read-only verb name → callable mapping."""

    def __init__(self, verbs: Optional[Mapping[str, Callable[..., Any]]] = None):
        self._verbs: dict[str, Callable[..., Any]] = {}
        for name, fn in (verbs or {}).items():
            if not isinstance(name, str) or not name.isidentifier():
                raise VerbTableError(f"Invalid verb name: {name!r}")
            if name in _RESERVED:
                raise VerbTableError(
                    f"Verb '{name}' is a native action and cannot be overridden"
                )
            if not callable(fn):
                raise VerbTableError(f"Verb '{name}' is not callable: {fn!r}")
            self._verbs[name] = fn

    def __getitem__(self, name: str) -> Callable[..., Any]:
        return self._verbs[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._verbs)

    def __len__(self) -> int:
        return len(self._verbs)

    def __repr__(self) -> str:
        return f"VerbTable({sorted(self._verbs)})"


def has_method(handle: Any, name: str) -> bool:
    return handle is not None and callable(getattr(handle, name, None))
