"""Action engine: turns verbs into effects on registered elements.

Native verbs have a fixed dispatch policy that prefers the element's live
handle and falls back to its state-setter verbs; popovers, modals and
dialogs always go through the ``open`` setter since their visibility is
state driven. Every other verb name is looked up in the element's custom
verb table.

``execute_step`` never raises for addressing problems; it returns a failed
``ActionOutcome``. ``execute_plan`` raises ``PlanInProgressError`` when a
plan is already running.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import config
from .errors import PlanInProgressError
from .registry import ElementRegistry
from .types import (
    NATIVE_VERBS,
    STATEFUL_CONTAINERS,
    ActionOutcome,
    ActionPlan,
    ActionStep,
    ElementNode,
    ElementState,
)
from .verbs import has_method

logger = logging.getLogger("uipilot")

_TEXT_KINDS = frozenset({"input", "textarea"})


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _invoke(fn: Callable[..., Any], *args: Any) -> Any:
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class ActionEngine:
    def __init__(self, registry: ElementRegistry, default_wait: Optional[int] = None):
        self.registry = registry
        self.default_wait = config.DEFAULT_SETTLE_MS if default_wait is None else default_wait
        self._plan_running = False
        self._history: list[ActionStep] = []
        self._native: dict[str, Callable[[ElementNode, Any], Awaitable[bool]]] = {
            "click": self._click,
            "open": self._click,
            "close": self._close,
            "type": self._type,
            "clear": self._clear,
            "select": self._select,
            "toggle": self._toggle,
            "focus": self._focus,
            "blur": self._blur,
            "scroll": self._scroll,
            "hover": self._hover,
            "submit": self._submit,
        }

    @property
    def busy(self) -> bool:
        """True while a plan is executing."""
        return self._plan_running

    @property
    def history(self) -> list[ActionStep]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    # ------------------------------------------------------------------
    # Steps and plans
    # ------------------------------------------------------------------

    async def execute_step(self, step: ActionStep) -> ActionOutcome:
        start = time.monotonic()
        node = self.registry.get(step.component_id)
        if node is None:
            logger.warning(f"[Engine] Component not found: {step.component_id}")
            return ActionOutcome(
                success=False,
                error=f"Component not found: {step.component_id}",
                duration=_elapsed_ms(start),
            )

        try:
            if step.action in NATIVE_VERBS:
                handled = await self._native[step.action](node, step.value)
                if not handled:
                    return ActionOutcome(
                        success=False,
                        error=f"Action '{step.action}' is not supported by component '{node.id}'",
                        duration=_elapsed_ms(start),
                    )
            else:
                verb = node.verbs.get(step.action)
                if verb is None:
                    return ActionOutcome(
                        success=False,
                        error=f"Unknown action: {step.action}",
                        duration=_elapsed_ms(start),
                    )
                if step.value is not None:
                    await _invoke(verb, step.value)
                else:
                    await _invoke(verb)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[Engine] {step.action} on '{node.id}' failed: {e}")
            return ActionOutcome(success=False, error=str(e), duration=_elapsed_ms(start))

        wait = self.default_wait if step.wait is None else step.wait
        if wait > 0:
            await asyncio.sleep(wait / 1000)
        if step.expected_result is not None:
            logger.debug(f"[Engine] Expected result for '{node.id}' (not verified): {step.expected_result}")

        self._history.append(step)
        logger.debug(f"[Engine] {step.action} on '{node.id}' ok")
        return ActionOutcome(success=True, executed_steps=[step], duration=_elapsed_ms(start))

    async def execute_plan(self, plan: ActionPlan) -> ActionOutcome:
        """Run *plan* step by step, stopping at the first failure.

        Raises ``PlanInProgressError`` without touching the running plan if
        another plan is executing.
        """
        if self._plan_running:
            raise PlanInProgressError()
        self._plan_running = True
        start = time.monotonic()
        executed: list[ActionStep] = []
        try:
            if plan.description:
                logger.debug(f"[Engine] Plan: {plan.description} ({len(plan.steps)} steps)")
            for step in plan.steps:
                outcome = await self.execute_step(step)
                if not outcome.success:
                    return ActionOutcome(
                        success=False,
                        executed_steps=executed,
                        error=f"Failed to execute step: {step.action} on {step.component_id}"
                              + (f" ({outcome.error})" if outcome.error else ""),
                        duration=_elapsed_ms(start),
                    )
                executed.append(step)
            return ActionOutcome(
                success=True,
                executed_steps=executed,
                duration=_elapsed_ms(start),
                final_state=self.registry.export_snapshot(),
            )
        finally:
            self._plan_running = False

    # ------------------------------------------------------------------
    # Native dispatch policies. Each returns False when the element offers
    # neither a compatible handle method nor a fitting state setter.
    # ------------------------------------------------------------------

    async def _click(self, node: ElementNode, _value: Any) -> bool:
        opener = node.verbs.get("open")
        if node.type in STATEFUL_CONTAINERS:
            if opener is None:
                return False
            await _invoke(opener, True)
            return True
        if has_method(node.handle, "click"):
            node.handle.click()
            return True
        if opener is not None:
            await _invoke(opener, True)
            return True
        return False

    async def _close(self, node: ElementNode, _value: Any) -> bool:
        opener = node.verbs.get("open")
        if opener is not None:
            await _invoke(opener, False)
            return True
        for child in self.registry.children_of(node.id):
            if "close" in child.label.lower():
                return await self._click(child, None)
        return False

    async def _type(self, node: ElementNode, value: Any) -> bool:
        text = "" if value is None else value
        setter = node.verbs.get("value")
        if setter is not None:
            await _invoke(setter, text)
            return True
        if has_method(node.handle, "set_value") and getattr(node.handle, "kind", "") in _TEXT_KINDS:
            node.handle.set_value(text)
            return True
        return False

    async def _clear(self, node: ElementNode, _value: Any) -> bool:
        return await self._type(node, "")

    async def _select(self, node: ElementNode, value: Any) -> bool:
        setter = node.verbs.get("value")
        if setter is not None:
            await _invoke(setter, value)
            return True
        if getattr(node.handle, "kind", "") == "select":
            if has_method(node.handle, "select"):
                node.handle.select(value)
                return True
            if has_method(node.handle, "set_value"):
                node.handle.set_value(value)
                return True
        return False

    async def _toggle(self, node: ElementNode, _value: Any) -> bool:
        setter = node.verbs.get("value")
        if setter is not None:
            await _invoke(setter, not node.metadata.get("value"))
            return True
        if getattr(node.handle, "kind", "") == "checkbox" and has_method(node.handle, "toggle"):
            node.handle.toggle()
            return True
        return False

    async def _focus(self, node: ElementNode, _value: Any) -> bool:
        setter = node.verbs.get("focus")
        if setter is not None:
            await _invoke(setter)
            return True
        if has_method(node.handle, "focus"):
            node.handle.focus()
            self.registry.update_state(node.id, state=ElementState.FOCUSED)
            return True
        return False

    async def _blur(self, node: ElementNode, _value: Any) -> bool:
        if has_method(node.handle, "blur"):
            node.handle.blur()
            self.registry.update_state(node.id, state=ElementState.VISIBLE)
            return True
        return False

    async def _scroll(self, node: ElementNode, _value: Any) -> bool:
        if has_method(node.handle, "scroll_into_view"):
            node.handle.scroll_into_view({"behavior": "smooth", "block": "center"})
            return True
        return False

    async def _hover(self, node: ElementNode, _value: Any) -> bool:
        if has_method(node.handle, "hover"):
            node.handle.hover()
            return True
        return False

    async def _submit(self, node: ElementNode, _value: Any) -> bool:
        if getattr(node.handle, "kind", "") == "form" and has_method(node.handle, "submit"):
            node.handle.submit()
            return True
        for child in self.registry.children_of(node.id):
            if child.metadata.get("type") == "submit":
                return await self._click(child, None)
        return False
