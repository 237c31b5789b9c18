"""
Loop guard for the chat-turn agentic loop.

Bounds a turn with:
  - A hard iteration limit (one iteration = one model call that requested tools).
  - Per-(tool, args) duplicate tracking with escalating warnings, so a model
    that keeps re-issuing the same action is told so in the tool result.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class DupVerdict:
    """Result of duplicate-call tracking for a single tool invocation.

    Attributes:
        count: Total times this (name, args) has been seen (including this call).
        warning: Warning text to inject into the result dict, or None.
    """
    count: int
    warning: str | None


class LoopGuard:
    """Bounds the agentic loop of one chat turn.

    Usage:
        guard = LoopGuard(max_iterations=25)

        while guard.next_iteration():
            response = await session.send(...)
            if not response.tool_calls:
                break
            for tc in response.tool_calls:
                verdict = guard.record_tool_call(tc.name, tc.args)
                ...
    """

    def __init__(self, max_iterations: int = 25, dup_free_passes: int = 2):
        self.max_iterations = max_iterations
        self.iterations = 0
        self._dup_free_passes = dup_free_passes
        self._dup_counts: dict[tuple[str, str], int] = {}

    def next_iteration(self) -> bool:
        """Claim the next iteration; False once the cap is exhausted."""
        if self.iterations >= self.max_iterations:
            return False
        self.iterations += 1
        return True

    @property
    def exhausted(self) -> bool:
        return self.iterations >= self.max_iterations

    # ------------------------------------------------------------------
    # Duplicate call tracking
    # ------------------------------------------------------------------

    @staticmethod
    def _dedup_key(name: str, args: dict | None) -> tuple[str, str]:
        try:
            args_str = json.dumps(args or {}, sort_keys=True, default=str)
        except (TypeError, ValueError):
            args_str = str(sorted((args or {}).items()))
        return (name, args_str)

    def record_tool_call(self, name: str, args: dict | None) -> DupVerdict:
        """Record a tool call and return its duplicate verdict.

        Read-only tools are repeated legitimately (re-reading UI state after
        an action), so callers only pass actions they want tracked.
        """
        key = self._dedup_key(name, args)
        count = self._dup_counts.get(key, 0) + 1
        self._dup_counts[key] = count
        if count <= self._dup_free_passes:
            return DupVerdict(count=count, warning=None)
        return DupVerdict(
            count=count,
            warning=(
                f"You have called '{name}' with identical arguments {count} times. "
                f"If the UI did not change, inspect it with get_ui_state or try a "
                f"different component instead of repeating the same action."
            ),
        )
