"""agent/turn_limits.py: Central turn limits registry.

Every agent loop limit lives here as a named constant.
Config.json overrides via ``"turn_limits"``.

Public API:
    get_limit(name)  - lookup (int), KeyError on typo
    reload()         - re-read config overrides
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Default limits
# ---------------------------------------------------------------------------

DEFAULTS: dict[str, int] = {
    # Chat turn agentic loop
    "orchestrator.max_iterations":       25,
    # Identical tool calls allowed before a warning is attached to the result
    "orchestrator.dup_free_passes":       2,
}

# ---------------------------------------------------------------------------
# Runtime state: overrides from config.json
# ---------------------------------------------------------------------------

_overrides: dict[str, int] = {}


def reload() -> None:
    """Re-read config.json overrides for turn limits.

    Called by ``config.reload_config()`` and at import time.
    """
    global _overrides
    import config
    _overrides = config.get("turn_limits", {})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_limit(name: str) -> int:
    """Return the effective turn limit for *name*.

    Raises ``KeyError`` if *name* is not in DEFAULTS (catches typos).
    """
    if name not in DEFAULTS:
        raise KeyError(f"Unknown turn limit: {name!r}")
    override = _overrides.get(name)
    if override is not None:
        return int(override)
    return DEFAULTS[name]


# ---------------------------------------------------------------------------
# Initialize overrides at import time
# ---------------------------------------------------------------------------

reload()
