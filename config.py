import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secrets stay in .env (per-provider env vars: OPENAI_API_KEY, ANTHROPIC_API_KEY)

# User config is loaded from ~/.uipilot/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".uipilot" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('channel.sync_interval', 0.1)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for session logs and event logs.
# Priority: UIPILOT_DIR env var > "data_dir" config key > ~/.uipilot

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``UIPILOT_DIR`` environment variable (highest, useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.uipilot`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("UIPILOT_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".uipilot"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- LLM provider config ------------------------------------------------------
LLM_PROVIDER = get("llm_provider", "anthropic")  # "anthropic", "openai"

_PROVIDER_ENV_KEYS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def get_api_key(provider: str | None = None) -> str | None:
    """Return the API key for the given provider.

    Each provider uses its own env var:
      openai    → OPENAI_API_KEY
      anthropic → ANTHROPIC_API_KEY
    """
    p = (provider or LLM_PROVIDER).lower()
    env_key = _PROVIDER_ENV_KEYS.get(p)
    if env_key:
        return os.getenv(env_key)
    return None


# ---- Per-provider defaults ---------------------------------------------------
# Used as final fallback when neither providers.<active>.key nor a top-level
# key is set in config.json.
_PROVIDER_DEFAULTS = {
    "openai": {
        "model": "gpt-4o",
        "base_url": None,
        "max_output_tokens": 4096,
    },
    "anthropic": {
        "model": "claude-sonnet-4-20250514",
        "base_url": None,
        "max_output_tokens": 4096,
    },
}


def _provider_get(key: str, default=None):
    """Get a config value with provider-section priority.

    Resolution order:
    1. providers.<active_provider>.key  (provider-specific)
    2. Top-level key                    (override)
    3. _PROVIDER_DEFAULTS[provider].key (hardcoded defaults)
    4. default argument
    """
    provider = get("llm_provider", "anthropic")
    val = get(f"providers.{provider}.{key}")
    if val is not None:
        return val
    val = get(key)
    if val is not None:
        return val
    provider_defaults = _PROVIDER_DEFAULTS.get(provider, {})
    if key in provider_defaults:
        return provider_defaults[key]
    return default


LLM_BASE_URL = _provider_get("base_url")
SMART_MODEL = _provider_get("model")
MAX_OUTPUT_TOKENS = _provider_get("max_output_tokens", 4096)

# ---- Session channel timings (seconds) -----------------------------------------
# The wire protocol speaks milliseconds; everything configured here is seconds.
SYNC_INTERVAL = get("channel.sync_interval", 0.1)
HEARTBEAT_INTERVAL = get("channel.heartbeat_interval", 15.0)
RECONNECT_DELAY = get("channel.reconnect_delay", 2.0)
ACTION_TIMEOUT = get("channel.action_timeout", 10.0)
# Server waits a little longer than the peer so the peer's own timeout
# result normally arrives first.
SERVER_ACTION_GRACE = get("channel.server_action_grace", 2.0)
HEARTBEAT_TIMEOUT = get("channel.heartbeat_timeout", 30.0)
REAP_INTERVAL = get("channel.reap_interval", 10.0)

# Settle delay after a successful step, in milliseconds
DEFAULT_SETTLE_MS = get("engine.default_settle_ms", 300)

# ---- Server addresses ---------------------------------------------------------
HTTP_HOST = get("server.host", "127.0.0.1")
HTTP_PORT = get("server.port", 3001)
WEBSOCKET_URL = get("server.websocket_url", f"ws://{HTTP_HOST}:{HTTP_PORT}/ws")


# ---- Setting descriptions -----------------------------------------------------
CONFIG_DESCRIPTIONS: dict[str, str] = {
    "llm_provider": "Language model provider: 'anthropic' (default) or 'openai' (also any OpenAI-compatible endpoint via base_url).",
    "channel.sync_interval": "Seconds between structural-hash checks on the peer. A ui_state is pushed only when the hash changes.",
    "channel.heartbeat_interval": "Seconds between peer heartbeats.",
    "channel.reconnect_delay": "Seconds the peer waits before reconnecting after the channel drops.",
    "channel.action_timeout": "Seconds the peer lets one action request run before cancelling it and reporting a timeout.",
    "channel.server_action_grace": "Extra seconds the server waits past the peer timeout before giving up on an action result.",
    "channel.heartbeat_timeout": "Seconds without a heartbeat after which the server drops a peer.",
    "channel.reap_interval": "Seconds between server sweeps for stale peers.",
    "engine.default_settle_ms": "Milliseconds to wait after a successful step when the step does not set its own wait.",
    "turn_limits": "Override agent loop limits. Keys are named limits (e.g. 'orchestrator.max_iterations'). See agent/turn_limits.py DEFAULTS for all limit names.",
}


def reload_config() -> None:
    """Re-read config from disk and reassign all module-level constants.

    Channels and adapters already running keep the values they were built
    with; only new ones pick up changes.
    """
    global _user_config
    global LLM_PROVIDER, LLM_BASE_URL, SMART_MODEL, MAX_OUTPUT_TOKENS
    global SYNC_INTERVAL, HEARTBEAT_INTERVAL, RECONNECT_DELAY, ACTION_TIMEOUT
    global SERVER_ACTION_GRACE, HEARTBEAT_TIMEOUT, REAP_INTERVAL, DEFAULT_SETTLE_MS
    global HTTP_HOST, HTTP_PORT, WEBSOCKET_URL

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    LLM_PROVIDER = get("llm_provider", "anthropic")
    LLM_BASE_URL = _provider_get("base_url")
    SMART_MODEL = _provider_get("model")
    MAX_OUTPUT_TOKENS = _provider_get("max_output_tokens", 4096)
    SYNC_INTERVAL = get("channel.sync_interval", 0.1)
    HEARTBEAT_INTERVAL = get("channel.heartbeat_interval", 15.0)
    RECONNECT_DELAY = get("channel.reconnect_delay", 2.0)
    ACTION_TIMEOUT = get("channel.action_timeout", 10.0)
    SERVER_ACTION_GRACE = get("channel.server_action_grace", 2.0)
    HEARTBEAT_TIMEOUT = get("channel.heartbeat_timeout", 30.0)
    REAP_INTERVAL = get("channel.reap_interval", 10.0)
    DEFAULT_SETTLE_MS = get("engine.default_settle_ms", 300)
    HTTP_HOST = get("server.host", "127.0.0.1")
    HTTP_PORT = get("server.port", 3001)
    WEBSOCKET_URL = get("server.websocket_url", f"ws://{HTTP_HOST}:{HTTP_PORT}/ws")

    # Reload turn limits overrides from config
    from agent.turn_limits import reload as _reload_turn_limits

    _reload_turn_limits()
