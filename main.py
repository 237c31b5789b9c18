#!/usr/bin/env python3
"""uipilot CLI: chat with the agent that drives your connected UI.

Connects to the FastAPI backend over HTTP. If the server isn't running, it
is started automatically as a background process.

Usage:
    python main.py                                  # Interactive mode (auto-starts server)
    python main.py --verbose                        # Also stream tool events
    python main.py "Set the exposure slider to 15"  # Single-command mode
    python main.py --url http://host:3001           # Custom server URL
    python main.py --no-color                       # Disable ANSI colors

Slash commands (type /help for full list):
    /state   - Summarize the connected UI
    /tools   - List the agent's tools
    /status  - Show server and UI client status
    /reset   - Forget the conversation so far
    /quit    - Exit
"""

import argparse
import json
import os
import socket
import subprocess
import sys
import threading
import time
from pathlib import Path
from urllib.parse import urlparse

import requests

import config

# readline is optional (not available on Windows without pyreadline3)
try:
    import readline
    _READLINE_AVAILABLE = True
except ImportError:
    _READLINE_AVAILABLE = False

# ---- ANSI colors ----

_USE_COLOR = True


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def dim(text: str) -> str:
    return _c("2", text)


def cyan(text: str) -> str:
    return _c("36", text)


def green(text: str) -> str:
    return _c("32", text)


def red(text: str) -> str:
    return _c("31", text)


def bold(text: str) -> str:
    return _c("1", text)


# ---- Readline ----

def _history_path() -> str:
    return os.path.join(str(config.get_data_dir()), ".cli_history")


_SLASH_COMMANDS = [
    ("/help",   "Show available commands"),
    ("/quit",   "Exit"),
    ("/reset",  "Forget the conversation so far"),
    ("/state",  "Summarize the connected UI"),
    ("/status", "Show server and UI client status"),
    ("/tools",  "List the agent's tools"),
]


def _slash_completer(text, state):
    """Readline completer for slash commands."""
    matches = [c[0] for c in _SLASH_COMMANDS if c[0].startswith(text)] if text.startswith("/") else []
    if state < len(matches):
        return matches[state]
    return None


def setup_readline():
    if not _READLINE_AVAILABLE:
        return
    readline.set_history_length(500)
    readline.set_completer(_slash_completer)
    readline.set_completer_delims(" \t\n")
    readline.parse_and_bind("tab: complete")
    try:
        readline.read_history_file(_history_path())
    except FileNotFoundError:
        pass


def save_readline():
    if not _READLINE_AVAILABLE:
        return
    path = _history_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)
    try:
        readline.write_history_file(path)
    except OSError:
        pass


# ---- Server auto-start ----

def _is_port_open(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.settimeout(1)
        return s.connect_ex((host, port)) == 0


def _wait_for_port(host: str, port: int, timeout: float = 30.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if _is_port_open(host, port):
            return True
        time.sleep(0.25)
    return False


def ensure_server(url: str) -> bool:
    """If the server isn't running, start it as a detached background process.

    The server survives after the CLI exits (UI clients stay connected).
    Returns True if server is available.
    """
    parsed = urlparse(url)
    host = parsed.hostname or "localhost"
    port = parsed.port or config.HTTP_PORT

    if _is_port_open(host, port):
        return True

    server_script = str(Path(__file__).resolve().parent / "api_server.py")
    if not Path(server_script).exists():
        print(red(f"Server script not found: {server_script}"))
        return False

    log_path = os.path.join(str(config.get_data_dir()), "logs", "api_server.log")
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    print(f"Server not running. Starting on port {port}...")
    log_file = open(log_path, "a")
    popen_kwargs = {"stdout": log_file, "stderr": log_file}
    # Detach from CLI's process group so Ctrl+C doesn't kill the server
    if sys.platform == "win32":
        popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        popen_kwargs["start_new_session"] = True

    proc = subprocess.Popen(
        [sys.executable, server_script, "--port", str(port), "--host", host],
        **popen_kwargs,
    )
    print(dim(f"  PID {proc.pid} (log: {log_path})"))

    if not _wait_for_port(host, port, timeout=30.0):
        if proc.poll() is not None:
            print(red(f"  Server exited with code {proc.returncode}. Check {log_path}"))
        else:
            print(red(f"  Timed out after 30s. Check {log_path}"))
        return False

    print("  Server ready.")
    return True


# ---- SSE parsing ----

def iter_sse_events(response: requests.Response):
    """Parse SSE events from a streaming requests response.

    Yields (event_type, data_dict) tuples.
    """
    event_type = "message"
    data_lines = []

    for line in response.iter_lines(decode_unicode=True):
        if line is None:
            continue
        if line == "":
            # Empty line = end of event
            if data_lines:
                raw = "\n".join(data_lines)
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = {"raw": raw}
                yield event_type, data
            event_type = "message"
            data_lines = []
        elif line.startswith("event:"):
            event_type = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())


# ---- API client ----

class APIClient:
    """Thin HTTP client for the uipilot server."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self.http = requests.Session()
        self.messages: list[dict] = []

    def check_server(self) -> dict:
        r = self.http.get(f"{self.base_url}/health", timeout=5)
        r.raise_for_status()
        return r.json()

    def chat(self, text: str) -> str:
        """Send *text* with the conversation so far; remember the exchange.

        History only grows when the server answers, so a failed request can
        simply be retried.
        """
        user = {"role": "user", "content": text}
        r = self.http.post(f"{self.base_url}/api/chat", json={"messages": [*self.messages, user]}, timeout=600)
        r.raise_for_status()
        reply = r.json()["message"]
        self.messages.extend([user, {"role": "assistant", "content": reply}])
        return reply

    def ui_state(self) -> dict:
        r = self.http.get(f"{self.base_url}/api/ui-state", timeout=10)
        r.raise_for_status()
        return r.json()

    def tools(self) -> list[dict]:
        r = self.http.get(f"{self.base_url}/api/tools", timeout=10)
        r.raise_for_status()
        return r.json()["tools"]

    def follow_events(self, stop: threading.Event) -> None:
        """Print tool events from the SSE stream until *stop* is set."""
        try:
            with self.http.get(f"{self.base_url}/api/events", stream=True, timeout=None) as r:
                for event_type, data in iter_sse_events(r):
                    if stop.is_set():
                        return
                    display_event(event_type, data)
        except requests.RequestException:
            pass  # stream ends with the server


def display_event(event_type: str, data: dict) -> None:
    if event_type == "tool_call":
        print(dim(f"  → {data.get('tool_name')}({json.dumps(data.get('tool_args', {}))})"))
    elif event_type == "tool_result":
        ok = data.get("status") == "success"
        print(dim(f"  {'✓' if ok else '✗'} {data.get('tool_name')}"))
    elif event_type in ("peer_connected", "peer_disconnected"):
        print(dim(f"  [{event_type.replace('_', ' ')}] {data.get('client_id', '')}"))
    elif data.get("level") in ("warning", "error"):
        print(red(f"  {data.get('text', '')}"))


# ---- Slash commands ----

def cmd_help():
    print(bold("Commands:"))
    for name, desc in _SLASH_COMMANDS:
        print(f"  {name.ljust(10)}{dim(desc)}")
    print("Anything without a leading / is sent as a chat message.")


def cmd_state(client: APIClient):
    result = client.ui_state()
    if not result.get("success"):
        print(red(result.get("message", "No UI state")))
        return
    print(result["message"])
    visible = set(result["data"].get("currentlyVisible", []))
    for comp in result["data"].get("components", []):
        marker = green("●") if comp["id"] in visible else dim("○")
        print(f"  {marker} {comp['id']} {dim(comp['type'])} {comp.get('label', '')}")


def cmd_tools(client: APIClient):
    for tool in client.tools():
        summary = tool["description"].split("\n", 1)[0]
        print(f"  {bold(tool['name'])}  {dim(summary)}")


def cmd_status(client: APIClient):
    status = client.check_server()
    ws = status.get("websocket", {})
    peers = green(f"{ws.get('clientCount', 0)} connected") if ws.get("connected") else red("none connected")
    print(f"Server: {status.get('status')} (uptime {status.get('uptime_seconds', 0):.0f}s)")
    print(f"UI clients: {peers}")
    print(f"Model key configured: {status.get('api_key_configured')}")


def main():
    global _USE_COLOR

    parser = argparse.ArgumentParser(description="CLI client for the uipilot server")
    parser.add_argument("command", nargs="?", default=None,
                        help="Single message to send (non-interactive mode)")
    parser.add_argument("--url", default=f"http://{config.HTTP_HOST}:{config.HTTP_PORT}",
                        help="Server URL")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show tool calls as they happen")
    args = parser.parse_args()

    if args.no_color:
        _USE_COLOR = False

    client = APIClient(args.url)
    try:
        client.check_server()
    except requests.ConnectionError:
        if not ensure_server(args.url):
            print(red("Could not start the server. Exiting."))
            sys.exit(1)
    except requests.RequestException as e:
        print(red(f"Server error: {e}"))
        sys.exit(1)

    stop = threading.Event()
    if args.verbose:
        threading.Thread(target=client.follow_events, args=(stop,), daemon=True).start()

    if args.command:
        try:
            print(client.chat(args.command))
        except requests.RequestException as e:
            print(red(f"Request failed: {e}"))
            sys.exit(1)
        return

    setup_readline()
    cmd_status(client)
    print(dim("Type /help for commands."))
    try:
        while True:
            try:
                line = input(cyan("\n> ")).strip()
            except EOFError:
                break
            if not line:
                continue
            try:
                if line in ("/quit", "/exit"):
                    break
                elif line == "/help":
                    cmd_help()
                elif line == "/state":
                    cmd_state(client)
                elif line == "/tools":
                    cmd_tools(client)
                elif line == "/status":
                    cmd_status(client)
                elif line == "/reset":
                    client.messages.clear()
                    print("Conversation cleared.")
                elif line.startswith("/"):
                    print(red(f"Unknown command: {line}"))
                else:
                    print(client.chat(line))
            except requests.RequestException as e:
                print(red(f"Request failed: {e}"))
    except KeyboardInterrupt:
        print()
    finally:
        stop.set()
        save_readline()


if __name__ == "__main__":
    main()
