#!/usr/bin/env python
"""Demo UI client: a headless "photo editor" that registers its controls.

Connects to a running uipilot server so the agent has something to drive.
The elements are plain Python state; their verbs mutate it and report back
through the registry, the way a real UI binding would.

Usage:
    python scripts/demo_peer.py [--url ws://127.0.0.1:3001/ws] [-v]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import config  # noqa: E402
from agent.logging import get_logger, setup_logging  # noqa: E402
from control import ConnectionManager, ElementRegistry, ElementState, ElementType  # noqa: E402

logger = get_logger()

FORMATS = ["jpeg", "png", "tiff"]


class PhotoEditor:
    """Registers the editor's elements and owns their state."""

    def __init__(self, registry: ElementRegistry):
        self.registry = registry
        self.exposure = 0
        self.filename = "untitled"
        self.format = "jpeg"
        self.exported: list[str] = []

    def mount(self) -> None:
        r = self.registry
        r.register("editor-page", ElementType.PAGE, "Editor")
        r.register(
            "exposure-slider", ElementType.SLIDER, "Exposure", parent="editor-page",
            available_actions=["increase", "decrease", "setValue"],
            metadata={"value": self.exposure, "min": -100, "max": 100, "step": 1,
                      "description": "Exposure adjustment of the current photo"},
            verbs={"increase": self.increase, "decrease": self.decrease,
                   "setValue": self.set_exposure, "value": self.set_exposure},
        )
        r.register(
            "reset-button", ElementType.BUTTON, "Reset adjustments", parent="editor-page",
            available_actions=["click"], verbs={"open": lambda _open: self.set_exposure(0)},
        )
        r.register(
            "export-button", ElementType.BUTTON, "Export", parent="editor-page",
            available_actions=["click"], verbs={"open": self.set_dialog_open},
        )
        r.register(
            "export-dialog", ElementType.DIALOG, "Export photo", parent="editor-page",
            available_actions=["open", "close"], verbs={"open": self.set_dialog_open},
        )
        r.register(
            "filename-input", ElementType.INPUT, "File name", parent="export-dialog",
            available_actions=["type", "clear"], metadata={"value": self.filename},
            verbs={"value": self.set_filename},
        )
        r.register(
            "format-select", ElementType.SELECT, "Format", parent="export-dialog",
            available_actions=["select"], metadata={"value": self.format, "options": FORMATS},
            verbs={"value": self.set_format},
        )
        r.register(
            "export-confirm", ElementType.BUTTON, "Save export", parent="export-dialog",
            available_actions=["click"], verbs={"open": lambda _open: self.export()},
        )
        r.register(
            "export-close", ElementType.BUTTON, "Close", parent="export-dialog",
            available_actions=["click"], verbs={"open": lambda _open: self.set_dialog_open(False)},
        )
        self.set_dialog_open(False)

    # ---- Verbs ----

    def set_exposure(self, value) -> None:
        self.exposure = max(-100, min(100, int(value)))
        self.registry.update_metadata("exposure-slider", value=self.exposure)
        logger.info(f"[Demo] Exposure = {self.exposure}")

    def increase(self, amount=1) -> None:
        self.set_exposure(self.exposure + int(amount))

    def decrease(self, amount=1) -> None:
        self.set_exposure(self.exposure - int(amount))

    def set_dialog_open(self, is_open: bool) -> None:
        state = ElementState.VISIBLE if is_open else ElementState.HIDDEN
        for element_id in ("export-dialog", "filename-input", "format-select", "export-confirm", "export-close"):
            self.registry.update_state(element_id, state=state)

    def set_filename(self, text) -> None:
        self.filename = str(text)
        self.registry.update_metadata("filename-input", value=self.filename)

    def set_format(self, value) -> None:
        if value not in FORMATS:
            raise ValueError(f"Unsupported format: {value} (choose from {', '.join(FORMATS)})")
        self.format = value
        self.registry.update_metadata("format-select", value=value)

    def export(self) -> None:
        name = f"{self.filename}.{self.format}"
        self.exported.append(name)
        logger.info(f"[Demo] Exported {name} (exposure {self.exposure})")
        self.set_dialog_open(False)


async def main(url: str) -> None:
    registry = ElementRegistry()
    PhotoEditor(registry).mount()
    connections = ConnectionManager(registry)
    async with connections.lease(url) as channel:
        logger.info(f"[Demo] {len(registry)} elements registered; connecting to {url}")
        await channel.wait_connected()
        await asyncio.Event().wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="uipilot demo UI client")
    parser.add_argument("--url", default=config.WEBSOCKET_URL)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(verbose=args.verbose)
    try:
        asyncio.run(main(args.url))
    except KeyboardInterrupt:
        pass
