"""Shared ownership of the peer's channel.

Several parts of a hosting application may each want "the" connection to
the orchestrator (and a host that mounts components twice will ask twice).
``ConnectionManager`` hands every owner the same ``PeerChannel`` and only
closes it when the last owner releases it.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from .channel import PeerChannel
from .errors import ConnectionInUseError
from .registry import ElementRegistry

logger = logging.getLogger("uipilot")


class ConnectionManager:
    def __init__(self, registry: ElementRegistry, **channel_options: Any):
        self.registry = registry
        self._options = channel_options
        self._channel: Optional[PeerChannel] = None
        self._owners = 0
        self._lock = asyncio.Lock()

    @property
    def owners(self) -> int:
        return self._owners

    @property
    def channel(self) -> Optional[PeerChannel]:
        return self._channel

    async def acquire(self, url: str, **options: Any) -> PeerChannel:
        """Return the shared channel for *url*, starting it on first use.

        Raises ``ConnectionInUseError`` if a channel to another URL still
        has owners.
        """
        async with self._lock:
            if self._channel is not None and self._channel.url != url:
                if self._owners > 0:
                    raise ConnectionInUseError(
                        f"Channel to {self._channel.url} still has {self._owners} owner(s)"
                    )
                await self._channel.close()
                self._channel = None

            if self._channel is None:
                self._channel = PeerChannel(url, self.registry, **{**self._options, **options})
                self._channel.start()
                logger.debug(f"[Connections] Opened channel to {url}")
            self._owners += 1
            return self._channel

    async def release(self) -> None:
        """Drop one ownership; closes the channel when none remain."""
        async with self._lock:
            if self._owners == 0:
                logger.warning("[Connections] release() without a matching acquire()")
                return
            self._owners -= 1
            if self._owners == 0 and self._channel is not None:
                logger.debug(f"[Connections] Last owner released {self._channel.url}")
                await self._channel.close()
                self._channel = None

    @asynccontextmanager
    async def lease(self, url: str, **options: Any) -> AsyncIterator[PeerChannel]:
        channel = await self.acquire(url, **options)
        try:
            yield channel
        finally:
            await self.release()
