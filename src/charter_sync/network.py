# SPDX-License-Identifier: MIT
"""Online/offline signal source for the sync engine."""

import asyncio
from collections.abc import Callable

import aiohttp

from .constants import DEFAULT_PROBE_TIMEOUT
from .logging_config import get_detail_logger, get_status_logger


detail_logger = get_detail_logger()
status_logger = get_status_logger()

NetworkListener = Callable[[bool], None]


class NetworkMonitor:
    """Tracks online/offline transitions and notifies subscribers.

    The monitor only reports state. It never retries anything itself; the
    sync engine is the component that acts on transitions.
    """

    def __init__(
        self,
        online: bool = True,
        probe_url: str | None = None,
        probe_timeout: int = DEFAULT_PROBE_TIMEOUT,
    ) -> None:
        self._online = online
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._listeners: list[NetworkListener] = []

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """Update the network state; listeners only hear about transitions."""
        if online == self._online:
            return

        self._online = online
        status_logger.info("Network is online" if online else "Network is offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                detail_logger.exception(f"Network listener failed: {e}")

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        """Register a transition listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def check_connectivity(self) -> bool:
        """Probe ``probe_url`` once and update the state with the outcome.

        Without a probe URL the current state is returned unchanged. Any HTTP
        answer counts as online; timeouts and connection errors as offline.

        Returns:
            The network state after the probe
        """
        if not self.probe_url:
            return self._online

        detail_logger.debug(f"Probing connectivity via {self.probe_url}")
        try:
            timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.head(self.probe_url) as response:
                    detail_logger.debug(
                        f"Connectivity probe answered with HTTP {response.status}"
                    )
                    online = True
        except asyncio.TimeoutError:
            detail_logger.warning(f"Connectivity probe to {self.probe_url} timed out")
            online = False
        except (aiohttp.ClientError, OSError) as e:
            detail_logger.warning(f"Connectivity probe to {self.probe_url} failed: {e}")
            online = False

        self.set_online(online)
        return online
