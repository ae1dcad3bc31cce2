# SPDX-License-Identifier: MIT
"""Publish/subscribe for sync status changes."""

from collections.abc import Callable

from .logging_config import get_detail_logger
from .models import SyncStatus


StatusListener = Callable[[SyncStatus], None]


class StatusBroadcaster:
    """Pushes the whole ``SyncStatus`` to every listener on each change."""

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []
        self.detail_logger = get_detail_logger()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener.

        Args:
            listener: Callable invoked with a status snapshot

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def notify(self, status: SyncStatus) -> None:
        """Call every listener with its own copy of ``status``.

        A failing listener is logged and does not stop the others.
        """
        for listener in list(self._listeners):
            try:
                listener(status.model_copy(deep=True))
            except Exception as e:
                self.detail_logger.exception(f"Status listener failed: {e}")
