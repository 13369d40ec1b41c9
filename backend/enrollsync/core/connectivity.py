"""
Connectivity to the remote database.

The scheduler treats "offline" as "skip this cycle", so a failed probe is
reported as a state change, not raised.
"""

import logging
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from enrollsync.core.database import probe_database

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityService:
    """Tracks whether the remote database is reachable."""

    def __init__(self, remote_engine: AsyncEngine, timeout_seconds: float = 15.0):
        self.remote_engine = remote_engine
        self.timeout_seconds = timeout_seconds
        self._is_connected: Optional[bool] = None
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_connected(self) -> bool:
        return bool(self._is_connected)

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a callback for connectivity changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def check_connectivity(self) -> bool:
        try:
            await probe_database(self.remote_engine, self.timeout_seconds)
            connected = True
        except Exception as e:
            logger.debug(f"Connectivity probe failed: {e!r}")
            connected = False

        if connected != self._is_connected:
            self._is_connected = connected
            logger.info(f"Remote database is {'reachable' if connected else 'unreachable'}")
            for listener in list(self._listeners):
                try:
                    listener(connected)
                except Exception as e:
                    logger.error(f"Connectivity listener failed: {e}")

        return connected
