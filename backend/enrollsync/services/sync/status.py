"""
Status Broadcaster

Process-wide sync status: online flag, syncing flag, last sync time,
pending offline operations and the ten most recent errors. Setters are
safe to call from any thread; subscribers get a full snapshot after each
change and are called outside the lock.
"""

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Deque, List, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_ERRORS = 10


@dataclass(frozen=True)
class SyncStatusSnapshot:
    is_online: bool
    is_syncing: bool
    last_sync_time: Optional[datetime]
    pending_operations_count: int
    errors: Tuple[str, ...]

    def to_dict(self):
        return {
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "last_sync_time": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "pending_operations_count": self.pending_operations_count,
            "errors": list(self.errors),
        }


StatusListener = Callable[[SyncStatusSnapshot], None]
LastSyncLoader = Callable[[], Awaitable[Optional[datetime]]]


class SyncStatusService:
    """
    Observable sync status.

    ``set_online``, ``set_syncing`` and ``update_pending_count`` notify only
    when the value changes. ``update_last_sync_time``, ``add_error`` and
    ``clear_errors`` always notify.
    """

    def __init__(self, last_sync_loader: Optional[LastSyncLoader] = None):
        self._lock = threading.Lock()
        # Online until a probe says otherwise
        self._is_online = True
        self._is_syncing = False
        self._last_sync_time: Optional[datetime] = None
        self._pending_count = 0
        self._errors: Deque[str] = deque(maxlen=MAX_ERRORS)
        self._listeners: List[StatusListener] = []

        self._last_sync_loader = last_sync_loader
        self._hydration_started = False
        self._hydration_task: Optional[asyncio.Task] = None

    # Reads

    def get_snapshot(self) -> SyncStatusSnapshot:
        self._start_hydration()
        with self._lock:
            return self._snapshot_locked()

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._is_online

    @property
    def is_syncing(self) -> bool:
        with self._lock:
            return self._is_syncing

    @property
    def last_sync_time(self) -> Optional[datetime]:
        self._start_hydration()
        with self._lock:
            return self._last_sync_time

    @property
    def errors(self) -> List[str]:
        with self._lock:
            return list(self._errors)

    # Subscriptions

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    # Writes

    def set_online(self, is_online: bool) -> None:
        self._update(lambda: self._set_attr("_is_online", bool(is_online)))

    def set_syncing(self, is_syncing: bool) -> None:
        self._update(lambda: self._set_attr("_is_syncing", bool(is_syncing)))

    def update_pending_count(self, count: int) -> None:
        self._update(lambda: self._set_attr("_pending_count", max(int(count), 0)))

    def update_last_sync_time(self, sync_time: datetime) -> None:
        def _apply():
            self._last_sync_time = sync_time
            return True
        self._update(_apply)

    def add_error(self, error: str) -> None:
        def _apply():
            self._errors.append(error)
            return True
        self._update(_apply)

    def clear_errors(self) -> None:
        def _apply():
            self._errors.clear()
            return True
        self._update(_apply)

    # Internals

    def _set_attr(self, name: str, value) -> bool:
        if getattr(self, name) == value:
            return False
        setattr(self, name, value)
        return True

    def _snapshot_locked(self) -> SyncStatusSnapshot:
        return SyncStatusSnapshot(
            is_online=self._is_online,
            is_syncing=self._is_syncing,
            last_sync_time=self._last_sync_time,
            pending_operations_count=self._pending_count,
            errors=tuple(self._errors),
        )

    def _update(self, apply: Callable[[], bool]) -> None:
        with self._lock:
            changed = apply()
            if not changed:
                return
            snapshot = self._snapshot_locked()
            listeners = list(self._listeners)
        self._notify(listeners, snapshot)

    def _notify(self, listeners: List[StatusListener], snapshot: SyncStatusSnapshot) -> None:
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Sync status listener failed: {e}")

    def _start_hydration(self) -> None:
        """Load last_sync_time from history once, in the background."""
        if self._last_sync_loader is None:
            return
        with self._lock:
            if self._hydration_started or self._last_sync_time is not None:
                return
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop in this thread; retry on the next read
                return
            self._hydration_started = True
        self._hydration_task = loop.create_task(self._hydrate())

    async def _hydrate(self) -> None:
        try:
            loaded = await self._last_sync_loader()
        except Exception as e:
            logger.warning(f"Could not load last sync time from history: {e}")
            return
        if loaded is None:
            return

        with self._lock:
            # A sync that finished meanwhile is more recent than history
            if self._last_sync_time is not None:
                return
            self._last_sync_time = loaded
            snapshot = self._snapshot_locked()
            listeners = list(self._listeners)
        logger.debug(f"Last sync time loaded from history: {loaded.isoformat()}")
        self._notify(listeners, snapshot)

    async def wait_hydrated(self) -> None:
        """Wait for a started background hydration to finish."""
        task = self._hydration_task
        if task is not None:
            await task
