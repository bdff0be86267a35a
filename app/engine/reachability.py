"""Reachability-triggered flush coordinator.

Watches connectivity updates and flushes the offline queue once per
offline -> online edge. A flush in progress runs to completion even if
connectivity drops again; per-item failures retry on the next edge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from app.engine.errors import StoreUnavailableError
from app.engine.queue import FlushReport, OfflineAttemptQueue, Processor

logger = logging.getLogger(__name__)

Listener = Callable[["ReachabilityState"], None]


@dataclass(frozen=True, slots=True)
class ReachabilityState:
    is_connected: bool = False
    is_internet_reachable: bool | None = None  # None = not yet determined
    type: str | None = None

    @property
    def online(self) -> bool:
        return self.is_connected and self.is_internet_reachable is not False


class FlushCoordinator:
    def __init__(self, queue: OfflineAttemptQueue, processor: Processor) -> None:
        self._queue = queue
        self._processor = processor
        self._state = ReachabilityState()
        self._listeners: list[Listener] = []

    @property
    def queue(self) -> OfflineAttemptQueue:
        return self._queue

    @property
    def state(self) -> ReachabilityState:
        return self._state

    def is_online(self) -> bool:
        return self._state.online

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to state updates. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def on_reachability_change(self, state: ReachabilityState) -> FlushReport | None:
        """Record a new state; flush when it is an offline -> online edge."""
        was_online = self._state.online
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Reachability listener %r failed", listener)

        if not was_online and state.online:
            logger.info("Connection restored (%s); flushing offline queue", state.type or "unknown")
            return await self.flush_now()
        return None

    async def flush_now(self) -> FlushReport | None:
        """Flush immediately. Queue storage failures are logged, not raised."""
        try:
            if await self._queue.size() == 0:
                logger.debug("No queued attempts to flush")
                return FlushReport()
            return await self._queue.flush(self._processor)
        except StoreUnavailableError as exc:
            logger.error("Offline queue flush failed: %s", exc)
            return None
