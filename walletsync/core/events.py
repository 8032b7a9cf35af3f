"""
Status event fan-out to the presentation layer.

``emit`` never blocks the engine: plain handlers run inline, async handlers are
scheduled as tasks and their failures only logged.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Set

from .models import WalletEvent

EventHandler = Callable[[Any], Any]


class EventBus:
    """Publish/subscribe for ``sessionChanged``, ``balancesUpdated`` and
    ``transactionStatusChanged``."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self._handlers: Dict[WalletEvent, List[EventHandler]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event: WalletEvent | str, handler: EventHandler) -> None:
        self._handlers[WalletEvent(event)].append(handler)

    def off(self, event: WalletEvent | str, handler: EventHandler) -> None:
        handlers = self._handlers.get(WalletEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: WalletEvent, payload: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Handler for %s failed: %s", event.value, exc, exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.warning("Async event handler failed: %s", exc)

    async def drain(self) -> None:
        """Wait for scheduled async handlers; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
