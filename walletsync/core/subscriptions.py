"""
Subscription registry.

Every listener, stream and poller the engine opens is registered here, tagged
with the session generation that opened it. Teardown is one synchronous
``cancel_all()``; after it returns no handle is live, so no late callback can
act on the old session.

Handles are keyed by ``(kind, key)``. Session-wide streams use ``key=None``;
per-transaction pollers use the transaction hash as key, so several transfers
can be tracked at once.

Block headers go through ``BlockHeaderFeed``: one ``NEW_BLOCK_HEADERS`` stream
per generation, fanned out to ``BLOCK_LISTENER`` handles (the balance trigger
and one per tracked transfer).
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from .models import BlockHeader, SubscriptionKind

if TYPE_CHECKING:
    from ..providers.base import LedgerClient
    from .session import SessionStore


logger = logging.getLogger(__name__)

RegistryKey = Tuple[SubscriptionKind, Optional[Hashable]]


@dataclass
class SubscriptionHandle:
    """A registered, cancellable subscription."""
    id: int
    kind: SubscriptionKind
    key: Optional[Hashable]
    generation: int
    target: Any = field(repr=False)
    cancelled: bool = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        try:
            self.target.cancel()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Cancelling %s subscription failed: %s", self.kind.value, exc)


class SubscriptionRegistry:
    """Owns every live subscription, at most one per ``(kind, key)``."""

    def __init__(self, store: "SessionStore") -> None:
        self.store = store
        self._handles: Dict[RegistryKey, SubscriptionHandle] = {}
        self._ids = itertools.count(1)

    def register(
        self,
        kind: SubscriptionKind,
        factory: Callable[[], Any],
        key: Optional[Hashable] = None,
    ) -> SubscriptionHandle:
        """Open a subscription unless an equivalent one is already live.

        ``factory`` is only called when no live handle exists for ``(kind, key)``
        in the current generation. It must return an object with ``cancel()``
        (an ``asyncio.Task``, a ledger subscription, a provider listener).
        """
        kind = SubscriptionKind(kind)
        registry_key = (kind, key)
        generation = self.store.generation

        existing = self._handles.get(registry_key)
        if existing is not None:
            if existing.generation == generation and not existing.cancelled:
                return existing
            # Left over from an older generation; never reuse it
            existing.cancel()
            del self._handles[registry_key]

        handle = SubscriptionHandle(
            id=next(self._ids),
            kind=kind,
            key=key,
            generation=generation,
            target=factory(),
        )
        self._handles[registry_key] = handle
        logger.debug("Registered %s subscription #%d (gen %d)", kind.value, handle.id, generation)
        return handle

    def cancel(self, kind: SubscriptionKind, key: Optional[Hashable] = None) -> bool:
        handle = self._handles.pop((SubscriptionKind(kind), key), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel everything. Safe to call repeatedly; returns how many were live."""
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.cancel()
        return len(handles)

    def is_live(self, handle: SubscriptionHandle) -> bool:
        current = self._handles.get((handle.kind, handle.key))
        return (
            current is handle
            and not handle.cancelled
            and handle.generation == self.store.generation
        )

    def get(self, kind: SubscriptionKind, key: Optional[Hashable] = None) -> Optional[SubscriptionHandle]:
        return self._handles.get((SubscriptionKind(kind), key))

    def active(self) -> List[SubscriptionHandle]:
        return [h for h in self._handles.values() if not h.cancelled]

    def __len__(self) -> int:
        return len(self.active())


BlockListener = Callable[[BlockHeader], Awaitable[None]]


class _FeedListener:
    """Registry target for one block listener."""

    def __init__(self, feed: "BlockHeaderFeed", key: Optional[Hashable], callback: BlockListener):
        self.feed = feed
        self.key = key
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        self.feed._drop(self)


class BlockHeaderFeed:
    """Shares one ledger block-header stream between every block listener.

    Usage:
        feed = BlockHeaderFeed(registry, ledger)
        feed.listen(tx_hash, on_block)          # opens the stream if needed
        registry.cancel(SubscriptionKind.BLOCK_LISTENER, tx_hash)

    The stream is closed once its last listener is cancelled.
    """

    def __init__(self, registry: SubscriptionRegistry, ledger: "LedgerClient") -> None:
        self.registry = registry
        self.ledger = ledger
        self._listeners: Dict[Optional[Hashable], _FeedListener] = {}

    def listen(self, key: Optional[Hashable], callback: BlockListener) -> SubscriptionHandle:
        handle = self.registry.register(
            SubscriptionKind.BLOCK_LISTENER,
            lambda: self._add(key, callback),
            key=key,
        )
        self.registry.register(
            SubscriptionKind.NEW_BLOCK_HEADERS,
            lambda: self.ledger.subscribe_new_block_headers(self._fan_out),
        )
        return handle

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _add(self, key: Optional[Hashable], callback: BlockListener) -> _FeedListener:
        listener = _FeedListener(self, key, callback)
        self._listeners[key] = listener
        return listener

    def _drop(self, listener: _FeedListener) -> None:
        if self._listeners.get(listener.key) is listener:
            del self._listeners[listener.key]
        if not self._listeners:
            self.registry.cancel(SubscriptionKind.NEW_BLOCK_HEADERS)

    async def _fan_out(self, header: BlockHeader) -> None:
        listeners = list(self._listeners.values())
        if not listeners:
            return
        results = await asyncio.gather(
            *(listener.callback(header) for listener in listeners),
            return_exceptions=True,
        )
        for listener, result in zip(listeners, results):
            if isinstance(result, Exception):
                logger.warning("Block listener %r failed on block %s: %s", listener.key, header.number, result)
