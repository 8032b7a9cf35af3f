"""
Balance synchronisation for the active session.

Three triggers feed one coalesced fetch: the interval loop, new block headers
and incoming ``Transfer`` logs. Whatever the trigger, at most one fetch is in
flight per generation and every caller awaiting it gets the same snapshot.
"""

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from ..config import settings
from ..providers.base import LedgerClient
from ..providers.erc20 import decode_transfer_log
from .amounts import from_raw_amount, from_wei, to_raw_amount
from .errors import NetworkError, NotConnected, WalletError, classify_error
from .events import EventBus
from .models import BalanceSnapshot, SessionState, SubscriptionKind, TokenDescriptor, WalletEvent
from .subscriptions import BlockHeaderFeed, SubscriptionRegistry

if TYPE_CHECKING:
    from .session import SessionStore


class BalanceSynchronizer:
    """Keeps the published ``BalanceSnapshot`` in step with the ledger."""

    def __init__(
        self,
        store: "SessionStore",
        registry: SubscriptionRegistry,
        ledger: LedgerClient,
        token: TokenDescriptor,
        events: EventBus,
        *,
        interval: Optional[float] = None,
        blocks: Optional[BlockHeaderFeed] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.ledger = ledger
        self.blocks = blocks or BlockHeaderFeed(registry, ledger)
        self.token = token
        self.events = events
        self.interval = interval or settings.balance_poll_interval_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.fetch_count = 0
        self._snapshot: Optional[BalanceSnapshot] = None
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_generation: Optional[int] = None

    @property
    def snapshot(self) -> Optional[BalanceSnapshot]:
        """Last published snapshot for the current generation, if any."""
        snapshot = self._snapshot
        if snapshot is None or not self.store.is_current(snapshot.generation):
            return None
        return snapshot

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_now(self) -> Optional[BalanceSnapshot]:
        """Fetch balances, joining the in-flight fetch when there is one.

        Returns ``None`` when the session moved on while the fetch was running.

        Raises:
            NotConnected: No connected session.
            NetworkError: The ledger could not be reached.
        """
        state = self.store.current
        if not state.connected:
            raise NotConnected()

        inflight = self._inflight
        if (
            inflight is not None
            and not inflight.done()
            and self._inflight_generation == state.generation
        ):
            return await asyncio.shield(inflight)

        fetch = asyncio.ensure_future(self._fetch(state))
        self._inflight = fetch
        self._inflight_generation = state.generation
        try:
            return await asyncio.shield(fetch)
        finally:
            if self._inflight is fetch and fetch.done():
                self._inflight = None
                self._inflight_generation = None

    async def _fetch(self, state: SessionState) -> Optional[BalanceSnapshot]:
        self.fetch_count += 1
        address = state.address
        try:
            native_wei, token_raw, block_number = await asyncio.gather(
                self.ledger.get_native_balance(address),
                self.ledger.call(self.token, "balanceOf", [address]),
                self.ledger.get_block_number(),
            )
        except Exception as exc:
            if not self.store.is_current(state.generation):
                return None
            error = classify_error(exc, default=NetworkError)
            self.logger.warning("Balance refresh failed: %s", error.message)
            if error is exc:
                raise
            raise error from exc

        if not self.store.is_current(state.generation):
            self.logger.debug("Discarding balances fetched for generation %d", state.generation)
            return None

        snapshot = BalanceSnapshot(
            native=from_wei(native_wei),
            token=from_raw_amount(token_raw, self.token.decimals),
            block_number=block_number,
            generation=state.generation,
            token_raw=int(token_raw),
        )
        self._publish(snapshot)
        return snapshot

    def apply_confirmed_transfer(self, amount: Decimal, generation: int) -> Optional[BalanceSnapshot]:
        """Deduct a confirmed outgoing transfer from the published token balance.

        Only applies to a snapshot of the same generation; the authoritative
        refresh that follows replaces it anyway.
        """
        snapshot = self.snapshot
        if snapshot is None or snapshot.generation != generation:
            return None
        raw = max(snapshot.token_raw - to_raw_amount(amount, self.token.decimals), 0)
        adjusted = replace(
            snapshot,
            token=from_raw_amount(raw, self.token.decimals),
            token_raw=raw,
        )
        self._publish(adjusted)
        return adjusted

    def reset(self, state: Optional[SessionState] = None) -> None:
        """Forget the published snapshot; used as a session teardown hook."""
        # An in-flight fetch finishes on its own and is discarded by generation
        self._snapshot = None
        self._inflight = None
        self._inflight_generation = None

    def _publish(self, snapshot: BalanceSnapshot) -> None:
        self._snapshot = snapshot
        self.events.emit(WalletEvent.BALANCES_UPDATED, snapshot)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start_polling(self, interval: Optional[float] = None) -> None:
        """Start the interval loop plus block and Transfer triggers for this session.

        Idempotent within a generation.
        """
        state = self.store.current
        if not state.connected:
            raise NotConnected()
        if interval is not None:
            self.interval = interval

        self.registry.register(
            SubscriptionKind.BALANCE_POLL,
            lambda: asyncio.create_task(self._poll_loop(state.generation), name="balance-poll"),
        )
        self.blocks.listen(None, self._make_trigger(state.generation))
        self.registry.register(
            SubscriptionKind.TRANSFER_EVENT,
            lambda: self.ledger.subscribe_contract_event(
                self.token,
                "Transfer",
                {"to": state.address},
                self._make_transfer_trigger(state.generation),
            ),
        )

    def stop_polling(self) -> None:
        for kind in (
            SubscriptionKind.BALANCE_POLL,
            SubscriptionKind.BLOCK_LISTENER,
            SubscriptionKind.TRANSFER_EVENT,
        ):
            self.registry.cancel(kind)

    def _make_trigger(self, generation: int):
        async def trigger(_payload: Any) -> None:
            if not self.store.is_current(generation):
                return
            try:
                await self.refresh_now()
            except NotConnected:
                return
            except WalletError as e:
                self.logger.debug("Triggered refresh failed: %s", e)

        return trigger

    def _make_transfer_trigger(self, generation: int):
        refresh = self._make_trigger(generation)

        async def on_transfer(log: Any) -> None:
            if isinstance(log, dict):
                transfer = decode_transfer_log(log)
                self.logger.info(
                    "Incoming %s transfer from %s (tx %s)",
                    self.token.symbol,
                    transfer["from"],
                    transfer["transaction_hash"],
                )
            await refresh(log)

        return on_transfer

    async def _poll_loop(self, generation: int) -> None:
        while self.store.is_current(generation):
            await asyncio.sleep(self.interval)
            if not self.store.is_current(generation):
                break
            try:
                await self.refresh_now()
            except asyncio.CancelledError:
                raise
            except NotConnected:
                break
            except WalletError as e:
                # Next tick retries
                self.logger.warning(f"Balance poll failed, retrying in {self.interval}s: {e}")
