"""
Transfer submission and dual-channel finality tracking.

After the wallet hands back a hash, two paths look for the receipt:

    RECEIPT_POLL       fixed-interval ``get_transaction_receipt`` loop
    BLOCK_LISTENER     every new block triggers one receipt query, fed from the
                       session-wide header stream the balances share

Whichever sees a receipt first resolves the transfer; the pending map entry is
the single "already resolved" flag, so the slower path becomes a no-op and is
cancelled through the subscription registry.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Set

from ..config import settings
from ..providers.base import LedgerClient, Notifier, WalletProvider
from ..services.address import is_valid_tx_hash, short_address
from .balances import BalanceSynchronizer
from .errors import (
    DuplicateSubmission,
    NotConnected,
    TimedOut,
    UserRejected,
    WalletError,
    classify_error,
)
from .events import EventBus
from .gas import GasEstimator
from .models import (
    BlockHeader,
    GasQuote,
    NotificationKind,
    PendingTransaction,
    Receipt,
    SubscriptionKind,
    TransactionStatus,
    TransferParams,
    WalletEvent,
)
from .subscriptions import BlockHeaderFeed, SubscriptionRegistry

if TYPE_CHECKING:
    from .session import SessionStore


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionTracker:
    """Owns the pending-transaction map; everyone else sees snapshots."""

    def __init__(
        self,
        store: "SessionStore",
        registry: SubscriptionRegistry,
        wallet: WalletProvider,
        ledger: LedgerClient,
        estimator: GasEstimator,
        balances: BalanceSynchronizer,
        events: EventBus,
        notifier: Notifier,
        *,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        history_limit: Optional[int] = None,
        reject_duplicates: Optional[bool] = None,
        blocks: Optional[BlockHeaderFeed] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.wallet = wallet
        self.ledger = ledger
        self.estimator = estimator
        self.balances = balances
        self.blocks = blocks or balances.blocks
        self.events = events
        self.notifier = notifier
        self.poll_interval = poll_interval or settings.receipt_poll_interval_seconds
        self.max_attempts = max_attempts or settings.receipt_max_attempts
        self.reject_duplicates = (
            settings.reject_duplicate_submissions if reject_duplicates is None else reject_duplicates
        )
        self.logger = logger or logging.getLogger(__name__)
        self.total_sent = Decimal(0)
        self._pending: Dict[str, PendingTransaction] = {}
        self._history: Deque[PendingTransaction] = deque(maxlen=history_limit or settings.history_limit)
        self._refreshes: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def pending(self) -> Dict[str, PendingTransaction]:
        return {tx_hash: tx.snapshot() for tx_hash, tx in self._pending.items()}

    @property
    def history(self) -> List[PendingTransaction]:
        """Finished transfers, newest first."""
        return list(self._history)

    def get(self, tx_hash: str) -> Optional[PendingTransaction]:
        tx = self._pending.get(tx_hash)
        return tx.snapshot() if tx is not None else None

    def is_pending(self, tx_hash: str) -> bool:
        return tx_hash in self._pending

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(self, params: TransferParams, quote: Optional[GasQuote] = None) -> PendingTransaction:
        """
        Sign and broadcast a transfer, then start tracking it.

        Returns as soon as the wallet hands back a hash. A wallet refusal does
        not raise: the returned record has status REJECTED, ``hash`` None and
        the classified error in ``error``.

        Raises:
            NotConnected, InvalidAmount, InvalidAddress, InsufficientBalance:
                Validation failed; nothing was sent.
            DuplicateSubmission: Identical transfer pending and duplicates are rejected.
            InsufficientGas, RevertedExecution, EstimationFailed:
                The quote had to be recomputed and that failed.
        """
        amount_raw = self.estimator.validate(params)
        if self.reject_duplicates and self._has_equivalent(params):
            raise DuplicateSubmission()

        state = self.store.current
        quote = await self.estimator.ensure_fresh(quote, params)
        if not self.store.is_current(state.generation):
            raise NotConnected("Session changed before the transfer was signed")

        try:
            tx_hash = await self.wallet.send_transfer(
                params.token,
                params.recipient,
                amount_raw,
                quote.gas_units,
                quote.gas_price_wei,
            )
        except Exception as exc:
            return self._reject(params, state.generation, classify_error(exc, default=WalletError))
        if not is_valid_tx_hash(tx_hash):
            error = WalletError(f"Wallet returned an invalid transaction hash: {tx_hash!r}")
            return self._reject(params, state.generation, error)

        tx = PendingTransaction(
            hash=tx_hash,
            amount=params.amount,
            recipient=params.recipient,
            token=params.token,
            generation=state.generation,
            _canceller=self.cancel_tracking,
        )
        if not self.store.is_current(state.generation):
            # Broadcast happened, but for a session that has been torn down
            self.logger.warning("Transfer %s signed for a stale session; not tracked", tx_hash)
            return tx.snapshot()

        existing = self._pending.get(tx_hash)
        if existing is not None:
            return existing.snapshot()

        self._pending[tx_hash] = tx
        self.logger.info(
            "Transfer %s submitted: %s %s to %s",
            tx_hash,
            params.amount,
            params.token.symbol,
            short_address(params.recipient),
        )
        self.events.emit(WalletEvent.TRANSACTION_STATUS_CHANGED, tx.snapshot())
        self.notifier.notify(f"Transaction submitted: {short_address(tx_hash)}", NotificationKind.INFO)
        self._track(tx)
        return tx.snapshot()

    def _has_equivalent(self, params: TransferParams) -> bool:
        for tx in self._pending.values():
            key = (tx.recipient.lower(), tx.amount, tx.token.contract_address.lower())
            if key == params.key:
                return True
        return False

    def _reject(self, params: TransferParams, generation: int, error: WalletError) -> PendingTransaction:
        tx = PendingTransaction(
            hash=None,
            amount=params.amount,
            recipient=params.recipient,
            token=params.token,
            status=TransactionStatus.REJECTED,
            generation=generation,
            resolved_at=_now(),
            error=error,
        )
        self.logger.info("Transfer rejected before broadcast: %s", error.message)
        if not self.store.is_current(generation):
            return tx

        self._history.appendleft(tx.snapshot())
        self.events.emit(WalletEvent.TRANSACTION_STATUS_CHANGED, tx.snapshot())
        if isinstance(error, UserRejected):
            self.notifier.notify("Transaction rejected by user", NotificationKind.ERROR)
        else:
            self.notifier.notify(f"Transaction failed: {error.message}", NotificationKind.ERROR)
        return tx

    # ------------------------------------------------------------------
    # Finality detection
    # ------------------------------------------------------------------

    def _track(self, tx: PendingTransaction) -> None:
        tx_hash, generation = tx.hash, tx.generation
        self.registry.register(
            SubscriptionKind.RECEIPT_POLL,
            lambda: asyncio.create_task(
                self._poll_receipt(tx_hash, generation),
                name=f"receipt-poll-{tx_hash[:10]}",
            ),
            key=tx_hash,
        )
        self.blocks.listen(tx_hash, self._on_block(tx_hash, generation))

    def _is_tracking(self, tx_hash: str, generation: int) -> bool:
        tx = self._pending.get(tx_hash)
        return self.store.is_current(generation) and tx is not None and not tx.is_terminal

    async def _poll_receipt(self, tx_hash: str, generation: int) -> None:
        for attempt in range(1, self.max_attempts + 1):
            if not self._is_tracking(tx_hash, generation):
                return
            try:
                receipt = await self.ledger.get_transaction_receipt(tx_hash)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.warning(f"Receipt poll {attempt} for {tx_hash} failed: {e}")
                receipt = None

            if receipt is not None:
                self._resolve(tx_hash, generation, receipt, source="poll")
                return
            await asyncio.sleep(self.poll_interval)

        self._time_out(tx_hash, generation)

    def _on_block(self, tx_hash: str, generation: int):
        async def on_block(header: BlockHeader) -> None:
            if not self._is_tracking(tx_hash, generation):
                return
            try:
                receipt = await self.ledger.get_transaction_receipt(tx_hash)
            except Exception as e:  # noqa: BLE001
                self.logger.debug("Receipt query on block %s failed: %s", header.number, e)
                return
            if receipt is not None:
                self._resolve(tx_hash, generation, receipt, source="push")

        return on_block

    def _resolve(self, tx_hash: str, generation: int, receipt: Receipt, source: str) -> bool:
        """Apply a receipt. Only the first caller for a hash has any effect."""
        if not self.store.is_current(generation):
            self.logger.debug("Dropping receipt for %s from generation %d", tx_hash, generation)
            return False
        tx = self._pending.get(tx_hash)
        if tx is None or tx.is_terminal:
            return False

        self._release(tx_hash)
        tx.status = TransactionStatus.CONFIRMED if receipt.success else TransactionStatus.FAILED
        tx.receipt = receipt
        tx.resolved_at = _now()
        del self._pending[tx_hash]
        self.logger.info(
            "Transfer %s %s in block %s (via %s)",
            tx_hash,
            tx.status.value,
            receipt.block_number,
            source,
        )
        self._finish(tx)

        if tx.status == TransactionStatus.CONFIRMED:
            self.total_sent += tx.amount
            self.balances.apply_confirmed_transfer(tx.amount, generation)
            self.notifier.notify(
                f"Transfer of {tx.amount} {tx.token.symbol} confirmed",
                NotificationKind.SUCCESS,
            )
            self._schedule_refresh(generation)
        else:
            self.notifier.notify("Transaction failed on-chain", NotificationKind.ERROR)
        return True

    def _time_out(self, tx_hash: str, generation: int) -> None:
        if not self._is_tracking(tx_hash, generation):
            return
        tx = self._pending.pop(tx_hash)
        self._release(tx_hash)
        tx.status = TransactionStatus.TIMED_OUT
        tx.resolved_at = _now()
        tx.error = TimedOut()
        self.logger.warning("Gave up tracking %s after %d attempts", tx_hash, self.max_attempts)
        self._finish(tx)
        self.notifier.notify(
            "Confirmation is taking longer than expected; check your balance later",
            NotificationKind.WARNING,
        )

    def _finish(self, tx: PendingTransaction) -> None:
        self._history.appendleft(tx.snapshot())
        self.events.emit(WalletEvent.TRANSACTION_STATUS_CHANGED, tx.snapshot())

    def _release(self, tx_hash: str) -> None:
        self.registry.cancel(SubscriptionKind.RECEIPT_POLL, tx_hash)
        self.registry.cancel(SubscriptionKind.BLOCK_LISTENER, tx_hash)

    def _schedule_refresh(self, generation: int) -> None:
        task = asyncio.ensure_future(self._refresh(generation))
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    async def _refresh(self, generation: int) -> None:
        if not self.store.is_current(generation):
            return
        try:
            await self.balances.refresh_now()
        except WalletError as e:
            self.logger.warning("Post-confirmation balance refresh failed: %s", e)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_tracking(self, tx_hash: str) -> bool:
        """Stop watching ``tx_hash`` without resolving it. No status event is emitted."""
        if tx_hash not in self._pending:
            return False
        self._release(tx_hash)
        del self._pending[tx_hash]
        self.logger.info("Stopped tracking %s", tx_hash)
        return True

    def clear(self, state=None) -> None:
        """Drop every pending entry silently; used as a session teardown hook."""
        for tx_hash in list(self._pending):
            self._release(tx_hash)
        self._pending.clear()

    async def drain(self) -> None:
        """Wait for scheduled post-confirmation refreshes."""
        if self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)
