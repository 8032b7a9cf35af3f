"""
WalletSession: the one object a presentation layer talks to.

Wires the session store, connection manager, subscription registry, balance
synchronizer, gas estimator and transaction tracker around injected wallet and
ledger capabilities, and exposes the user-facing operations.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..config import Settings, settings
from ..providers.base import LedgerClient, Notifier, TokenRegistry, WalletProvider
from ..providers.notifier import LoggingNotifier
from ..providers.tokens import StaticTokenRegistry
from .amounts import AmountLike, parse_amount
from .balances import BalanceSynchronizer
from .errors import ProviderUnavailable, WalletError, classify_error
from .events import EventBus, EventHandler
from .gas import GasEstimator
from .models import (
    BalanceSnapshot,
    GasQuote,
    NotificationKind,
    PendingTransaction,
    SessionState,
    TokenDescriptor,
    TransferParams,
    WalletEvent,
)
from .session import ConnectionManager, SessionStore
from .subscriptions import BlockHeaderFeed, SubscriptionRegistry
from .tracker import TransactionTracker

logger = logging.getLogger(__name__)


class WalletSession:
    """
    Facade over the wallet engine.

    Usage:
        session = WalletSession.from_settings()
        session.on("balancesUpdated", render_balances)
        await session.connect()
        quote = await session.estimate_transfer("1.5", "0x...")
        tx = await session.submit_transfer("1.5", "0x...")
    """

    def __init__(
        self,
        provider: Optional[WalletProvider],
        ledger: LedgerClient,
        *,
        tokens: Optional[TokenRegistry] = None,
        notifier: Optional[Notifier] = None,
        token: Optional[str] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or settings
        self.provider = provider
        self.ledger = ledger
        self.tokens = tokens or StaticTokenRegistry()
        self.notifier = notifier or LoggingNotifier()
        self.token: TokenDescriptor = self.tokens.get(token or self.config.default_token)

        self.events = EventBus()
        self.store = SessionStore()
        self.registry = SubscriptionRegistry(self.store)
        self.blocks = BlockHeaderFeed(self.registry, ledger)
        self.connection = ConnectionManager(
            provider,
            self.store,
            self.registry,
            self.events,
            self.notifier,
            expected_chain_id=self.config.expected_chain_id,
            expected_chain_name=self.config.expected_chain_name,
        )
        self.balances = BalanceSynchronizer(
            self.store,
            self.registry,
            ledger,
            self.token,
            self.events,
            interval=self.config.balance_poll_interval_seconds,
            blocks=self.blocks,
        )
        self.estimator = GasEstimator(
            self.store,
            ledger,
            self.balances,
            multiplier=self.config.gas_limit_multiplier,
            freshness=self.config.gas_quote_freshness_seconds,
        )
        self.tracker = TransactionTracker(
            self.store,
            self.registry,
            provider,
            ledger,
            self.estimator,
            self.balances,
            self.events,
            self.notifier,
            poll_interval=self.config.receipt_poll_interval_seconds,
            max_attempts=self.config.receipt_max_attempts,
            history_limit=self.config.history_limit,
            reject_duplicates=self.config.reject_duplicate_submissions,
            blocks=self.blocks,
        )
        self._last_quote: Optional[GasQuote] = None

        self.connection.add_teardown_hook(self.tracker.clear)
        self.connection.add_teardown_hook(self.balances.reset)
        self.connection.add_teardown_hook(self._forget_quote)
        self.connection.add_connect_hook(self._start_sync)

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **kwargs: Any) -> "WalletSession":
        """Build a session on the JSON-RPC wallet provider and ledger client."""
        from ..providers.jsonrpc import JsonRpcClient
        from ..providers.ledger import RpcLedgerClient
        from ..providers.wallet import RpcWalletProvider

        config = config or settings
        provider = RpcWalletProvider(
            JsonRpcClient(config.wallet_rpc_url, timeout=config.request_timeout_seconds),
            poll_interval=config.provider_event_poll_seconds,
        )
        ledger = RpcLedgerClient(
            JsonRpcClient(config.rpc_url, timeout=config.request_timeout_seconds),
            ws_url=config.ws_url,
            block_poll_interval=config.block_poll_interval_seconds,
        )
        return cls(provider, ledger, config=config, **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.store.current

    @property
    def balance(self) -> Optional[BalanceSnapshot]:
        return self.balances.snapshot

    @property
    def pending(self) -> Dict[str, PendingTransaction]:
        return self.tracker.pending

    @property
    def history(self) -> List[PendingTransaction]:
        return self.tracker.history

    def on(self, event: WalletEvent | str, handler: EventHandler) -> None:
        self.events.on(event, handler)

    def off(self, event: WalletEvent | str, handler: EventHandler) -> None:
        self.events.off(event, handler)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def connect(self) -> SessionState:
        return await self.connection.connect()

    def disconnect(self) -> SessionState:
        return self.connection.disconnect()

    async def refresh_balances(self) -> Optional[BalanceSnapshot]:
        return await self.balances.refresh_now()

    async def _start_sync(self, state: SessionState) -> None:
        self.balances.start_polling()
        try:
            await self.balances.refresh_now()
        except WalletError as e:
            logger.warning("Initial balance refresh failed: %s", e)

    def _forget_quote(self, state: SessionState) -> None:
        self._last_quote = None

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _params(self, amount: AmountLike, recipient: str) -> TransferParams:
        return TransferParams(
            amount=parse_amount(amount),
            recipient=(recipient or "").strip(),
            token=self.token,
        )

    async def estimate_transfer(self, amount: AmountLike, recipient: str) -> GasQuote:
        try:
            params = self._params(amount, recipient)
            quote = await self.estimator.estimate(params)
        except WalletError as e:
            self.notifier.notify(e.message, NotificationKind.ERROR)
            raise
        self._last_quote = quote
        self.notifier.notify("Gas estimation complete! Ready to send.", NotificationKind.SUCCESS)
        return quote

    async def submit_transfer(
        self,
        amount: AmountLike,
        recipient: str,
        quote: Optional[GasQuote] = None,
    ) -> PendingTransaction:
        """Submit a transfer; a stale or mismatched quote is recomputed first."""
        try:
            params = self._params(amount, recipient)
            return await self.tracker.submit(params, quote or self._last_quote)
        except WalletError as e:
            self.notifier.notify(e.message, NotificationKind.ERROR)
            raise

    def cancel_tracking(self, tx_hash: str) -> bool:
        return self.tracker.cancel_tracking(tx_hash)

    def explorer_url(self, tx_hash: str) -> str:
        return self.config.explorer_link(tx_hash)

    # ------------------------------------------------------------------
    # Wallet extras
    # ------------------------------------------------------------------

    def chain_params(self) -> Dict[str, Any]:
        """``wallet_addEthereumChain`` parameters for the expected network."""
        return {
            "chainId": hex(self.config.expected_chain_id),
            "chainName": self.config.expected_chain_name,
            "nativeCurrency": {
                "name": self.config.native_currency_name,
                "symbol": self.config.native_symbol,
                "decimals": 18,
            },
            "rpcUrls": [self.config.expected_chain_rpc_url],
            "blockExplorerUrls": [self.config.explorer_url],
        }

    async def switch_network(self) -> None:
        await self.connection.switch_network(self.chain_params())

    async def watch_token(self, image: Optional[str] = None) -> bool:
        if self.provider is None:
            raise ProviderUnavailable()
        try:
            added = await self.provider.watch_asset(self.token, image=image)
        except Exception as exc:
            self.notifier.notify(f"Failed to add {self.token.symbol} to wallet", NotificationKind.ERROR)
            raise classify_error(exc, default=WalletError) from exc
        if added:
            self.notifier.notify(f"{self.token.symbol} token added to wallet!", NotificationKind.SUCCESS)
        return added

    async def close(self) -> None:
        self.disconnect()
        await self.tracker.drain()
        await self.events.drain()
        for resource in (self.provider, self.ledger):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()
