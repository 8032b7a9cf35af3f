"""
Wallet connection state machine.

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTED -> DISCONNECTED   (disconnect, empty accounts, chain change)
    CONNECTED -> CONNECTED      (account switch; new generation)

Every transition that changes the identity allocates a new generation. Teardown
(subscription cancellation and pending-transaction clearing) runs synchronously
before the new state is published, so no callback can observe a half torn-down
session.
"""

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import settings
from ..logging_config import bind_session_context
from ..providers.base import Handler, Notifier, WalletProvider
from ..services.address import normalize_address, same_address, short_address
from .errors import (
    NoAccounts,
    ProviderUnavailable,
    UNRECOGNIZED_CHAIN_CODE,
    UserRejected,
    WalletError,
    classify_error,
)
from .events import EventBus
from .models import NotificationKind, SessionState, SessionStatus, SubscriptionKind, WalletEvent
from .subscriptions import SubscriptionRegistry


ConnectHook = Callable[[SessionState], Union[None, Awaitable[None]]]
TeardownHook = Callable[[SessionState], None]


class SessionStore:
    """Holds the one current ``SessionState``.

    Only ``ConnectionManager`` writes; every other component reads snapshots.
    """

    def __init__(self) -> None:
        self._state = SessionState()

    @property
    def current(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._state.generation

    def is_current(self, generation: int) -> bool:
        return self._state.generation == generation

    def advance(
        self,
        *,
        address: Optional[str],
        chain_id: Optional[int],
        status: SessionStatus,
    ) -> SessionState:
        self._state = SessionState(
            address=address,
            chain_id=chain_id,
            generation=self._state.generation + 1,
            status=status,
        )
        return self._state

    def set_status(self, status: SessionStatus) -> SessionState:
        self._state = replace(self._state, status=status)
        return self._state


class _ProviderListener:
    """Registry-owned ``provider.on`` registration."""

    def __init__(self, provider: WalletProvider, event: str, handler: Handler):
        self._provider = provider
        self._event = event
        self._handler = handler
        provider.on(event, handler)

    def cancel(self) -> None:
        self._provider.off(self._event, self._handler)


def parse_chain_id(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)


class ConnectionManager:
    """Drives ``SessionState`` transitions from user actions and provider events."""

    def __init__(
        self,
        provider: Optional[WalletProvider],
        store: SessionStore,
        registry: SubscriptionRegistry,
        events: EventBus,
        notifier: Notifier,
        *,
        expected_chain_id: Optional[int] = None,
        expected_chain_name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.store = store
        self.registry = registry
        self.events = events
        self.notifier = notifier
        self.expected_chain_id = expected_chain_id or settings.expected_chain_id
        self.expected_chain_name = expected_chain_name or settings.expected_chain_name
        self.logger = logger or logging.getLogger(__name__)
        self._connect_hooks: List[ConnectHook] = []
        self._teardown_hooks: List[TeardownHook] = []
        self._connecting: Optional[asyncio.Future] = None

    @property
    def state(self) -> SessionState:
        return self.store.current

    def add_connect_hook(self, hook: ConnectHook) -> None:
        """Run after every new connected generation is published."""
        self._connect_hooks.append(hook)

    def add_teardown_hook(self, hook: TeardownHook) -> None:
        """Run synchronously, before the next generation is published."""
        self._teardown_hooks.append(hook)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> SessionState:
        """Connect to the wallet, coalescing concurrent calls into one attempt.

        Raises:
            ProviderUnavailable: No wallet capability present.
            NoAccounts: The wallet returned zero accounts.
            UserRejected: The user dismissed the access prompt.
        """
        if self.provider is None:
            self.notifier.notify("Please install a wallet provider", NotificationKind.ERROR)
            raise ProviderUnavailable()

        if self._connecting is not None and not self._connecting.done():
            return await asyncio.shield(self._connecting)

        if self.state.connected:
            return self.state

        attempt = asyncio.ensure_future(self._connect())
        self._connecting = attempt
        try:
            return await asyncio.shield(attempt)
        finally:
            if self._connecting is attempt and attempt.done():
                self._connecting = None

    async def _connect(self) -> SessionState:
        start_generation = self.store.generation
        self._publish(self.store.set_status(SessionStatus.CONNECTING))

        try:
            accounts = await self.provider.request_accounts()
            if not accounts:
                raise NoAccounts()
            address = normalize_address(accounts[0])
            chain_id = parse_chain_id(await self.provider.get_chain_id())
        except Exception as exc:
            error = classify_error(exc, default=ProviderUnavailable)
            if self.store.is_current(start_generation):
                self._publish(self.store.set_status(SessionStatus.DISCONNECTED))
            if isinstance(error, UserRejected):
                self.notifier.notify("Connection rejected by user", NotificationKind.ERROR)
            elif isinstance(error, NoAccounts):
                self.notifier.notify("Please unlock your wallet", NotificationKind.ERROR)
            else:
                self.notifier.notify(f"Connection failed: {error.message}", NotificationKind.ERROR)
            self.logger.warning("Wallet connection failed: %s", error.message)
            if error is exc:
                raise
            raise error from exc

        if not self.store.is_current(start_generation):
            # disconnect() won the race while the wallet prompt was open
            self.logger.info("Connect attempt superseded by generation %d", self.store.generation)
            return self.state

        state = await self._establish(address, chain_id)
        self.notifier.notify("Wallet connected successfully!", NotificationKind.SUCCESS)
        if chain_id != self.expected_chain_id:
            self.notifier.notify(
                f"Connected to network {chain_id}; switch to {self.expected_chain_name}",
                NotificationKind.WARNING,
            )
        return state

    def disconnect(self) -> SessionState:
        """Tear the session down. Idempotent."""
        state = self.state
        if state.status == SessionStatus.DISCONNECTED:
            return state
        new_state = self._replace_session(state, None, None, SessionStatus.DISCONNECTED)
        self.notifier.notify("Wallet disconnected", NotificationKind.INFO)
        return new_state

    # ------------------------------------------------------------------
    # Provider events
    # ------------------------------------------------------------------

    async def on_accounts_changed(self, accounts: List[str]) -> SessionState:
        if not accounts:
            return self.disconnect()

        state = self.state
        if not state.connected or same_address(accounts[0], state.address):
            return state

        address = normalize_address(accounts[0])
        self.logger.info("Account switched to %s", short_address(address))
        new_state = await self._establish(address, state.chain_id, previous=state)
        self.notifier.notify("Account changed", NotificationKind.INFO)
        return new_state

    def on_chain_changed(self, chain_id: Any) -> SessionState:
        """Full teardown; reconnecting is left to the surrounding application."""
        state = self.state
        if state.status == SessionStatus.DISCONNECTED:
            return state
        new_chain = parse_chain_id(chain_id)
        self.logger.info("Chain changed from %s to %s", state.chain_id, new_chain)
        new_state = self._replace_session(state, None, None, SessionStatus.DISCONNECTED)
        self.notifier.notify(
            f"Network changed to {new_chain}; reconnect to continue",
            NotificationKind.WARNING,
        )
        return new_state

    async def switch_network(self, chain_params: Dict[str, Any]) -> None:
        """Ask the wallet to switch to ``chain_params['chainId']``, adding it if unknown.

        The wallet's subsequent ``chainChanged`` event drives the teardown.
        """
        if self.provider is None:
            raise ProviderUnavailable()
        chain_id = parse_chain_id(chain_params["chainId"])
        try:
            await self.provider.switch_chain(chain_id)
        except Exception as exc:
            if getattr(exc, "code", None) != UNRECOGNIZED_CHAIN_CODE:
                self.notifier.notify("Failed to switch network", NotificationKind.ERROR)
                raise classify_error(exc, default=WalletError) from exc
            try:
                await self.provider.add_chain(chain_params)
            except Exception as add_exc:
                self.notifier.notify("Failed to add network", NotificationKind.ERROR)
                raise classify_error(add_exc, default=WalletError) from add_exc
        self.notifier.notify(f"Switched to {chain_params.get('chainName', chain_id)}!", NotificationKind.SUCCESS)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _establish(
        self,
        address: str,
        chain_id: Optional[int],
        previous: Optional[SessionState] = None,
    ) -> SessionState:
        state = self._replace_session(previous or self.state, address, chain_id, SessionStatus.CONNECTED)
        self._listen()

        for hook in list(self._connect_hooks):
            if not self.store.is_current(state.generation):
                break
            try:
                result = hook(state)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Connect hook failed: %s", exc, exc_info=True)
        return state

    def _replace_session(
        self,
        previous: SessionState,
        address: Optional[str],
        chain_id: Optional[int],
        status: SessionStatus,
    ) -> SessionState:
        if previous.status != SessionStatus.DISCONNECTED:
            self._teardown(previous)
        state = self.store.advance(address=address, chain_id=chain_id, status=status)
        bind_session_context(state.address, state.chain_id, state.generation)
        self._publish(state)
        return state

    def _teardown(self, state: SessionState) -> None:
        cancelled = self.registry.cancel_all()
        for hook in list(self._teardown_hooks):
            try:
                hook(state)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Teardown hook failed: %s", exc, exc_info=True)
        self.logger.debug("Tore down generation %d (%d subscriptions)", state.generation, cancelled)

    def _listen(self) -> None:
        provider = self.provider
        self.registry.register(
            SubscriptionKind.ACCOUNTS_CHANGED,
            lambda: _ProviderListener(provider, WalletProvider.ACCOUNTS_CHANGED, self.on_accounts_changed),
        )
        self.registry.register(
            SubscriptionKind.CHAIN_CHANGED,
            lambda: _ProviderListener(provider, WalletProvider.CHAIN_CHANGED, self.on_chain_changed),
        )

    def _publish(self, state: SessionState) -> None:
        self.events.emit(WalletEvent.SESSION_CHANGED, state)
