"""
Tests for the connection state machine and session generations.
"""

import asyncio

import pytest

from conftest import OTHER_ACCOUNT, SENDER, FakeLedger, FakeWallet, wait_for
from walletsync.core.errors import NoAccounts, ProviderRpcError, ProviderUnavailable, UserRejected
from walletsync.core.models import NotificationKind, SessionStatus, SubscriptionKind
from walletsync.core.session import SessionStore, parse_chain_id
from walletsync.core.wallet import WalletSession
from walletsync.providers.base import WalletProvider


# =============================================================================
# SessionStore
# =============================================================================


class TestSessionStore:
    """Generation bookkeeping."""

    def test_starts_disconnected_at_generation_zero(self):
        store = SessionStore()
        assert store.current.status == SessionStatus.DISCONNECTED
        assert store.generation == 0
        assert store.current.connected is False

    def test_advance_increments_generation(self):
        store = SessionStore()
        first = store.advance(address=SENDER, chain_id=1, status=SessionStatus.CONNECTED)
        second = store.advance(address=None, chain_id=None, status=SessionStatus.DISCONNECTED)
        assert (first.generation, second.generation) == (1, 2)
        assert store.is_current(2)
        assert not store.is_current(1)

    def test_set_status_keeps_generation(self):
        store = SessionStore()
        state = store.set_status(SessionStatus.CONNECTING)
        assert state.generation == 0
        assert state.status == SessionStatus.CONNECTING

    def test_parse_chain_id_forms(self):
        assert parse_chain_id("0xaa36a7") == 11155111
        assert parse_chain_id("11155111") == 11155111
        assert parse_chain_id(5) == 5


# =============================================================================
# connect()
# =============================================================================


class TestConnect:
    """Connecting to the wallet provider."""

    @pytest.mark.asyncio
    async def test_connect_publishes_connected_state(self, session, ledger, recorder):
        state = await session.connect()

        assert state.connected
        assert state.address == SENDER
        assert state.chain_id == 11155111
        assert state.generation == 1
        statuses = [s.status for s in recorder["sessionChanged"]]
        assert statuses == [SessionStatus.CONNECTING, SessionStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_connect_starts_sync_and_listeners(self, session, wallet, ledger):
        await session.connect()

        kinds = {h.kind for h in session.registry.active()}
        assert kinds == {
            SubscriptionKind.ACCOUNTS_CHANGED,
            SubscriptionKind.CHAIN_CHANGED,
            SubscriptionKind.BALANCE_POLL,
            SubscriptionKind.BLOCK_LISTENER,
            SubscriptionKind.NEW_BLOCK_HEADERS,
            SubscriptionKind.TRANSFER_EVENT,
        }
        assert len(wallet.handlers[WalletProvider.ACCOUNTS_CHANGED]) == 1
        assert len(wallet.handlers[WalletProvider.CHAIN_CHANGED]) == 1
        assert ledger.native_calls == 1
        assert session.balance.token == 100
        assert ledger.log_subs[0].filter == {"to": SENDER}

    @pytest.mark.asyncio
    async def test_connect_without_provider(self, ledger, notifier):
        session = WalletSession(None, ledger, notifier=notifier)

        with pytest.raises(ProviderUnavailable):
            await session.connect()
        assert notifier.of_kind(NotificationKind.ERROR) == ["Please install a wallet provider"]

    @pytest.mark.asyncio
    async def test_connect_with_zero_accounts(self, session, wallet):
        wallet.accounts = []

        with pytest.raises(NoAccounts):
            await session.connect()
        assert session.state.status == SessionStatus.DISCONNECTED
        assert len(session.registry) == 0

    @pytest.mark.asyncio
    async def test_connect_rejected_by_user(self, session, wallet, notifier):
        wallet.request_error = ProviderRpcError(4001, "User rejected the request.")

        with pytest.raises(UserRejected) as exc_info:
            await session.connect()
        assert exc_info.value.code == 4001
        assert session.state.status == SessionStatus.DISCONNECTED
        assert notifier.of_kind(NotificationKind.ERROR) == ["Connection rejected by user"]

    @pytest.mark.asyncio
    async def test_concurrent_connects_are_coalesced(self, session, wallet):
        wallet.request_gate = asyncio.Event()

        first = asyncio.create_task(session.connect())
        second = asyncio.create_task(session.connect())
        await asyncio.sleep(0)
        wallet.request_gate.set()
        results = await asyncio.gather(first, second)

        assert wallet.request_calls == 1
        assert results[0] == results[1]
        assert session.state.generation == 1

    @pytest.mark.asyncio
    async def test_connect_when_already_connected_is_noop(self, session, wallet):
        state = await session.connect()
        again = await session.connect()
        assert again == state
        assert wallet.request_calls == 1

    @pytest.mark.asyncio
    async def test_wrong_network_warns_but_connects(self, ledger, notifier, config):
        wallet = FakeWallet(chain_id=1)
        session = WalletSession(wallet, ledger, notifier=notifier, config=config)

        state = await session.connect()

        assert state.connected
        warnings = notifier.of_kind(NotificationKind.WARNING)
        assert len(warnings) == 1
        assert "Sepolia" in warnings[0]
        session.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_during_connect_discards_attempt(self, session, wallet):
        wallet.request_gate = asyncio.Event()
        attempt = asyncio.create_task(session.connect())
        await wait_for(lambda: session.state.status == SessionStatus.CONNECTING)

        session.disconnect()
        wallet.request_gate.set()
        state = await attempt

        assert state.status == SessionStatus.DISCONNECTED
        assert len(session.registry) == 0


# =============================================================================
# disconnect() and provider events
# =============================================================================


class TestTransitions:
    """Disconnect, account switch and chain change."""

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, session, wallet, recorder):
        await session.connect()

        first = session.disconnect()
        second = session.disconnect()

        assert first == second
        assert first.generation == 2
        assert first.address is None
        assert len(session.registry) == 0
        assert wallet.handlers[WalletProvider.ACCOUNTS_CHANGED] == []
        assert session.balance is None
        assert [s.status for s in recorder["sessionChanged"]][-1] == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_empty_accounts_disconnects(self, session, wallet):
        await session.connect()

        await wallet.emit(WalletProvider.ACCOUNTS_CHANGED, [])

        assert session.state.status == SessionStatus.DISCONNECTED
        assert len(session.registry) == 0

    @pytest.mark.asyncio
    async def test_account_switch_reconnects_with_new_generation(self, session, wallet, ledger):
        await session.connect()
        old_subs = list(ledger.block_subs)

        await wallet.emit(WalletProvider.ACCOUNTS_CHANGED, [OTHER_ACCOUNT])

        state = session.state
        assert state.connected
        assert state.address == OTHER_ACCOUNT
        assert state.generation == 2
        assert all(sub.cancelled for sub in old_subs)
        assert ledger.native_calls == 2
        assert session.balance.generation == 2
        # One listener per event, not one per generation
        assert len(wallet.handlers[WalletProvider.ACCOUNTS_CHANGED]) == 1

    @pytest.mark.asyncio
    async def test_same_account_event_is_ignored(self, session, wallet):
        await session.connect()

        await wallet.emit(WalletProvider.ACCOUNTS_CHANGED, [SENDER.upper().replace("0X", "0x")])

        assert session.state.generation == 1

    @pytest.mark.asyncio
    async def test_chain_change_tears_down_without_reconnecting(self, session, wallet, notifier):
        await session.connect()

        await wallet.emit(WalletProvider.CHAIN_CHANGED, "0x1")

        assert session.state.status == SessionStatus.DISCONNECTED
        assert session.state.generation == 2
        assert len(session.registry) == 0
        assert wallet.request_calls == 1
        assert any("Network changed to 1" in m for m in notifier.of_kind(NotificationKind.WARNING))

    @pytest.mark.asyncio
    async def test_generation_strictly_increases(self, session, wallet):
        seen = [session.state.generation]

        await session.connect()
        seen.append(session.state.generation)
        await wallet.emit(WalletProvider.ACCOUNTS_CHANGED, [OTHER_ACCOUNT])
        seen.append(session.state.generation)
        session.disconnect()
        seen.append(session.state.generation)
        wallet.accounts = [SENDER]
        await session.connect()
        seen.append(session.state.generation)
        await wallet.emit(WalletProvider.CHAIN_CHANGED, 5)
        seen.append(session.state.generation)

        assert seen == sorted(set(seen))
        assert len(seen) == 6

    @pytest.mark.asyncio
    async def test_late_balance_result_is_discarded(self, session, ledger, recorder):
        await session.connect()
        ledger.gate = asyncio.Event()
        refresh = asyncio.create_task(session.refresh_balances())
        await asyncio.sleep(0)
        updates_before = len(recorder["balancesUpdated"])

        session.disconnect()
        ledger.gate.set()
        result = await refresh

        assert result is None
        assert session.balance is None
        assert len(recorder["balancesUpdated"]) == updates_before


# =============================================================================
# Network helpers
# =============================================================================


class TestSwitchNetwork:
    """wallet_switchEthereumChain with add-chain fallback."""

    @pytest.mark.asyncio
    async def test_switch_known_chain(self, session, wallet, notifier):
        await session.switch_network()

        assert wallet.switched == [11155111]
        assert wallet.added == []
        assert notifier.of_kind(NotificationKind.SUCCESS) == ["Switched to Sepolia Test Network!"]

    @pytest.mark.asyncio
    async def test_unknown_chain_is_added(self, session, wallet):
        wallet.switch_error = ProviderRpcError(4902, "Unrecognized chain ID")

        await session.switch_network()

        assert len(wallet.added) == 1
        params = wallet.added[0]
        assert params["chainId"] == "0xaa36a7"
        assert params["nativeCurrency"] == {"name": "Sepolia ETH", "symbol": "ETH", "decimals": 18}
        assert params["blockExplorerUrls"] == ["https://sepolia.etherscan.io"]

    @pytest.mark.asyncio
    async def test_switch_rejected(self, session, wallet):
        wallet.switch_error = ProviderRpcError(4001, "User rejected the request.")

        with pytest.raises(UserRejected):
            await session.switch_network()
        assert wallet.added == []

    @pytest.mark.asyncio
    async def test_watch_token(self, session, wallet, notifier):
        assert await session.watch_token() is True
        assert wallet.watched[0].symbol == "MTK"
        assert notifier.of_kind(NotificationKind.SUCCESS) == ["MTK token added to wallet!"]


@pytest.mark.asyncio
async def test_close_releases_everything(wallet, notifier, config):
    ledger = FakeLedger()
    session = WalletSession(wallet, ledger, notifier=notifier, config=config)
    await session.connect()

    await session.close()

    assert session.state.status == SessionStatus.DISCONNECTED
    assert all(sub.cancelled for sub in ledger.block_subs + ledger.log_subs)
