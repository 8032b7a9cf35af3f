"""
Tests for the JSON-RPC signer acting as wallet provider.
"""

import asyncio

import pytest

from conftest import OTHER_ACCOUNT, RECIPIENT, SENDER, wait_for
from walletsync.core.errors import NotConnected, ProviderRpcError
from walletsync.core.models import NotificationKind
from walletsync.core.wallet import WalletSession
from walletsync.providers import erc20
from walletsync.providers.base import WalletProvider
from walletsync.providers.wallet import RpcWalletProvider


@pytest.fixture
def provider(rpc_server):
    rpc_server.results["eth_requestAccounts"] = [SENDER]
    rpc_server.results["eth_accounts"] = [SENDER]
    rpc_server.results["eth_chainId"] = "0xaa36a7"
    return RpcWalletProvider(rpc_server.client(), poll_interval=0.01)


class TestRequests:
    """EIP-1193 request forwarding."""

    @pytest.mark.asyncio
    async def test_request_accounts_and_chain(self, provider):
        assert await provider.request_accounts() == [SENDER]
        assert await provider.get_chain_id() == 11155111
        assert provider.selected_account == SENDER

    @pytest.mark.asyncio
    async def test_send_transfer_requires_accounts(self, provider, token):
        with pytest.raises(NotConnected):
            await provider.send_transfer(token, RECIPIENT, 1, 23100, 10**9)

    @pytest.mark.asyncio
    async def test_send_transfer_builds_transaction(self, provider, rpc_server, token):
        rpc_server.results["eth_sendTransaction"] = "0x" + "ab" * 32
        await provider.request_accounts()

        tx_hash = await provider.send_transfer(token, RECIPIENT, 10**18, 23100, 2 * 10**9)

        assert tx_hash == "0x" + "ab" * 32
        (tx,) = rpc_server.params_of("eth_sendTransaction")
        assert tx == {
            "from": SENDER,
            "to": token.contract_address,
            "data": erc20.encode_call("transfer", [RECIPIENT, 10**18]),
            "value": "0x0",
            "gas": hex(23100),
            "gasPrice": hex(2 * 10**9),
        }

    @pytest.mark.asyncio
    async def test_user_rejection_surfaces_code(self, provider, rpc_server, token):
        rpc_server.results["eth_sendTransaction"] = ProviderRpcError(4001, "User rejected the request.")
        await provider.request_accounts()

        with pytest.raises(ProviderRpcError) as exc_info:
            await provider.send_transfer(token, RECIPIENT, 1, 23100, 10**9)
        assert exc_info.value.code == 4001

    @pytest.mark.asyncio
    async def test_switch_and_add_chain(self, provider, rpc_server):
        rpc_server.results["wallet_switchEthereumChain"] = None
        rpc_server.results["wallet_addEthereumChain"] = None

        await provider.switch_chain(11155111)
        await provider.add_chain({"chainId": "0xaa36a7"})

        assert rpc_server.params_of("wallet_switchEthereumChain") == [{"chainId": "0xaa36a7"}]
        assert rpc_server.params_of("wallet_addEthereumChain") == [{"chainId": "0xaa36a7"}]

    @pytest.mark.asyncio
    async def test_watch_asset_sends_options_object(self, provider, rpc_server, token):
        rpc_server.results["wallet_watchAsset"] = True

        assert await provider.watch_asset(token, image="https://img.test/mtk.png") is True
        assert rpc_server.params_of("wallet_watchAsset") == {
            "type": "ERC20",
            "options": {
                "address": token.contract_address,
                "symbol": "MTK",
                "decimals": 18,
                "image": "https://img.test/mtk.png",
            },
        }


class TestEvents:
    """Account and chain drift become provider events."""

    @pytest.mark.asyncio
    async def test_account_change_is_emitted(self, provider, rpc_server):
        await provider.request_accounts()
        await provider.get_chain_id()
        seen = []
        provider.on(WalletProvider.ACCOUNTS_CHANGED, seen.append)

        rpc_server.results["eth_accounts"] = [OTHER_ACCOUNT]
        await wait_for(lambda: seen)

        assert seen == [[OTHER_ACCOUNT]]
        provider._stop_watching()

    @pytest.mark.asyncio
    async def test_chain_change_is_emitted(self, provider, rpc_server):
        await provider.request_accounts()
        await provider.get_chain_id()
        seen = []
        provider.on(WalletProvider.CHAIN_CHANGED, seen.append)

        rpc_server.results["eth_chainId"] = "0x1"
        await wait_for(lambda: seen)

        assert seen == [1]
        provider._stop_watching()

    @pytest.mark.asyncio
    async def test_handler_that_unsubscribes_runs_to_completion(self, provider, rpc_server):
        await provider.request_accounts()
        finished = []

        async def handler(accounts):
            provider.off(WalletProvider.ACCOUNTS_CHANGED, handler)
            await asyncio.sleep(0.02)
            finished.append(accounts)

        provider.on(WalletProvider.ACCOUNTS_CHANGED, handler)
        rpc_server.results["eth_accounts"] = [OTHER_ACCOUNT]
        await wait_for(lambda: finished)

        assert finished == [[OTHER_ACCOUNT]]
        assert provider._watch_task is None

    @pytest.mark.asyncio
    async def test_removing_last_handler_stops_watching(self, provider):
        handler = lambda _payload: None  # noqa: E731
        provider.on(WalletProvider.CHAIN_CHANGED, handler)
        assert provider._watch_task is not None

        provider.off(WalletProvider.CHAIN_CHANGED, handler)

        assert provider._watch_task is None

    def test_unknown_event(self, provider):
        with pytest.raises(ValueError):
            provider.on("message", print)


# =============================================================================
# Session over the JSON-RPC signer
# =============================================================================


class TestSessionAccountSwitch:
    """Account drift reported by the signer re-establishes the session."""

    @pytest.mark.asyncio
    async def test_account_switch_completes_reconnect(self, provider, rpc_server, ledger, notifier, config):
        session = WalletSession(provider, ledger, notifier=notifier, config=config)
        await session.connect()
        assert session.state.generation == 1

        rpc_server.results["eth_accounts"] = [OTHER_ACCOUNT]
        await wait_for(lambda: "Account changed" in notifier.of_kind(NotificationKind.INFO))

        assert session.state.address == OTHER_ACCOUNT
        assert session.state.generation == 2
        assert session.balance is not None
        assert provider._watch_task is not None and not provider._watch_task.done()

        session.disconnect()
        assert provider._watch_task is None
        await provider.close()
