"""
Wallet provider backed by an external JSON-RPC signer (Frame, Clef, a dev node
with unlocked accounts, ...).

The signer holds the keys and prompts the user; this class only forwards
EIP-1193 requests and turns account/chain drift into ``accountsChanged`` /
``chainChanged`` events.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ..config import settings
from ..core.errors import NotConnected
from ..core.models import TokenDescriptor
from . import erc20
from .base import Handler, WalletProvider
from .jsonrpc import JsonRpcClient, from_quantity, to_quantity
from .streams import dispatch

logger = logging.getLogger(__name__)


class RpcWalletProvider(WalletProvider):
    """EIP-1193 style provider over HTTP JSON-RPC."""

    def __init__(
        self,
        rpc: Optional[JsonRpcClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self.rpc = rpc or JsonRpcClient(settings.wallet_rpc_url)
        self.poll_interval = poll_interval or settings.provider_event_poll_seconds
        self._handlers: Dict[str, List[Handler]] = {
            self.ACCOUNTS_CHANGED: [],
            self.CHAIN_CHANGED: [],
        }
        self._accounts: Optional[List[str]] = None
        self._chain_id: Optional[int] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._dispatches: Set[asyncio.Task] = set()

    @property
    def selected_account(self) -> Optional[str]:
        return self._accounts[0] if self._accounts else None

    # ------------------------------------------------------------------
    # EIP-1193 requests
    # ------------------------------------------------------------------

    async def request_accounts(self) -> List[str]:
        accounts = await self.rpc.call("eth_requestAccounts")
        self._accounts = list(accounts or [])
        return list(self._accounts)

    async def get_chain_id(self) -> int:
        self._chain_id = from_quantity(await self.rpc.call("eth_chainId"))
        return self._chain_id

    async def send_transfer(
        self,
        token: TokenDescriptor,
        recipient: str,
        amount_raw: int,
        gas_units: int,
        gas_price_wei: int,
    ) -> str:
        sender = self.selected_account
        if sender is None:
            raise NotConnected("No account selected; request accounts first")

        tx = {
            "from": sender,
            "to": token.contract_address,
            "data": erc20.encode_call("transfer", [recipient, amount_raw]),
            "value": "0x0",
            "gas": to_quantity(gas_units),
            "gasPrice": to_quantity(gas_price_wei),
        }
        tx_hash = await self.rpc.call("eth_sendTransaction", [tx])
        logger.info(f"Transfer signed and broadcast: {tx_hash}")
        return tx_hash

    async def switch_chain(self, chain_id: int) -> None:
        await self.rpc.call("wallet_switchEthereumChain", [{"chainId": to_quantity(chain_id)}])

    async def add_chain(self, chain_params: Dict[str, Any]) -> None:
        await self.rpc.call("wallet_addEthereumChain", [chain_params])

    async def watch_asset(self, token: TokenDescriptor, image: Optional[str] = None) -> bool:
        options: Dict[str, Any] = {
            "address": token.contract_address,
            "symbol": token.symbol,
            "decimals": token.decimals,
        }
        if image:
            options["image"] = image
        # EIP-747 takes an object, not a positional array
        result = await self.rpc.call("wallet_watchAsset", {"type": "ERC20", "options": options})
        return bool(result)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unsupported provider event: {event}")
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)
        self._ensure_watching()

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not any(self._handlers.values()):
            self._stop_watching()

    def _ensure_watching(self) -> None:
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self._watch(), name="wallet-provider-watch")

    def _stop_watching(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None

    async def _watch(self) -> None:
        """Poll the signer and emit events when accounts or chain drift."""
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                accounts = list(await self.rpc.call("eth_accounts") or [])
                chain_id = from_quantity(await self.rpc.call("eth_chainId"))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Wallet provider poll failed: {e}")
                continue

            if self._chain_id is not None and chain_id != self._chain_id:
                self._chain_id = chain_id
                self._emit(self.CHAIN_CHANGED, chain_id)

            known = [a.lower() for a in (self._accounts or [])]
            if self._accounts is not None and [a.lower() for a in accounts] != known:
                self._accounts = accounts
                self._emit(self.ACCOUNTS_CHANGED, list(accounts))

    def _emit(self, event: str, payload: Any) -> None:
        # Handlers run outside the watcher task; an account switch tears down
        # the listener, which stops the watcher while the handler still runs
        for handler in list(self._handlers.get(event, [])):
            task = asyncio.create_task(dispatch(handler, payload))
            self._dispatches.add(task)
            task.add_done_callback(self._dispatches.discard)

    async def close(self) -> None:
        self._stop_watching()
        for task in list(self._dispatches):
            task.cancel()
        await self.rpc.close()
