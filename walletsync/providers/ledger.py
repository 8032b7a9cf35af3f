"""
JSON-RPC ledger client for EVM chains.
"""

from typing import Any, Dict, Optional, Sequence

from ..config import settings
from ..core.models import Receipt, TokenDescriptor, TransferRequest
from . import erc20
from .base import BlockCallback, LedgerClient, LedgerSubscription, LogCallback
from .jsonrpc import JsonRpcClient, from_quantity
from .streams import (
    PollingBlockSubscription,
    PollingLogSubscription,
    WebSocketSubscription,
    parse_block_header,
)


def parse_receipt(raw: Dict[str, Any]) -> Receipt:
    # Pre-Byzantium receipts carry no status; treat them as successful
    status = raw.get("status")
    success = True if status is None else from_quantity(status) == 1
    block_number = raw.get("blockNumber")
    gas_used = raw.get("gasUsed")
    effective = raw.get("effectiveGasPrice")
    return Receipt(
        transaction_hash=raw.get("transactionHash", ""),
        success=success,
        block_number=from_quantity(block_number) if block_number is not None else None,
        gas_used=from_quantity(gas_used) if gas_used is not None else None,
        effective_gas_price=from_quantity(effective) if effective is not None else None,
    )


class RpcLedgerClient(LedgerClient):
    """
    Ledger capability backed by a node's JSON-RPC API.

    Push streams use ``ws_url`` when one is configured and fall back to HTTP
    polling otherwise.
    """

    def __init__(
        self,
        rpc: Optional[JsonRpcClient] = None,
        ws_url: Optional[str] = None,
        block_poll_interval: Optional[float] = None,
    ):
        self.rpc = rpc or JsonRpcClient(settings.rpc_url)
        self.ws_url = ws_url if ws_url is not None else settings.ws_url
        self.block_poll_interval = block_poll_interval or settings.block_poll_interval_seconds

    async def get_native_balance(self, address: str) -> int:
        return from_quantity(await self.rpc.call("eth_getBalance", [address, "latest"]))

    async def get_block_number(self) -> int:
        return from_quantity(await self.rpc.call("eth_blockNumber"))

    async def get_gas_price(self) -> int:
        return from_quantity(await self.rpc.call("eth_gasPrice"))

    async def get_chain_id(self) -> int:
        return from_quantity(await self.rpc.call("eth_chainId"))

    async def call(self, token: TokenDescriptor, method: str, args: Sequence[Any] = ()) -> Any:
        data = erc20.encode_call(method, args)
        result = await self.rpc.call(
            "eth_call",
            [{"to": token.contract_address, "data": data}, "latest"],
        )
        return erc20.decode_result(method, result)

    async def estimate_gas(self, transfer: TransferRequest) -> int:
        call_obj = {
            "from": transfer.sender,
            "to": transfer.token.contract_address,
            "data": erc20.encode_call("transfer", [transfer.recipient, transfer.amount_raw]),
        }
        return from_quantity(await self.rpc.call("eth_estimateGas", [call_obj]))

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raw = await self.rpc.call("eth_getTransactionReceipt", [tx_hash])
        if not raw:
            return None
        return parse_receipt(raw)

    def subscribe_new_block_headers(self, callback: BlockCallback) -> LedgerSubscription:
        if self.ws_url:
            return WebSocketSubscription(
                self.ws_url,
                ["newHeads"],
                callback,
                parse=parse_block_header,
            ).start()
        return PollingBlockSubscription(self.rpc, callback, self.block_poll_interval).start()

    def subscribe_contract_event(
        self,
        token: TokenDescriptor,
        event_name: str,
        filter: Dict[str, Any],
        callback: LogCallback,
    ) -> LedgerSubscription:
        log_filter = self.build_log_filter(token, event_name, filter)
        if self.ws_url:
            return WebSocketSubscription(self.ws_url, ["logs", log_filter], callback).start()
        return PollingLogSubscription(self.rpc, log_filter, callback, self.block_poll_interval).start()

    @staticmethod
    def build_log_filter(token: TokenDescriptor, event_name: str, filter: Dict[str, Any]) -> Dict[str, Any]:
        """Translate ``{"from": addr, "to": addr}`` into indexed topic filters."""
        topic = erc20.EVENT_TOPICS.get(event_name)
        if topic is None:
            raise ValueError(f"Unsupported event: {event_name}")
        sender = filter.get("from")
        recipient = filter.get("to")
        topics = [
            topic,
            erc20.address_topic(sender) if sender else None,
            erc20.address_topic(recipient) if recipient else None,
        ]
        while topics and topics[-1] is None:
            topics.pop()
        return {"address": token.contract_address, "topics": topics}

    async def close(self) -> None:
        await self.rpc.close()


__all__ = ["RpcLedgerClient", "parse_receipt"]
