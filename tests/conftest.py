"""
Shared fakes for the wallet and ledger capabilities.

Everything runs in memory; no test touches the network.
"""

import asyncio
import inspect
import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from walletsync.config import Settings
from walletsync.core.errors import ProviderRpcError
from walletsync.core.models import BlockHeader, Receipt, TokenDescriptor, TransferRequest
from walletsync.core.wallet import WalletSession
from walletsync.providers.base import LedgerClient, LedgerSubscription, WalletProvider
from walletsync.providers.jsonrpc import JsonRpcClient
from walletsync.providers.notifier import RecordingNotifier


SENDER = "0x1111111111111111111111111111111111111111"
OTHER_ACCOUNT = "0x2222222222222222222222222222222222222222"
RECIPIENT = "0x3333333333333333333333333333333333333333"
TOKEN_ADDRESS = "0x3D6Eb3Fc92C799CB6b8716c5c8E5f8A78eFE8A43"
SEPOLIA = 11155111
ONE = 10**18


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeSubscription(LedgerSubscription):
    def __init__(self, callback, kind: str = "newHeads"):
        self.callback = callback
        self.kind = kind
        self.cancelled = False

    @property
    def active(self) -> bool:
        return not self.cancelled

    def cancel(self) -> None:
        self.cancelled = True

    async def fire(self, payload: Any) -> None:
        if self.cancelled:
            return
        result = self.callback(payload)
        if inspect.isawaitable(result):
            await result


class FakeWallet(WalletProvider):
    def __init__(self, accounts: Optional[List[str]] = None, chain_id: int = SEPOLIA):
        self.accounts = [SENDER] if accounts is None else accounts
        self.chain_id = chain_id
        self.handlers: Dict[str, List[Any]] = {self.ACCOUNTS_CHANGED: [], self.CHAIN_CHANGED: []}
        self.request_calls = 0
        self.request_gate: Optional[asyncio.Event] = None
        self.request_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.sent: List[Dict[str, Any]] = []
        self.hashes = (tx_hash(n) for n in range(0xDEAD, 0xDEAD + 1000))
        self.switch_error: Optional[Exception] = None
        self.switched: List[int] = []
        self.added: List[Dict[str, Any]] = []
        self.watched: List[TokenDescriptor] = []

    async def request_accounts(self) -> List[str]:
        self.request_calls += 1
        if self.request_gate is not None:
            await self.request_gate.wait()
        if self.request_error is not None:
            raise self.request_error
        return list(self.accounts)

    async def get_chain_id(self) -> int:
        return self.chain_id

    def on(self, event, handler) -> None:
        self.handlers[event].append(handler)

    def off(self, event, handler) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    async def emit(self, event: str, payload: Any) -> None:
        for handler in list(self.handlers[event]):
            result = handler(payload)
            if inspect.isawaitable(result):
                await result

    async def send_transfer(self, token, recipient, amount_raw, gas_units, gas_price_wei) -> str:
        self.sent.append({
            "token": token,
            "recipient": recipient,
            "amount_raw": amount_raw,
            "gas_units": gas_units,
            "gas_price_wei": gas_price_wei,
        })
        if self.send_error is not None:
            raise self.send_error
        return next(self.hashes)

    async def switch_chain(self, chain_id: int) -> None:
        self.switched.append(chain_id)
        if self.switch_error is not None:
            raise self.switch_error

    async def add_chain(self, chain_params) -> None:
        self.added.append(chain_params)

    async def watch_asset(self, token, image=None) -> bool:
        self.watched.append(token)
        return True


class FakeLedger(LedgerClient):
    def __init__(self):
        self.native_wei = 2 * ONE
        self.token_raw = 100 * ONE
        self.block_number = 100
        self.gas_units = 21000
        self.gas_price = 2 * 10**9
        self.receipts: Dict[str, Receipt] = {}
        self.gate: Optional[asyncio.Event] = None
        self.balance_error: Optional[Exception] = None
        self.estimate_error: Optional[Exception] = None
        self.native_calls = 0
        self.estimate_calls = 0
        self.gas_price_calls = 0
        self.receipt_calls = 0
        self.block_subs: List[FakeSubscription] = []
        self.log_subs: List[FakeSubscription] = []

    async def get_native_balance(self, address: str) -> int:
        self.native_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.balance_error is not None:
            raise self.balance_error
        return self.native_wei

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_gas_price(self) -> int:
        self.gas_price_calls += 1
        return self.gas_price

    async def call(self, token, method, args=()):
        if method == "balanceOf":
            return self.token_raw
        if method == "decimals":
            return token.decimals
        return token.symbol

    async def estimate_gas(self, transfer: TransferRequest) -> int:
        self.estimate_calls += 1
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_units

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self.receipt_calls += 1
        await asyncio.sleep(0)
        return self.receipts.get(tx_hash)

    def subscribe_new_block_headers(self, callback) -> FakeSubscription:
        sub = FakeSubscription(callback)
        self.block_subs.append(sub)
        return sub

    def subscribe_contract_event(self, token, event_name, filter, callback) -> FakeSubscription:
        sub = FakeSubscription(callback, kind="logs")
        sub.filter = filter
        self.log_subs.append(sub)
        return sub

    async def emit_block(self, number: int) -> None:
        self.block_number = number
        for sub in list(self.block_subs):
            await sub.fire(BlockHeader(number=number))


def receipt(hash_: str, success: bool = True, block: int = 101) -> Receipt:
    return Receipt(transaction_hash=hash_, success=success, block_number=block, gas_used=21000)


@pytest.fixture
def token():
    return TokenDescriptor(contract_address=TOKEN_ADDRESS, symbol="MTK", decimals=18, name="MTK Game Token")


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return Settings(
        rpc_url="http://ledger.test",
        ws_url="",
        balance_poll_interval_seconds=60.0,
        receipt_poll_interval_seconds=60.0,
        receipt_max_attempts=30,
        gas_quote_freshness_seconds=30.0,
        history_limit=10,
        reject_duplicate_submissions=False,
    )


@pytest.fixture
def make_session(wallet, ledger, notifier, config):
    created: List[WalletSession] = []

    def factory(**overrides) -> WalletSession:
        cfg = config.model_copy(update=overrides) if overrides else config
        session = WalletSession(wallet, ledger, notifier=notifier, config=cfg)
        created.append(session)
        return session

    yield factory

    for session in created:
        session.disconnect()


@pytest.fixture
def session(make_session):
    return make_session()


def attach_recorder(session: WalletSession) -> Dict[str, List[Any]]:
    """Collect every status event payload by event name."""
    events: Dict[str, List[Any]] = {"sessionChanged": [], "balancesUpdated": [], "transactionStatusChanged": []}
    for name, bucket in events.items():
        session.on(name, bucket.append)
    return events


@pytest.fixture
def recorder(session):
    return attach_recorder(session)


@pytest.fixture
def recorder_factory():
    return attach_recorder


class RpcServer:
    """JSON-RPC endpoint behind ``httpx.MockTransport``.

    ``results`` maps a method to a value, a callable taking the params, or an
    exception instance to answer with an ``error`` member.
    """

    def __init__(self):
        self.results: Dict[str, Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.calls.append(payload)
        method = payload["method"]
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": payload["id"]}
        if method not in self.results:
            body["error"] = {"code": -32601, "message": f"Method {method} not found"}
            return httpx.Response(200, json=body)

        value = self.results[method]
        if isinstance(value, ProviderRpcError):
            body["error"] = {"code": value.code, "message": value.message}
        elif callable(value):
            body["result"] = value(payload["params"])
        else:
            body["result"] = value
        return httpx.Response(200, json=body)

    def client(self, url: str = "http://rpc.test") -> JsonRpcClient:
        return JsonRpcClient(url, client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))

    def methods(self) -> List[str]:
        return [call["method"] for call in self.calls]

    def params_of(self, method: str) -> Any:
        return [call["params"] for call in self.calls if call["method"] == method][-1]


@pytest.fixture
def rpc_server():
    return RpcServer()
