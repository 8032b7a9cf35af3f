"""
Ledger push streams.

``WebSocketSubscription`` wraps one ``eth_subscribe`` stream with auto-reconnect.
When no websocket endpoint is configured the polling variants emulate the same
streams over plain HTTP JSON-RPC.
"""

import asyncio
import inspect
import json
import logging
from abc import abstractmethod
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.errors import ProviderRpcError
from ..core.models import BlockHeader
from .base import LedgerSubscription
from .jsonrpc import JsonRpcClient, from_quantity, to_quantity

logger = logging.getLogger(__name__)


async def dispatch(callback: Callable[[Any], Any], payload: Any) -> None:
    """Invoke a plain or async callback, logging (not raising) its failures."""
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Subscription callback error: {e}", exc_info=True)


def parse_block_header(raw: Dict[str, Any]) -> BlockHeader:
    timestamp = raw.get("timestamp")
    return BlockHeader(
        number=from_quantity(raw.get("number")),
        hash=raw.get("hash"),
        timestamp=from_quantity(timestamp) if timestamp is not None else None,
    )


class _StreamSubscription(LedgerSubscription):
    """Background task plus the bookkeeping every stream needs."""

    def __init__(self, callback: Callable[[Any], Any], name: str):
        self._callback = callback
        self._name = name
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "_StreamSubscription":
        self._task = asyncio.create_task(self._run(), name=self._name)
        return self

    @property
    def active(self) -> bool:
        return not self._cancelled and self._task is not None and not self._task.done()

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @abstractmethod
    async def _run(self) -> None:
        """Consume the stream until cancelled."""


class WebSocketSubscription(_StreamSubscription):
    """
    One ``eth_subscribe`` stream.

    Usage:
        sub = WebSocketSubscription(url, ["newHeads"], on_header, parse_block_header).start()
        ...
        sub.cancel()
    """

    def __init__(
        self,
        url: str,
        params: List[Any],
        callback: Callable[[Any], Any],
        parse: Callable[[Dict[str, Any]], Any] = lambda raw: raw,
        max_retry_delay: float = 60.0,
    ):
        super().__init__(callback, name=f"ws-subscription-{params[0]}")
        self.kind = params[0]
        self.url = url
        self.params = params
        self._parse = parse
        self._max_retry_delay = max_retry_delay
        self.subscription_id: Optional[str] = None

    async def _run(self) -> None:
        retry_delay = 1.0

        while not self._cancelled:
            try:
                async with websockets.connect(self.url) as ws:
                    await ws.send(json.dumps({
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "eth_subscribe",
                        "params": self.params,
                    }))
                    ack = json.loads(await ws.recv())
                    if ack.get("error"):
                        error = ack["error"]
                        raise ProviderRpcError(error.get("code"), error.get("message", "eth_subscribe failed"))

                    self.subscription_id = ack.get("result")
                    retry_delay = 1.0  # Reset on successful subscription
                    logger.info(f"Subscribed to {self.kind} ({self.subscription_id})")

                    await self._listen(ws)

            except asyncio.CancelledError:
                raise
            except ConnectionClosed as e:
                logger.warning(f"WebSocket closed for {self.kind}: {e}")
            except Exception as e:
                logger.error(f"WebSocket error for {self.kind}: {e}")

            if not self._cancelled:
                logger.info(f"Reconnecting {self.kind} stream in {retry_delay}s...")
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, self._max_retry_delay)

    async def _listen(self, ws) -> None:
        async for message in ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received: {str(message)[:100]}")
                continue

            if data.get("method") != "eth_subscription":
                continue
            params = data.get("params") or {}
            if self.subscription_id and params.get("subscription") != self.subscription_id:
                continue
            await dispatch(self._callback, self._parse(params.get("result") or {}))


class PollingBlockSubscription(_StreamSubscription):
    """Emulates ``newHeads`` by polling ``eth_blockNumber``.

    The first poll only records a baseline; afterwards one header is emitted
    per observed advance (skipped heights collapse into the latest).
    """

    kind = "newHeads"

    def __init__(self, rpc: JsonRpcClient, callback: Callable[[Any], Any], interval: float):
        super().__init__(callback, name="poll-subscription-newHeads")
        self._rpc = rpc
        self._interval = interval
        self.last_block: Optional[int] = None

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                number = from_quantity(await self._rpc.call("eth_blockNumber"))
                if self.last_block is not None and number > self.last_block:
                    await dispatch(self._callback, BlockHeader(number=number))
                if self.last_block is None or number > self.last_block:
                    self.last_block = number
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Block poll failed: {e}")
            await asyncio.sleep(self._interval)


class PollingLogSubscription(_StreamSubscription):
    """Emulates a ``logs`` subscription with ranged ``eth_getLogs`` calls."""

    kind = "logs"

    def __init__(
        self,
        rpc: JsonRpcClient,
        log_filter: Dict[str, Any],
        callback: Callable[[Any], Any],
        interval: float,
    ):
        super().__init__(callback, name="poll-subscription-logs")
        self._rpc = rpc
        self._filter = log_filter
        self._interval = interval
        self.last_block: Optional[int] = None

    async def _run(self) -> None:
        while not self._cancelled:
            try:
                number = from_quantity(await self._rpc.call("eth_blockNumber"))
                if self.last_block is not None and number > self.last_block:
                    logs = await self._rpc.call("eth_getLogs", [{
                        **self._filter,
                        "fromBlock": to_quantity(self.last_block + 1),
                        "toBlock": to_quantity(number),
                    }])
                    for log in logs or []:
                        await dispatch(self._callback, log)
                if self.last_block is None or number > self.last_block:
                    self.last_block = number
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Log poll failed: {e}")
            await asyncio.sleep(self._interval)
