"""
JSON-RPC 2.0 transport over HTTP.
"""

import itertools
import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..core.errors import ProviderRpcError


logger = logging.getLogger(__name__)


class JsonRpcClient:
    """Thin async JSON-RPC caller shared by the ledger client and wallet provider."""

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._client = client or httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds,
        )
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Any = None) -> Any:
        """Make an RPC call and return its ``result`` member.

        Raises:
            ProviderRpcError: The endpoint answered with an ``error`` member.
            httpx.HTTPError: Transport or HTTP status failure.
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else [],
            "id": next(self._ids),
        }

        response = await self._client.post(
            self.url,
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        result = response.json()

        if "error" in result and result["error"] is not None:
            error = result["error"]
            logger.debug(f"RPC error for {method}: {error}")
            if isinstance(error, dict):
                raise ProviderRpcError(error.get("code"), error.get("message", "RPC error"), error.get("data"))
            raise ProviderRpcError(None, str(error))

        return result.get("result")

    async def close(self) -> None:
        await self._client.aclose()


def to_quantity(value: int) -> str:
    """Encode an integer as a JSON-RPC hex quantity."""
    return hex(int(value))


def from_quantity(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)
