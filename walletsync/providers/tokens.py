"""
Static token registry for the Sepolia test tokens the wallet works with.
"""

from typing import Dict, Iterable, List, Optional

from ..core.models import TokenDescriptor
from .base import TokenRegistry


# Sepolia deployments
SEPOLIA_TOKENS: Dict[str, Dict] = {
    "MTK": {
        "address": "0x3D6Eb3Fc92C799CB6b8716c5c8E5f8A78eFE8A43",
        "name": "MTK Game Token",
        "decimals": 18,
    },
    "UNI": {
        "address": "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",
        "name": "Uniswap",
        "decimals": 18,
    },
    "LINK": {
        "address": "0x779877A7B0D9E8603169DdbD7836e478b4624789",
        "name": "Chainlink",
        "decimals": 18,
    },
    "DAI": {
        "address": "0x3e622317f8C93f7328350cF0B56d9eD4C620C5d6",
        "name": "DAI Stablecoin",
        "decimals": 18,
    },
}


class StaticTokenRegistry(TokenRegistry):
    """In-memory registry keyed by symbol; lookups are case-insensitive.

    Tokens can also be found by contract address.
    """

    def __init__(self, tokens: Optional[Iterable[TokenDescriptor]] = None):
        if tokens is None:
            tokens = [
                TokenDescriptor(
                    contract_address=meta["address"],
                    symbol=symbol,
                    decimals=meta["decimals"],
                    name=meta["name"],
                )
                for symbol, meta in SEPOLIA_TOKENS.items()
            ]
        self._by_key: Dict[str, TokenDescriptor] = {}
        for token in tokens:
            self._by_key[token.symbol.upper()] = token
            self._by_key[token.contract_address.lower()] = token

    def get(self, key: str) -> TokenDescriptor:
        token = self._by_key.get(key.upper()) or self._by_key.get(key.lower())
        if token is None:
            raise KeyError(f"Unknown token: {key}")
        return token

    def all(self) -> List[TokenDescriptor]:
        seen: Dict[str, TokenDescriptor] = {}
        for token in self._by_key.values():
            seen.setdefault(token.symbol, token)
        return list(seen.values())

    def __contains__(self, key: str) -> bool:
        try:
            self.get(key)
        except KeyError:
            return False
        return True
