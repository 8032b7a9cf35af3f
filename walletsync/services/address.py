"""Helpers for validating and normalizing EVM wallet addresses."""

from __future__ import annotations

import re
from functools import lru_cache

from eth_utils import is_address, to_checksum_address

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@lru_cache(maxsize=256)
def is_valid_address(address: str) -> bool:
    """Return True for a well-formed 20-byte hex address.

    All-lowercase and all-uppercase forms are accepted as-is; mixed case must
    carry a valid EIP-55 checksum.
    """
    if not isinstance(address, str) or not address:
        return False
    candidate = address.strip()
    if not _EVM_ADDRESS_RE.fullmatch(candidate):
        return False
    return bool(is_address(candidate))


def normalize_address(address: str) -> str:
    """Checksum-encode a valid address; raises ValueError otherwise."""
    if not is_valid_address(address):
        raise ValueError(f"Invalid EVM address: {address!r}")
    return to_checksum_address(address.strip())


def same_address(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.strip().lower() == right.strip().lower()


def is_valid_tx_hash(tx_hash: str) -> bool:
    return bool(tx_hash) and bool(_TX_HASH_RE.fullmatch(tx_hash))


def short_address(address: str) -> str:
    """``0x1234...abcd`` style abbreviation for log lines and notifications."""
    if not address or len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


__all__ = [
    "ZERO_ADDRESS",
    "is_valid_address",
    "normalize_address",
    "same_address",
    "is_valid_tx_hash",
    "short_address",
]
