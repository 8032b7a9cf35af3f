"""Service layer helpers"""

from .address import (
    ZERO_ADDRESS,
    is_valid_address,
    is_valid_tx_hash,
    normalize_address,
    same_address,
    short_address,
)

__all__ = [
    "ZERO_ADDRESS",
    "is_valid_address",
    "is_valid_tx_hash",
    "normalize_address",
    "same_address",
    "short_address",
]
