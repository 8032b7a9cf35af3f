"""
Minimal ERC20 call encoding/decoding for the handful of methods the wallet uses.
"""

from typing import Any, Dict, Optional, Sequence

from eth_utils import keccak


SIGNATURES: Dict[str, str] = {
    "name": "name()",
    "symbol": "symbol()",
    "decimals": "decimals()",
    "balanceOf": "balanceOf(address)",
    "transfer": "transfer(address,uint256)",
}


def _selector_from_signature(signature: str) -> str:
    selector = keccak(text=signature)[:4].hex()
    return f"0x{selector}"


def _topic_from_signature(signature: str) -> str:
    return f"0x{keccak(text=signature).hex()}"


SELECTORS: Dict[str, str] = {
    method: _selector_from_signature(signature) for method, signature in SIGNATURES.items()
}

TRANSFER_EVENT_TOPIC = _topic_from_signature("Transfer(address,address,uint256)")

EVENT_TOPICS: Dict[str, str] = {
    "Transfer": TRANSFER_EVENT_TOPIC,
}

MAX_UINT256 = 2**256 - 1


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


def encode_call(method: str, args: Sequence[Any] = ()) -> str:
    """Build calldata for one of the supported read/transfer methods."""
    selector = SELECTORS.get(method)
    if selector is None:
        raise ValueError(f"Unsupported ERC20 method: {method}")

    if method == "balanceOf":
        (owner,) = args
        return selector + _encode_address(owner)
    if method == "transfer":
        recipient, amount = args
        return selector + _encode_address(recipient) + _encode_uint256(int(amount))
    if args:
        raise ValueError(f"{method}() takes no arguments")
    return selector


def address_topic(address: str) -> str:
    """Indexed address as it appears in a log topic."""
    return "0x" + _encode_address(address)


def decode_uint256(data: Optional[str]) -> int:
    if not data or data == "0x":
        return 0
    return int(data[2:66] if data.startswith("0x") else data[:64], 16)


def decode_string(data: Optional[str]) -> str:
    """Decode an ABI string return value.

    Some older tokens return ``bytes32`` instead of a dynamic string; that form
    is handled by stripping trailing zero bytes.
    """
    if not data or data == "0x":
        return ""
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if len(raw) == 32:
        return raw.rstrip(b"\x00").decode("utf-8", errors="replace")
    offset = int.from_bytes(raw[0:32], "big")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    return raw[start:start + length].decode("utf-8", errors="replace")


def decode_result(method: str, data: Optional[str]) -> Any:
    if method in ("name", "symbol"):
        return decode_string(data)
    return decode_uint256(data)


def decode_transfer_log(log: Dict[str, Any]) -> Dict[str, Any]:
    """Pull sender/recipient/value out of a raw ``Transfer`` log."""
    topics = log.get("topics") or []
    block = log.get("blockNumber")
    return {
        "token": (log.get("address") or "").lower(),
        "from": "0x" + topics[1][-40:] if len(topics) > 1 else None,
        "to": "0x" + topics[2][-40:] if len(topics) > 2 else None,
        "value": decode_uint256(log.get("data")),
        "transaction_hash": log.get("transactionHash"),
        "block_number": int(block, 16) if isinstance(block, str) else block,
    }


__all__ = [
    "SIGNATURES",
    "SELECTORS",
    "EVENT_TOPICS",
    "TRANSFER_EVENT_TOPIC",
    "MAX_UINT256",
    "encode_call",
    "address_topic",
    "decode_uint256",
    "decode_string",
    "decode_result",
    "decode_transfer_log",
]
