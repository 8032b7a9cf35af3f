"""
Tests for ERC20 calldata encoding and log decoding.
"""

import pytest

from walletsync.providers import erc20


def test_selectors_match_known_values():
    assert erc20.SELECTORS == {
        "name": "0x06fdde03",
        "symbol": "0x95d89b41",
        "decimals": "0x313ce567",
        "balanceOf": "0x70a08231",
        "transfer": "0xa9059cbb",
    }
    assert erc20.TRANSFER_EVENT_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_encode_transfer():
    data = erc20.encode_call("transfer", ["0x3333333333333333333333333333333333333333", 10**18])

    assert data.startswith("0xa9059cbb")
    assert len(data) == 10 + 64 * 2
    assert data[10:74] == "0" * 24 + "33" * 20
    assert int(data[74:], 16) == 10**18


def test_encode_balance_of_lowercases_owner():
    data = erc20.encode_call("balanceOf", ["0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD"])
    assert data.endswith("abcdef" * 6 + "abcd")


@pytest.mark.parametrize(
    "method, args",
    [("approve", []), ("decimals", [1]), ("transfer", ["0x" + "33" * 20, -1])],
)
def test_encode_rejects_bad_calls(method, args):
    with pytest.raises(ValueError):
        erc20.encode_call(method, args)


def test_decode_uint256():
    assert erc20.decode_uint256("0x" + format(42, "064x")) == 42
    assert erc20.decode_uint256("0x") == 0
    assert erc20.decode_uint256(None) == 0


def test_decode_dynamic_string():
    text = b"MTK".hex()
    data = "0x" + format(32, "064x") + format(3, "064x") + text.ljust(64, "0")
    assert erc20.decode_string(data) == "MTK"


def test_decode_bytes32_string():
    data = "0x" + b"MKR".hex().ljust(64, "0")
    assert erc20.decode_string(data) == "MKR"


def test_decode_transfer_log():
    log = {
        "address": "0x3D6Eb3Fc92C799CB6b8716c5c8E5f8A78eFE8A43",
        "topics": [
            erc20.TRANSFER_EVENT_TOPIC,
            erc20.address_topic("0x1111111111111111111111111111111111111111"),
            erc20.address_topic("0x3333333333333333333333333333333333333333"),
        ],
        "data": "0x" + format(5, "064x"),
        "transactionHash": "0xfeed",
        "blockNumber": "0x10",
    }

    decoded = erc20.decode_transfer_log(log)

    assert decoded["from"] == "0x1111111111111111111111111111111111111111"
    assert decoded["to"] == "0x3333333333333333333333333333333333333333"
    assert decoded["value"] == 5
    assert decoded["block_number"] == 16
    assert decoded["token"] == "0x3d6eb3fc92c799cb6b8716c5c8e5f8a78efe8a43"
