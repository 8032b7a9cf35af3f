"""
Error Classification

Typed failures raised by the wallet engine. Provider and ledger failures are
classified into this taxonomy by code first, then by message pattern.
"""

import asyncio
from enum import Enum
from typing import Any, Optional, Type

import httpx


class ErrorCategory(str, Enum):
    """Categories of wallet engine errors."""

    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NO_ACCOUNTS = "no_accounts"
    NOT_CONNECTED = "not_connected"
    USER_REJECTED = "user_rejected"
    INVALID_ADDRESS = "invalid_address"
    INVALID_AMOUNT = "invalid_amount"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_GAS = "insufficient_gas"
    REVERTED_EXECUTION = "reverted_execution"
    NETWORK = "network"
    TIMED_OUT = "timed_out"
    ESTIMATION_FAILED = "estimation_failed"
    DUPLICATE_SUBMISSION = "duplicate_submission"


# EIP-1193 provider error codes
USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902


class WalletError(Exception):
    """Base class for every typed failure surfaced by the engine."""

    category: ErrorCategory = ErrorCategory.ESTIMATION_FAILED
    recoverable: bool = False
    default_message: str = "Wallet operation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
        }


class ProviderUnavailable(WalletError):
    """No wallet capability is present."""
    category = ErrorCategory.PROVIDER_UNAVAILABLE
    default_message = "No wallet provider available"


class NoAccounts(WalletError):
    """The provider answered with zero accounts (locked wallet)."""
    category = ErrorCategory.NO_ACCOUNTS
    default_message = "Wallet returned no accounts; unlock it and retry"


class NotConnected(WalletError):
    category = ErrorCategory.NOT_CONNECTED
    default_message = "Connect wallet first"


class UserRejected(WalletError):
    """The user dismissed the wallet prompt."""
    category = ErrorCategory.USER_REJECTED
    default_message = "Request rejected by user"


class InvalidAddress(WalletError):
    category = ErrorCategory.INVALID_ADDRESS
    default_message = "Invalid address format"


class InvalidAmount(WalletError):
    category = ErrorCategory.INVALID_AMOUNT
    default_message = "Enter a valid amount greater than 0"


class InsufficientBalance(WalletError):
    category = ErrorCategory.INSUFFICIENT_BALANCE
    default_message = "Insufficient token balance"


class InsufficientGas(WalletError):
    """Not enough native coin to pay for gas."""
    category = ErrorCategory.INSUFFICIENT_GAS
    default_message = "Insufficient native balance for gas fees"


class RevertedExecution(WalletError):
    category = ErrorCategory.REVERTED_EXECUTION
    default_message = "Transaction would revert"


class NetworkError(WalletError):
    """Transient transport failure; retried on the next scheduled tick."""
    category = ErrorCategory.NETWORK
    recoverable = True
    default_message = "Network error"


class TimedOut(WalletError):
    """Tracking gave up. The transaction itself may still land on-ledger."""
    category = ErrorCategory.TIMED_OUT
    recoverable = True
    default_message = "Confirmation not observed in time; re-check balances later"


class EstimationFailed(WalletError):
    category = ErrorCategory.ESTIMATION_FAILED
    default_message = "Gas estimation failed"


class DuplicateSubmission(WalletError):
    category = ErrorCategory.DUPLICATE_SUBMISSION
    default_message = "An identical transfer is still pending"


class ProviderRpcError(Exception):
    """JSON-RPC error object returned by a wallet provider or ledger node."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


_REJECTED_PATTERNS = ("user rejected", "user denied", "rejected by user", "user cancel")
_GAS_PATTERNS = ("insufficient funds",)
_REVERT_PATTERNS = ("revert", "exceeds balance", "out of gas")
_NETWORK_PATTERNS = (
    "connection",
    "network",
    "unreachable",
    "refused",
    "timeout",
    "timed out",
    "socket",
)


def classify_error(
    error: BaseException,
    default: Type[WalletError] = EstimationFailed,
) -> WalletError:
    """
    Map an arbitrary exception onto the wallet error taxonomy.

    Already-typed errors pass through untouched. Unmatched errors become
    ``default`` so callers choose what "anything else" means for them.
    """
    if isinstance(error, WalletError):
        return error

    code = getattr(error, "code", None)
    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    if code == USER_REJECTED_CODE or any(p in lowered for p in _REJECTED_PATTERNS):
        return UserRejected(message, code=code, cause=error)

    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, ConnectionError, OSError)):
        return NetworkError(message, code=code, cause=error)

    if any(p in lowered for p in _GAS_PATTERNS):
        return InsufficientGas(message, code=code, cause=error)

    if any(p in lowered for p in _REVERT_PATTERNS):
        return RevertedExecution(message, code=code, cause=error)

    if any(p in lowered for p in _NETWORK_PATTERNS):
        return NetworkError(message, code=code, cause=error)

    return default(message, code=code, cause=error)


__all__ = [
    "ErrorCategory",
    "WalletError",
    "ProviderUnavailable",
    "NoAccounts",
    "NotConnected",
    "UserRejected",
    "InvalidAddress",
    "InvalidAmount",
    "InsufficientBalance",
    "InsufficientGas",
    "RevertedExecution",
    "NetworkError",
    "TimedOut",
    "EstimationFailed",
    "DuplicateSubmission",
    "ProviderRpcError",
    "classify_error",
    "USER_REJECTED_CODE",
    "UNRECOGNIZED_CHAIN_CODE",
]
