"""
Wallet Session Engine

Session state machine, balance and gas synchronisation, and pending-transfer
tracking with cancellation and cleanup:
- ConnectionManager: connect/disconnect and provider account/chain events
- SubscriptionRegistry: every listener and poller, cancelled in one call
- BalanceSynchronizer: coalesced native and token balance refreshes
- GasEstimator: validated fee quotes with a freshness window
- TransactionTracker: submit, then race receipt polling against new blocks

Usage:
    from walletsync.core import TransactionStatus, WalletEvent, WalletSession

    session = WalletSession.from_settings()
    session.on(WalletEvent.TRANSACTION_STATUS_CHANGED, render_status)

    await session.connect()
    quote = await session.estimate_transfer("2.5", "0x...")
    tx = await session.submit_transfer("2.5", "0x...", quote)

    if tx.status == TransactionStatus.REJECTED:
        show_error(tx.error)
"""

from .amounts import format_amount, from_raw_amount, parse_amount, to_raw_amount
from .balances import BalanceSynchronizer
from .errors import (
    DuplicateSubmission,
    ErrorCategory,
    EstimationFailed,
    InsufficientBalance,
    InsufficientGas,
    InvalidAddress,
    InvalidAmount,
    NetworkError,
    NoAccounts,
    NotConnected,
    ProviderRpcError,
    ProviderUnavailable,
    RevertedExecution,
    TimedOut,
    UserRejected,
    WalletError,
    classify_error,
)
from .events import EventBus
from .gas import GasEstimator
from .models import (
    BalanceSnapshot,
    GasQuote,
    NotificationKind,
    PendingTransaction,
    Receipt,
    SessionState,
    SessionStatus,
    SubscriptionKind,
    TokenDescriptor,
    TransactionStatus,
    TransferParams,
    WalletEvent,
)
from .session import ConnectionManager, SessionStore
from .subscriptions import BlockHeaderFeed, SubscriptionHandle, SubscriptionRegistry
from .tracker import TransactionTracker
from .wallet import WalletSession

__all__ = [
    # Engine
    "WalletSession",
    "ConnectionManager",
    "SessionStore",
    "SubscriptionRegistry",
    "BlockHeaderFeed",
    "SubscriptionHandle",
    "BalanceSynchronizer",
    "GasEstimator",
    "TransactionTracker",
    "EventBus",
    # Models
    "SessionState",
    "SessionStatus",
    "TokenDescriptor",
    "TransferParams",
    "GasQuote",
    "Receipt",
    "BalanceSnapshot",
    "PendingTransaction",
    "TransactionStatus",
    "SubscriptionKind",
    "NotificationKind",
    "WalletEvent",
    # Amounts
    "parse_amount",
    "to_raw_amount",
    "from_raw_amount",
    "format_amount",
    # Errors
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
]
