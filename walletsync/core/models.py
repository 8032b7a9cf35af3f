"""
Wallet session and transaction lifecycle models.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Optional


class SessionStatus(str, Enum):
    """Connection state machine states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TransactionStatus(str, Enum):
    """Tracked transfer status. Everything except PENDING is terminal."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"          # Receipt says the transfer reverted
    REJECTED = "rejected"      # Never signed / never broadcast
    TIMED_OUT = "timed_out"    # Tracker gave up; ledger outcome unknown


TERMINAL_STATUSES = frozenset({
    TransactionStatus.CONFIRMED,
    TransactionStatus.FAILED,
    TransactionStatus.REJECTED,
    TransactionStatus.TIMED_OUT,
})


class SubscriptionKind(str, Enum):
    """Kinds of listeners/pollers owned by the subscription registry."""
    ACCOUNTS_CHANGED = "accounts_changed"
    CHAIN_CHANGED = "chain_changed"
    NEW_BLOCK_HEADERS = "new_block_headers"
    TRANSFER_EVENT = "transfer_event"
    RECEIPT_POLL = "receipt_poll"
    BALANCE_POLL = "balance_poll"
    BLOCK_LISTENER = "block_listener"


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class WalletEvent(str, Enum):
    """Status events published to the presentation layer."""
    SESSION_CHANGED = "sessionChanged"
    BALANCES_UPDATED = "balancesUpdated"
    TRANSACTION_STATUS_CHANGED = "transactionStatusChanged"


@dataclass(frozen=True)
class SessionState:
    """
    The one current connection identity.

    ``generation`` increases on every connect, disconnect, account change and
    chain change. Async work captures it at issue time and compares at apply time.
    """
    address: Optional[str] = None
    chain_id: Optional[int] = None
    generation: int = 0
    status: SessionStatus = SessionStatus.DISCONNECTED

    @property
    def connected(self) -> bool:
        return self.status == SessionStatus.CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "chainId": self.chain_id,
            "generation": self.generation,
            "connected": self.connected,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class TokenDescriptor:
    """ERC20 token metadata. Supplied by a token registry, never mutated."""
    contract_address: str
    symbol: str
    decimals: int
    name: str = ""

    def __post_init__(self):
        if not 0 <= self.decimals <= 77:
            raise ValueError(f"Unsupported token decimals: {self.decimals}")


@dataclass(frozen=True)
class TransferParams:
    """A prospective token transfer as requested by the user."""
    amount: Decimal
    recipient: str
    token: TokenDescriptor

    @property
    def key(self) -> tuple:
        return (self.recipient.lower(), self.amount, self.token.contract_address.lower())


@dataclass(frozen=True)
class TransferRequest:
    """A transfer in raw units, as handed to the ledger for gas estimation."""
    sender: str
    token: TokenDescriptor
    recipient: str
    amount_raw: int


@dataclass(frozen=True)
class GasQuote:
    """Fee quote for a transfer, valid for a limited window after ``computed_at``."""
    gas_units: int
    gas_price_wei: int
    computed_at: float
    generation: int = 0
    transfer_key: Optional[tuple] = None

    @property
    def estimated_cost_wei(self) -> int:
        return self.gas_units * self.gas_price_wei

    @property
    def gas_price_gwei(self) -> Decimal:
        return Decimal(self.gas_price_wei) / Decimal(10**9)

    def is_fresh(self, now: float, window: float) -> bool:
        return now - self.computed_at < window


@dataclass(frozen=True)
class Receipt:
    """Ledger receipt for an included transaction."""
    transaction_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None


@dataclass(frozen=True)
class BlockHeader:
    number: int
    hash: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class BalanceSnapshot:
    """Published balances for one session generation."""
    native: Decimal
    token: Decimal
    block_number: int
    generation: int
    token_raw: int = 0
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "native": str(self.native),
            "token": str(self.token),
            "blockNumber": self.block_number,
        }


@dataclass
class PendingTransaction:
    """A submitted transfer and its tracking state.

    Owned by the transaction tracker; everything else receives copies made
    with :meth:`snapshot`.
    """
    hash: Optional[str]
    amount: Decimal
    recipient: str
    token: TokenDescriptor
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: TransactionStatus = TransactionStatus.PENDING
    generation: int = 0
    receipt: Optional[Receipt] = None
    resolved_at: Optional[datetime] = None
    error: Optional[Exception] = None
    _canceller: Optional[Callable[[str], bool]] = field(default=None, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def cancel(self) -> bool:
        """Stop tracking this transfer. Returns False if it was no longer tracked."""
        if self._canceller is None or self.hash is None:
            return False
        return self._canceller(self.hash)

    def snapshot(self) -> "PendingTransaction":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "amount": str(self.amount),
            "recipient": self.recipient,
            "token": self.token.symbol,
            "status": self.status.value,
            "submittedAt": self.submitted_at.isoformat(),
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "blockNumber": self.receipt.block_number if self.receipt else None,
            "error": str(self.error) if self.error else None,
        }
