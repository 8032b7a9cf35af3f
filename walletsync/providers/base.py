from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..core.models import BlockHeader, NotificationKind, Receipt, TokenDescriptor, TransferRequest


Handler = Callable[..., Union[None, Awaitable[None]]]
BlockCallback = Callable[[BlockHeader], Union[None, Awaitable[None]]]
LogCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class Cancellable(ABC):
    """Anything the subscription registry can tear down."""

    @abstractmethod
    def cancel(self) -> Any:
        pass


class LedgerSubscription(Cancellable):
    """Handle for a push stream opened on the ledger."""

    kind: str = "subscription"

    @property
    @abstractmethod
    def active(self) -> bool:
        pass


class WalletProvider(ABC):
    """External wallet capability: account access, chain identity and signing.

    Private keys never pass through this interface; ``send_transfer`` hands the
    unsigned transfer to the wallet, which prompts the user and broadcasts.
    """

    ACCOUNTS_CHANGED = "accountsChanged"
    CHAIN_CHANGED = "chainChanged"

    @abstractmethod
    async def request_accounts(self) -> List[str]:
        """Ask the wallet for account access (may prompt the user)"""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    def on(self, event: str, handler: Handler) -> None:
        pass

    @abstractmethod
    def off(self, event: str, handler: Handler) -> None:
        pass

    @abstractmethod
    async def send_transfer(
        self,
        token: TokenDescriptor,
        recipient: str,
        amount_raw: int,
        gas_units: int,
        gas_price_wei: int,
    ) -> str:
        """Sign and broadcast an ERC20 transfer; returns the transaction hash"""
        pass

    async def switch_chain(self, chain_id: int) -> None:
        raise NotImplementedError

    async def add_chain(self, chain_params: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def watch_asset(self, token: TokenDescriptor, image: Optional[str] = None) -> bool:
        raise NotImplementedError


class LedgerClient(ABC):
    """Read access to the remote ledger plus push subscriptions."""

    @abstractmethod
    async def get_native_balance(self, address: str) -> int:
        """Native balance in wei"""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        pass

    @abstractmethod
    async def get_gas_price(self) -> int:
        pass

    @abstractmethod
    async def call(self, token: TokenDescriptor, method: str, args: Sequence[Any] = ()) -> Any:
        """Read-only ERC20 call (``balanceOf``, ``decimals``, ``symbol``)"""
        pass

    @abstractmethod
    async def estimate_gas(self, transfer: TransferRequest) -> int:
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt for an included transaction, ``None`` while still pending"""
        pass

    @abstractmethod
    def subscribe_new_block_headers(self, callback: BlockCallback) -> LedgerSubscription:
        pass

    @abstractmethod
    def subscribe_contract_event(
        self,
        token: TokenDescriptor,
        event_name: str,
        filter: Dict[str, Any],
        callback: LogCallback,
    ) -> LedgerSubscription:
        pass

    async def close(self) -> None:
        return None


class TokenRegistry(ABC):
    """Synchronous lookup of token metadata by symbol or key."""

    @abstractmethod
    def get(self, key: str) -> TokenDescriptor:
        pass

    @abstractmethod
    def all(self) -> List[TokenDescriptor]:
        pass


class Notifier(ABC):
    """Fire-and-forget user notification sink."""

    @abstractmethod
    def notify(self, message: str, kind: NotificationKind = NotificationKind.INFO) -> None:
        pass
