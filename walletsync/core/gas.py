"""
Gas estimation for token transfers, with a freshness window on quotes.
"""

import logging
import math
import time
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Optional

from ..config import settings
from ..providers.base import LedgerClient
from ..services.address import ZERO_ADDRESS, is_valid_address, same_address
from .amounts import to_raw_amount
from .balances import BalanceSynchronizer
from .errors import (
    EstimationFailed,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    NotConnected,
    classify_error,
)
from .models import GasQuote, SessionState, TransferParams, TransferRequest

if TYPE_CHECKING:
    from .session import SessionStore


class GasEstimator:
    """
    Validates a prospective transfer and quotes its fee.

    Validation never touches the network; the quote needs two ledger calls
    (``estimate_gas`` and ``get_gas_price``).
    """

    def __init__(
        self,
        store: "SessionStore",
        ledger: LedgerClient,
        balances: BalanceSynchronizer,
        *,
        multiplier: Optional[Decimal] = None,
        freshness: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.balances = balances
        self.multiplier = Decimal(multiplier if multiplier is not None else settings.gas_limit_multiplier)
        self.freshness = freshness or settings.gas_quote_freshness_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def validate(self, params: TransferParams) -> int:
        """
        Check a transfer against the session and the last known balance.

        Returns:
            The amount in raw token units.

        Raises:
            NotConnected, InvalidAmount, InvalidAddress, InsufficientBalance
        """
        if not self.store.current.connected:
            raise NotConnected()

        amount = params.amount
        if not isinstance(amount, Decimal) or not amount.is_finite() or amount <= 0:
            raise InvalidAmount()
        amount_raw = to_raw_amount(amount, params.token.decimals)
        if amount_raw <= 0:
            raise InvalidAmount()

        if not is_valid_address(params.recipient):
            raise InvalidAddress()
        if same_address(params.recipient, ZERO_ADDRESS):
            raise InvalidAddress("Cannot send to the zero address")

        snapshot = self.balances.snapshot
        if snapshot is None or amount_raw > snapshot.token_raw:
            available = snapshot.token if snapshot is not None else Decimal(0)
            raise InsufficientBalance(
                f"Insufficient {params.token.symbol} balance: {available} available, {amount} requested"
            )
        return amount_raw

    async def estimate(self, params: TransferParams) -> GasQuote:
        """Validate, then quote gas units and price for ``params``.

        Raises:
            InsufficientGas: Not enough native coin to cover the fee.
            RevertedExecution: The transfer would revert.
            EstimationFailed: Any other estimation failure.
        """
        amount_raw = self.validate(params)
        state = self.store.current
        return await self._quote(state, params, amount_raw)

    async def _quote(self, state: SessionState, params: TransferParams, amount_raw: int) -> GasQuote:
        request = TransferRequest(
            sender=state.address,
            token=params.token,
            recipient=params.recipient,
            amount_raw=amount_raw,
        )
        try:
            gas_units = await self.ledger.estimate_gas(request)
            gas_price = await self.ledger.get_gas_price()
        except Exception as exc:
            error = classify_error(exc, default=EstimationFailed)
            self.logger.warning("Gas estimation failed: %s", error.message)
            if error is exc:
                raise
            raise error from exc

        gas_limit = math.ceil(Decimal(gas_units) * self.multiplier)
        quote = GasQuote(
            gas_units=gas_limit,
            gas_price_wei=gas_price,
            computed_at=self.clock(),
            generation=state.generation,
            transfer_key=params.key,
        )
        self.logger.debug(
            "Gas quote: %d units at %s gwei (estimate %d)",
            quote.gas_units,
            quote.gas_price_gwei,
            gas_units,
        )
        return quote

    def is_usable(self, quote: Optional[GasQuote], params: TransferParams) -> bool:
        """True when ``quote`` is fresh and was computed for this transfer and session."""
        return (
            quote is not None
            and quote.generation == self.store.generation
            and quote.transfer_key == params.key
            and quote.is_fresh(self.clock(), self.freshness)
        )

    async def ensure_fresh(self, quote: Optional[GasQuote], params: TransferParams) -> GasQuote:
        """Return ``quote`` if still usable, otherwise a newly computed one."""
        if self.is_usable(quote, params):
            return quote
        if quote is not None:
            self.logger.info("Gas quote stale or mismatched; re-estimating")
        return await self.estimate(params)
