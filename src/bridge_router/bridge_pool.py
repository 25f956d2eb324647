"""
L1 liquidity pool paying out finalized relays for a single token.

Liquidity providers deposit and withdraw against their own balance; only the
router registered with the pool can pay relays out of the pool's custody.
"""

import logging

from .errors import InsufficientAuthorizationError, InvalidInputError
from .ledger import Snapshottable, TokenLedger, atomic
from .utils.address_utility import derive_address, same_address, to_checksum

logger = logging.getLogger(__name__)


class BridgePool(Snapshottable):
    """Per-token liquidity pool."""

    SNAPSHOT_FIELDS = ("provider_balances", "total_paid_out")

    def __init__(self, l1_token: str, ledger: TokenLedger, label: str | None = None):
        self.l1_token = to_checksum(l1_token, "l1 token")
        self.address = derive_address(label or f"BridgePool:{self.l1_token}")
        self.ledger = ledger
        self.router: str | None = None
        self.provider_balances: dict[str, int] = {}
        self.total_paid_out = 0

    @property
    def liquidity(self) -> int:
        return self.ledger.balance_of(self.l1_token, self.address)

    def provider_balance(self, provider: str) -> int:
        return self.provider_balances.get(to_checksum(provider, "provider"), 0)

    def set_router(self, router: str) -> None:
        self.router = to_checksum(router, "router")

    def deposit(self, provider: str, amount: int) -> None:
        """
        Add liquidity pulled from ``provider`` (who must have approved the pool).

        Raises:
            InsufficientAuthorizationError: If the pull fails
        """
        if amount <= 0:
            raise InvalidInputError(f"Deposit amount must be positive, got {amount}")
        provider = to_checksum(provider, "provider")
        with atomic(self, self.ledger):
            self.ledger.transfer_from(self.l1_token, self.address, provider, self.address, amount)
            self.provider_balances[provider] = self.provider_balances.get(provider, 0) + amount
        logger.info(f"Liquidity added to {self.l1_token} pool: {amount} by {provider}")

    def withdraw(self, provider: str, amount: int) -> None:
        """
        Return liquidity to ``provider``.

        Raises:
            InvalidInputError: If the amount exceeds the provider's balance
            InsufficientAuthorizationError: If the pool lacks free liquidity
        """
        if amount <= 0:
            raise InvalidInputError(f"Withdraw amount must be positive, got {amount}")
        provider = to_checksum(provider, "provider")
        balance = self.provider_balances.get(provider, 0)
        if amount > balance:
            raise InvalidInputError(f"Withdraw amount {amount} exceeds provider balance {balance}")
        with atomic(self, self.ledger):
            self.provider_balances[provider] = balance - amount
            self.ledger.transfer(self.l1_token, self.address, provider, amount)
        logger.info(f"Liquidity removed from {self.l1_token} pool: {amount} by {provider}")

    def pay_out(self, caller: str, to: str, amount: int) -> None:
        """Transfer relay proceeds out of pool custody. Router only."""
        if self.router is None or not same_address(caller, self.router):
            raise InsufficientAuthorizationError("Caller is not the bridge router")
        if amount == 0:
            return
        with atomic(self, self.ledger):
            self.ledger.transfer(self.l1_token, self.address, to, amount)
            self.total_paid_out += amount
