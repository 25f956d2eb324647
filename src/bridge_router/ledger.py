"""
Token custody and transaction atomicity.

This module provides an ERC-20 style ledger shared by every component and the
``atomic`` scope that gives each protocol operation all-or-nothing semantics:
participants are snapshotted on entry and restored if an exception escapes.
"""

import copy
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

from .errors import InsufficientAuthorizationError, InvalidInputError
from .utils.address_utility import to_checksum

logger = logging.getLogger(__name__)


class Snapshottable:
    """
    Mixin for components whose state takes part in ``atomic`` scopes.

    Subclasses list the attributes that make up their persistent state in
    ``SNAPSHOT_FIELDS``. Those are copied one level deep, so containers must
    hold immutable values or be replaced rather than mutated in place.
    Append-only lists go in ``LOG_FIELDS`` and are rolled back by truncation.
    Collaborators and configuration are not copied.
    """

    SNAPSHOT_FIELDS: ClassVar[tuple[str, ...]] = ()
    LOG_FIELDS: ClassVar[tuple[str, ...]] = ()

    def snapshot(self) -> dict[str, Any]:
        state = {name: copy.copy(getattr(self, name)) for name in self.SNAPSHOT_FIELDS}
        state.update({name: len(getattr(self, name)) for name in self.LOG_FIELDS})
        return state

    def restore(self, state: dict[str, Any]) -> None:
        for name, value in state.items():
            if name in self.LOG_FIELDS:
                del getattr(self, name)[value:]
            else:
                setattr(self, name, value)


@contextmanager
def atomic(*participants: Any) -> Iterator[None]:
    """
    Run a block of state mutations as a single transaction.

    Args:
        participants: Components touched by the block. Objects that are not
            Snapshottable, and duplicates, are ignored.

    Raises:
        Whatever the block raises, after every participant has been restored.
    """
    seen: set[int] = set()
    members: list[Snapshottable] = []
    for participant in participants:
        if isinstance(participant, Snapshottable) and id(participant) not in seen:
            seen.add(id(participant))
            members.append(participant)

    snapshots = [(member, member.snapshot()) for member in members]
    try:
        yield
    except BaseException:
        for member, state in reversed(snapshots):
            member.restore(state)
        logger.debug(f"Rolled back {len(snapshots)} participants")
        raise


class TokenLedger(Snapshottable):
    """Balances and allowances for every token, keyed by checksummed address."""

    SNAPSHOT_FIELDS = ("balances", "allowances")

    def __init__(self) -> None:
        self.balances: dict[tuple[str, str], int] = {}
        self.allowances: dict[tuple[str, str, str], int] = {}

    def balance_of(self, token: str, holder: str) -> int:
        return self.balances.get((to_checksum(token, "token"), to_checksum(holder, "holder")), 0)

    def allowance(self, token: str, owner: str, spender: str) -> int:
        key = (to_checksum(token, "token"), to_checksum(owner, "owner"), to_checksum(spender, "spender"))
        return self.allowances.get(key, 0)

    def mint(self, token: str, to: str, amount: int) -> None:
        self._check_amount(amount)
        key = (to_checksum(token, "token"), to_checksum(to, "recipient"))
        self.balances[key] = self.balances.get(key, 0) + amount

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        self._check_amount(amount)
        key = (to_checksum(token, "token"), to_checksum(owner, "owner"), to_checksum(spender, "spender"))
        self.allowances[key] = amount

    def transfer(self, token: str, sender: str, to: str, amount: int) -> None:
        """
        Move tokens held by ``sender``.

        Raises:
            InsufficientAuthorizationError: If the sender balance is too low
        """
        self._check_amount(amount)
        token = to_checksum(token, "token")
        sender = to_checksum(sender, "sender")
        to = to_checksum(to, "recipient")

        balance = self.balances.get((token, sender), 0)
        if balance < amount:
            raise InsufficientAuthorizationError(
                f"Transfer amount exceeds balance: {sender} holds {balance}, needs {amount}"
            )
        if amount == 0:
            return
        self.balances[(token, sender)] = balance - amount
        self.balances[(token, to)] = self.balances.get((token, to), 0) + amount

    def transfer_from(self, token: str, spender: str, owner: str, to: str, amount: int) -> None:
        """
        Pull tokens from ``owner`` using the allowance granted to ``spender``.

        Raises:
            InsufficientAuthorizationError: If allowance or balance is too low
        """
        self._check_amount(amount)
        key = (to_checksum(token, "token"), to_checksum(owner, "owner"), to_checksum(spender, "spender"))
        allowed = self.allowances.get(key, 0)
        if allowed < amount:
            raise InsufficientAuthorizationError(
                f"Transfer amount exceeds allowance: {owner} approved {allowed} to {spender}, needs {amount}"
            )
        self.transfer(token, owner, to, amount)
        self.allowances[key] = allowed - amount

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or amount < 0:
            raise InvalidInputError(f"Token amount must be a non-negative integer, got {amount!r}")
