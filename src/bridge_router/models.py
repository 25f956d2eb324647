"""
Shared data models for the bridge router.

This module contains the relay records, oracle assertion views, slashing
outputs and the event records emitted by the router.
"""

from dataclasses import dataclass
from enum import IntEnum


class DepositState(IntEnum):
    """Lifecycle of a deposit in the router's primary mapping."""
    UNINITIALIZED = 0
    PENDING_SLOW = 1
    PENDING_INSTANT = 2
    FINALIZED_SLOW = 3
    FINALIZED_INSTANT = 4

    @property
    def is_pending(self) -> bool:
        return self in (DepositState.PENDING_SLOW, DepositState.PENDING_INSTANT)

    @property
    def is_finalized(self) -> bool:
        return self in (DepositState.FINALIZED_SLOW, DepositState.FINALIZED_INSTANT)


class DepositType(IntEnum):
    SLOW = 0
    INSTANT = 1


@dataclass(frozen=True, slots=True)
class RelayData:
    """Parameters of a deposit made on L2, as claimed by a relayer.

    Attributes:
        deposit_id: Identifier assigned by the L2 deposit contract
        deposit_timestamp: Unix timestamp of the L2 deposit
        recipient: L1 address receiving the bridged funds
        l2_sender: Address that made the deposit on L2
        l1_token: L1 token being bridged
        amount: Deposited amount, in l1_token base units
        realized_fee: Fee the relayer charges, never above max_fee
        max_fee: Maximum fee the depositor agreed to
        relayer: Address submitting the relay
    """
    deposit_id: int
    deposit_timestamp: int
    recipient: str
    l2_sender: str
    l1_token: str
    amount: int
    realized_fee: int
    max_fee: int
    relayer: str

    @property
    def amount_after_fee(self) -> int:
        return self.amount - self.realized_fee


@dataclass(frozen=True, slots=True)
class Deposit:
    """A relay record stored by the router.

    Records are immutable; every transition stores a new record built with
    ``dataclasses.replace``.
    """
    state: DepositState = DepositState.UNINITIALIZED
    deposit_type: DepositType = DepositType.SLOW
    slow_relayer: str | None = None
    instant_relayer: str | None = None
    relay_data: RelayData | None = None
    ancillary_data: bytes = b""
    price_request_time: int = 0

    @classmethod
    def uninitialized(cls) -> "Deposit":
        return cls()

    @property
    def deposit_id(self) -> int | None:
        return self.relay_data.deposit_id if self.relay_data else None


@dataclass(frozen=True, slots=True)
class TokenRelationship:
    """L1 token mapping to its L2 counterpart and bridge pool.

    Attributes:
        l2_token: Token address on the L2 chain
        bridge_pool: Address of the L1 liquidity pool paying out relays
        proposer_reward: Reward posted with each price request
        proposer_bond: Bond a relayer posts, excluding the oracle final fee
    """
    l2_token: str
    bridge_pool: str
    proposer_reward: int
    proposer_bond: int


@dataclass(frozen=True, slots=True)
class Assertion:
    """The fields of an optimistic assertion an escalation manager reads."""
    assertion_id: bytes
    asserter: str
    currency: str
    bond: int
    escalation_manager: str | None = None
    settled: bool = False


@dataclass(frozen=True, slots=True)
class AssertionPolicy:
    block_assertion: bool = False
    arbitrate_via_escalation_manager: bool = False
    discard_oracle: bool = False
    validate_disputers: bool = False


@dataclass(frozen=True, slots=True)
class SlashingTracker:
    """Per-request slashing outcome.

    Rates are 1e18 fixed point fractions of stake.
    """
    wrong_vote_slash_per_token: int
    no_vote_slash_per_token: int
    total_slashed: int
    total_correct_votes: int


# Router events


@dataclass(frozen=True, slots=True)
class TokenWhitelisted:
    l1_token: str
    l2_token: str
    bridge_pool: str
    proposer_reward: int
    proposer_bond: int

    name = "TokenWhitelisted"


@dataclass(frozen=True, slots=True)
class DepositRelayed:
    relay_data: RelayData
    ancillary_data: bytes
    price_request_time: int
    total_bond: int

    name = "DepositRelayed"

    @property
    def deposit_id(self) -> int:
        return self.relay_data.deposit_id


@dataclass(frozen=True, slots=True)
class RelaySpedUp:
    deposit_id: int
    instant_relayer: str
    slow_relayer: str

    name = "RelaySpedUp"


@dataclass(frozen=True, slots=True)
class RelayDisputed:
    deposit_id: int
    disputer: str
    slow_relayer: str

    name = "RelayDisputed"


@dataclass(frozen=True, slots=True)
class RelayFinalized:
    deposit_id: int
    deposit_type: DepositType
    recipient: str
    recipient_amount: int
    relayer_payout: int
    caller: str

    name = "RelayFinalized"


@dataclass(frozen=True, slots=True)
class DisputeSettled:
    deposit_id: int
    disputer: str
    dispute_successful: bool
    relay_paid_out: bool
    caller: str

    name = "DisputeSettled"


@dataclass(frozen=True, slots=True)
class CrossDomainMessage:
    target: str
    gas_limit: int
    payload: bytes
    sender: str = ""


RouterEvent = (
    TokenWhitelisted | DepositRelayed | RelaySpedUp | RelayDisputed | RelayFinalized | DisputeSettled
)
