"""
Optimistic oracle primitive and the relay-side adapter.

``OptimisticOracle`` is an in-process stand-in for the external price request
service: requests are proposed, may be disputed within a liveness window,
and disputes are resolved by a data verification mechanism (DVM).
``OptimisticOracleAdapter`` is the only surface the bridge router uses; it
pulls reward and bond from the relayer and drives request, liveness, bond
and proposal in a fixed order.
"""

import dataclasses
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from hexbytes import HexBytes
from web3 import Web3

from .ancillary_data import AncillaryDataEncoder
from .errors import ConflictError, InvalidInputError, InvalidStateError
from .ledger import Snapshottable, TokenLedger, atomic
from .registry import Finder, OracleInterfaces, identifier_to_bytes32
from .utils.address_utility import derive_address, to_checksum
from .utils.timer import Timer

logger = logging.getLogger(__name__)

MAX_LIVENESS = 5200 * 7 * 24 * 3600  # 5200 weeks


class RequestState(IntEnum):
    INVALID = 0
    REQUESTED = 1
    PROPOSED = 2
    EXPIRED = 3
    DISPUTED = 4
    RESOLVED = 5
    SETTLED = 6


@dataclass(slots=True)
class PriceRequest:
    """Oracle-side record of one price request.

    Attributes:
        requester: Contract that asked for the price
        identifier: Price identifier
        timestamp: Timestamp the price refers to
        ancillary_data: Request payload
        currency: Token used for reward, bond and fees
        reward: Reward paid to the winner on settlement
        final_fee: Fee owed to the Store, snapshotted at request time
        bond: Bond required from proposer and disputer, excluding final fee
        liveness: Challenge window in seconds
        proposer: Address that proposed, if any
        disputer: Address that disputed, if any
        proposed_price: Proposed value
        resolved_price: Value after settlement
        expiration_time: End of the challenge window
        settled: Whether payouts have been made
    """
    requester: str
    identifier: str
    timestamp: int
    ancillary_data: bytes
    currency: str
    reward: int
    final_fee: int
    bond: int
    liveness: int
    proposer: str | None = None
    disputer: str | None = None
    proposed_price: int | None = None
    resolved_price: int | None = None
    expiration_time: int = 0
    settled: bool = False

    @property
    def total_bond(self) -> int:
        return self.bond + self.final_fee


def request_id(requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> HexBytes:
    return HexBytes(Web3.solidity_keccak(
        ["address", "bytes32", "uint256", "bytes"],
        [to_checksum(requester, "requester"), identifier_to_bytes32(identifier), timestamp, bytes(ancillary_data)],
    ))


class MockDataVerificationMechanism(Snapshottable):
    """Dispute arbiter whose answers are pushed by the test or operator."""

    SNAPSHOT_FIELDS = ("requests", "prices")

    def __init__(self) -> None:
        self.address = derive_address("MockDataVerificationMechanism")
        self.requests: set[HexBytes] = set()
        self.prices: dict[HexBytes, int] = {}

    @staticmethod
    def _key(identifier: str, timestamp: int, ancillary_data: bytes) -> HexBytes:
        return HexBytes(Web3.solidity_keccak(
            ["bytes32", "uint256", "bytes"],
            [identifier_to_bytes32(identifier), timestamp, bytes(ancillary_data)],
        ))

    def request_price(self, identifier: str, timestamp: int, ancillary_data: bytes) -> None:
        self.requests.add(self._key(identifier, timestamp, ancillary_data))

    def push_price(self, identifier: str, timestamp: int, ancillary_data: bytes, price: int) -> None:
        key = self._key(identifier, timestamp, ancillary_data)
        if key not in self.requests:
            raise InvalidStateError("No DVM request for this price")
        self.prices[key] = price
        logger.info(f"DVM resolved {identifier} at {timestamp} to {price}")

    def has_price(self, identifier: str, timestamp: int, ancillary_data: bytes) -> bool:
        return self._key(identifier, timestamp, ancillary_data) in self.prices

    def get_price(self, identifier: str, timestamp: int, ancillary_data: bytes) -> int:
        key = self._key(identifier, timestamp, ancillary_data)
        if key not in self.prices:
            raise InvalidStateError("DVM has not resolved this price")
        return self.prices[key]


class OptimisticOracle(Snapshottable):
    """Price requests settled optimistically unless disputed."""

    SNAPSHOT_FIELDS = ("requests",)

    def __init__(self, finder: Finder, ledger: TokenLedger, timer: Timer, default_liveness: int = 7200):
        self.address = derive_address("OptimisticOracle")
        self.finder = finder
        self.ledger = ledger
        self.timer = timer
        self.default_liveness = self._validate_liveness(default_liveness)
        self.requests: dict[HexBytes, PriceRequest] = {}
        # Requester objects for dispute callbacks; not part of the snapshot.
        self._requesters: dict[str, Any] = {}

    @staticmethod
    def _validate_liveness(liveness: int) -> int:
        if liveness <= 0:
            raise InvalidInputError(f"Liveness must be positive, got {liveness}")
        if liveness >= MAX_LIVENESS:
            raise InvalidInputError(f"Liveness too large, got {liveness}")
        return liveness

    @staticmethod
    def stamp_ancillary_data(ancillary_data: bytes, requester: str) -> bytes:
        """Ancillary data as forwarded to the DVM, tagged with the requester."""
        return AncillaryDataEncoder.append_key_value_address(bytes(ancillary_data), "ooRequester", requester)

    def _get(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> PriceRequest:
        request = self.requests.get(request_id(requester, identifier, timestamp, ancillary_data))
        if request is None:
            raise InvalidStateError(f"No price request for {identifier} at {timestamp}")
        return request

    def _get_for_update(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> PriceRequest:
        """Fetch a request for mutation; the stored record is swapped for a copy so snapshots keep the original."""
        request = dataclasses.replace(self._get(requester, identifier, timestamp, ancillary_data))
        self.requests[request_id(requester, identifier, timestamp, ancillary_data)] = request
        return request

    def _dvm(self) -> MockDataVerificationMechanism:
        return self.finder.get_implementation(OracleInterfaces.ORACLE)

    def get_request(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> PriceRequest | None:
        request = self.requests.get(request_id(requester, identifier, timestamp, ancillary_data))
        return dataclasses.replace(request) if request else None

    def get_state(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> RequestState:
        request = self.requests.get(request_id(requester, identifier, timestamp, ancillary_data))
        if request is None:
            return RequestState.INVALID
        if request.settled:
            return RequestState.SETTLED
        if request.proposer is None:
            return RequestState.REQUESTED
        if request.disputer is None:
            if request.expiration_time <= self.timer.get_current_time():
                return RequestState.EXPIRED
            return RequestState.PROPOSED
        stamped = self.stamp_ancillary_data(ancillary_data, request.requester)
        if self._dvm().has_price(identifier, timestamp, stamped):
            return RequestState.RESOLVED
        return RequestState.DISPUTED

    def has_price(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> bool:
        state = self.get_state(requester, identifier, timestamp, ancillary_data)
        return state in (RequestState.EXPIRED, RequestState.RESOLVED, RequestState.SETTLED)

    def request_price(
        self,
        requester: Any,
        identifier: str,
        timestamp: int,
        ancillary_data: bytes,
        currency: str,
        reward: int,
    ) -> int:
        """
        Open a price request. The reward, if any, is pulled from the requester.

        Args:
            requester: Requesting component; must expose ``address``
            identifier: Whitelisted price identifier
            timestamp: Time the price refers to, not in the future
            ancillary_data: Request payload
            currency: Collateral-whitelisted token
            reward: Reward escrowed for the eventual winner

        Returns:
            Total bond a proposer must post (zero until a bond is set)
        """
        requester_address = to_checksum(requester.address, "requester")
        with atomic(self, self.ledger):
            identifiers = self.finder.get_implementation(OracleInterfaces.IDENTIFIER_WHITELIST)
            if not identifiers.is_identifier_supported(identifier):
                raise InvalidInputError(f"Unsupported identifier: {identifier}")
            collateral = self.finder.get_implementation(OracleInterfaces.COLLATERAL_WHITELIST)
            if not collateral.is_on_whitelist(currency):
                raise InvalidInputError(f"Unsupported currency: {currency}")
            if timestamp > self.timer.get_current_time():
                raise InvalidInputError("Timestamps must not be in the future")

            key = request_id(requester_address, identifier, timestamp, ancillary_data)
            if key in self.requests:
                raise ConflictError("Price request already initialized")

            store = self.finder.get_implementation(OracleInterfaces.STORE)
            final_fee = store.compute_final_fee(currency)
            self.requests[key] = PriceRequest(
                requester=requester_address,
                identifier=identifier,
                timestamp=timestamp,
                ancillary_data=bytes(ancillary_data),
                currency=to_checksum(currency, "currency"),
                reward=reward,
                final_fee=final_fee,
                bond=final_fee,
                liveness=self.default_liveness,
            )
            self._requesters[requester_address] = requester

            if reward > 0:
                self.ledger.transfer_from(currency, self.address, requester_address, self.address, reward)

        logger.debug(f"Price requested by {requester_address}: {identifier} at {timestamp}, reward {reward}")
        return 0

    def set_bond(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, bond: int) -> int:
        """Set the proposer/disputer bond; returns bond plus final fee."""
        if bond < 0:
            raise InvalidInputError(f"Bond must be non-negative, got {bond}")
        if self.get_state(requester, identifier, timestamp, ancillary_data) != RequestState.REQUESTED:
            raise InvalidStateError("setBond: Requested")
        request = self._get_for_update(requester, identifier, timestamp, ancillary_data)
        request.bond = bond
        return request.total_bond

    def set_custom_liveness(
        self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes, liveness: int
    ) -> None:
        self._validate_liveness(liveness)
        if self.get_state(requester, identifier, timestamp, ancillary_data) != RequestState.REQUESTED:
            raise InvalidStateError("setCustomLiveness: Requested")
        self._get_for_update(requester, identifier, timestamp, ancillary_data).liveness = liveness

    def propose_price_for(
        self,
        payer: str,
        proposer: str,
        requester: str,
        identifier: str,
        timestamp: int,
        ancillary_data: bytes,
        proposed_price: int,
    ) -> int:
        """
        Propose a price on behalf of ``proposer``; ``payer`` funds the bond.

        Returns:
            Total bond pulled from the payer
        """
        with atomic(self, self.ledger):
            if self.get_state(requester, identifier, timestamp, ancillary_data) != RequestState.REQUESTED:
                raise InvalidStateError("proposePriceFor: Requested")
            request = self._get_for_update(requester, identifier, timestamp, ancillary_data)
            request.proposer = to_checksum(proposer, "proposer")
            request.proposed_price = proposed_price
            request.expiration_time = self.timer.get_current_time() + request.liveness

            total_bond = request.total_bond
            if total_bond > 0:
                self.ledger.transfer_from(request.currency, self.address, payer, self.address, total_bond)

        logger.debug(f"Proposal by {proposer} for {identifier} at {timestamp}: {proposed_price}")
        return total_bond

    def dispute_price_for(
        self,
        payer: str,
        disputer: str,
        requester: str,
        identifier: str,
        timestamp: int,
        ancillary_data: bytes,
    ) -> int:
        """
        Dispute a live proposal on behalf of ``disputer``.

        The final fee and half of the bond go to the Store, the question is
        escalated to the DVM, and the requester's ``price_disputed`` callback
        runs inside the same transaction.

        Returns:
            Total bond pulled from the payer
        """
        with atomic(self, self.ledger, self._dvm()):
            if self.get_state(requester, identifier, timestamp, ancillary_data) != RequestState.PROPOSED:
                raise InvalidStateError("disputePriceFor: Proposed")
            request = self._get_for_update(requester, identifier, timestamp, ancillary_data)
            request.disputer = to_checksum(disputer, "disputer")

            total_bond = request.total_bond
            if total_bond > 0:
                self.ledger.transfer_from(request.currency, self.address, payer, self.address, total_bond)

            store_fee = request.final_fee + request.bond // 2
            if store_fee > 0:
                store = self.finder.get_implementation(OracleInterfaces.STORE)
                self.ledger.transfer(request.currency, self.address, store.address, store_fee)

            stamped = self.stamp_ancillary_data(ancillary_data, request.requester)
            self._dvm().request_price(identifier, timestamp, stamped)

            callback_target = self._requesters.get(request.requester)
            if callback_target is not None and hasattr(callback_target, "price_disputed"):
                callback_target.price_disputed(identifier, timestamp, bytes(ancillary_data), 0)

        logger.info(f"Proposal for {identifier} at {timestamp} disputed by {disputer}")
        return total_bond

    def settle(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> int:
        """
        Pay out an expired or DVM-resolved request.

        Returns:
            Amount paid to the winner

        Raises:
            InvalidStateError: If the request is neither expired nor resolved
        """
        with atomic(self, self.ledger):
            state = self.get_state(requester, identifier, timestamp, ancillary_data)
            request = self._get_for_update(requester, identifier, timestamp, ancillary_data)

            match state:
                case RequestState.EXPIRED:
                    request.resolved_price = request.proposed_price
                    winner = request.proposer
                    payout = request.bond + request.final_fee + request.reward
                case RequestState.RESOLVED:
                    stamped = self.stamp_ancillary_data(ancillary_data, request.requester)
                    request.resolved_price = self._dvm().get_price(identifier, timestamp, stamped)
                    disputer_won = request.resolved_price != request.proposed_price
                    winner = request.disputer if disputer_won else request.proposer
                    payout = request.bond * 2 - request.bond // 2 + request.final_fee + request.reward
                case _:
                    raise InvalidStateError(f"Request not settleable in state {state.name}")

            request.settled = True
            if payout > 0:
                self.ledger.transfer(request.currency, self.address, winner, payout)

        logger.debug(f"Settled {identifier} at {timestamp}: price {request.resolved_price}, {payout} to {winner}")
        return payout

    def settle_and_get_price(self, requester: str, identifier: str, timestamp: int, ancillary_data: bytes) -> int:
        if self.get_state(requester, identifier, timestamp, ancillary_data) != RequestState.SETTLED:
            self.settle(requester, identifier, timestamp, ancillary_data)
        return self._get(requester, identifier, timestamp, ancillary_data).resolved_price


class OptimisticOracleAdapter:
    """
    Relay-side wrapper over the optimistic oracle.

    Holds no state of its own; the oracle, Store and whitelists are resolved
    through the Finder on every call.
    """

    def __init__(self, requester: Any, finder: Finder, ledger: TokenLedger):
        """
        Args:
            requester: Component on whose behalf requests are made (the router)
            finder: Service registry
            ledger: Token ledger used to pull funds from callers
        """
        self.requester = requester
        self.finder = finder
        self.ledger = ledger

    @property
    def oracle(self) -> OptimisticOracle:
        return self.finder.get_implementation(OracleInterfaces.OPTIMISTIC_ORACLE)

    def final_fee(self, currency: str) -> int:
        return self.finder.get_implementation(OracleInterfaces.STORE).compute_final_fee(currency)

    def _pull_and_approve(self, currency: str, payer: str, amount: int) -> None:
        """Move ``amount`` from ``payer`` into requester custody and let the oracle spend it."""
        if amount <= 0:
            return
        requester_address = self.requester.address
        self.ledger.transfer_from(currency, requester_address, payer, requester_address, amount)
        self.ledger.approve(currency, requester_address, self.oracle.address, amount)

    def request_price(self, identifier: str, timestamp: int, ancillary_data: bytes, currency: str, reward: int) -> int:
        return self.oracle.request_price(self.requester, identifier, timestamp, ancillary_data, currency, reward)

    def set_custom_liveness(self, identifier: str, timestamp: int, ancillary_data: bytes, liveness: int) -> None:
        self.oracle.set_custom_liveness(self.requester.address, identifier, timestamp, ancillary_data, liveness)

    def set_bond(self, identifier: str, timestamp: int, ancillary_data: bytes, bond: int) -> int:
        return self.oracle.set_bond(self.requester.address, identifier, timestamp, ancillary_data, bond)

    def propose_price_for(
        self, proposer: str, payer: str, identifier: str, timestamp: int, ancillary_data: bytes, proposed_value: int
    ) -> int:
        return self.oracle.propose_price_for(
            payer, proposer, self.requester.address, identifier, timestamp, ancillary_data, proposed_value
        )

    def request_and_propose(
        self,
        relayer: str,
        identifier: str,
        timestamp: int,
        ancillary_data: bytes,
        currency: str,
        reward: int,
        proposer_bond: int,
        liveness: int,
        proposed_value: int,
    ) -> int:
        """
        Open a relay price request and propose it on the relayer's behalf.

        Pulls ``reward`` and then ``proposer_bond + final_fee`` from the
        relayer. Callers run this inside ``atomic`` so a failed pull undoes
        the request as well.

        Returns:
            Total bond posted
        """
        self._pull_and_approve(currency, relayer, reward)
        self.request_price(identifier, timestamp, ancillary_data, currency, reward)
        self.set_custom_liveness(identifier, timestamp, ancillary_data, liveness)
        total_bond = self.set_bond(identifier, timestamp, ancillary_data, proposer_bond)

        self._pull_and_approve(currency, relayer, total_bond)
        self.propose_price_for(
            relayer, self.requester.address, identifier, timestamp, ancillary_data, proposed_value
        )
        return total_bond

    def dispute(self, disputer: str, identifier: str, timestamp: int, ancillary_data: bytes) -> int:
        request = self.get_request(identifier, timestamp, ancillary_data)
        if request is None:
            raise InvalidStateError(f"No price request for {identifier} at {timestamp}")
        self._pull_and_approve(request.currency, disputer, request.total_bond)
        return self.oracle.dispute_price_for(
            self.requester.address, disputer, self.requester.address, identifier, timestamp, ancillary_data
        )

    def get_request(self, identifier: str, timestamp: int, ancillary_data: bytes) -> PriceRequest | None:
        return self.oracle.get_request(self.requester.address, identifier, timestamp, ancillary_data)

    def get_state(self, identifier: str, timestamp: int, ancillary_data: bytes) -> RequestState:
        return self.oracle.get_state(self.requester.address, identifier, timestamp, ancillary_data)

    def settle_and_get_price(self, identifier: str, timestamp: int, ancillary_data: bytes) -> int:
        """Settle the request unless someone already has, and return the resolved price."""
        return self.oracle.settle_and_get_price(self.requester.address, identifier, timestamp, ancillary_data)
