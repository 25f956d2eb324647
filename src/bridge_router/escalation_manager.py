"""
Superbond escalation manager.

Assertions whose bond, in the configured currency, exceeds the superbond are
arbitrated by this manager instead of the default oracle. Policy evaluation
reads the assertion from the asserting oracle and never mutates state.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from hexbytes import HexBytes
from web3 import Web3

from .config import EscalationSettings
from .errors import InsufficientAuthorizationError, InvalidInputError, InvalidStateError
from .models import Assertion, AssertionPolicy
from .registry import identifier_to_bytes32
from .utils.address_utility import derive_address, same_address, to_checksum

logger = logging.getLogger(__name__)


class AssertionSource(Protocol):
    """The asserting oracle, queried for assertion currency and bond."""

    def get_assertion(self, assertion_id: bytes) -> Assertion: ...


@dataclass(frozen=True, slots=True)
class ArbitrationResolution:
    value_set: bool
    resolution: bool


@dataclass(frozen=True, slots=True)
class PriceRequestAdded:
    request_id: HexBytes
    identifier: str
    time: int
    ancillary_data: bytes


class SuperbondEscalationManager:
    """Routes high-value assertions to owner arbitration."""

    NUMERICAL_TRUE = 10**18

    def __init__(self, owner: str, oracle: AssertionSource, superbond: int = 0, superbond_currency: str | None = None):
        """
        Args:
            owner: Address allowed to configure the manager and arbitrate
            oracle: Asserting oracle this manager serves
            superbond: Bond threshold above which arbitration is escalated
            superbond_currency: Currency the threshold is denominated in
        """
        self.address = derive_address("SuperbondEscalationManager")
        self.owner = to_checksum(owner, "owner")
        self.oracle = oracle
        self.superbond = 0
        self.superbond_currency: str | None = None
        self.arbitration_resolutions: dict[HexBytes, ArbitrationResolution] = {}
        self.price_requests: list[PriceRequestAdded] = []

        self._set_superbond(superbond)
        if superbond_currency is not None:
            self.superbond_currency = to_checksum(superbond_currency, "superbond currency")

    @classmethod
    def from_settings(
        cls, owner: str, oracle: AssertionSource, settings: EscalationSettings
    ) -> "SuperbondEscalationManager":
        """Build a manager with the superbond threshold loaded from configuration."""
        manager = cls(owner, oracle, settings.superbond, settings.superbond_currency)
        logger.info(f"Escalation manager configured: superbond={manager.superbond} currency={manager.superbond_currency}")
        return manager

    def _only_owner(self, caller: str) -> None:
        if not same_address(caller, self.owner):
            raise InsufficientAuthorizationError("Caller is not the owner")

    def _set_superbond(self, superbond: int) -> None:
        if superbond < 0:
            raise InvalidInputError(f"Superbond must be non-negative, got {superbond}")
        self.superbond = superbond

    def set_superbond(self, caller: str, superbond: int) -> None:
        self._only_owner(caller)
        self._set_superbond(superbond)
        logger.info(f"Superbond set to {superbond}")

    def set_superbond_currency(self, caller: str, currency: str) -> None:
        self._only_owner(caller)
        self.superbond_currency = to_checksum(currency, "superbond currency")
        logger.info(f"Superbond currency set to {self.superbond_currency}")

    def get_assertion_policy(self, assertion_id: bytes, caller: AssertionSource | None = None) -> AssertionPolicy:
        """
        Decide how an assertion is arbitrated.

        Args:
            assertion_id: Assertion to evaluate
            caller: Asserting oracle to read from; defaults to the configured one

        Returns:
            Policy with ``arbitrate_via_escalation_manager`` set iff the bond is
            in the superbond currency and strictly above the superbond
        """
        assertion = (caller or self.oracle).get_assertion(assertion_id)
        is_superbond = (
            self.superbond_currency is not None
            and same_address(assertion.currency, self.superbond_currency)
            and assertion.bond > self.superbond
        )
        return AssertionPolicy(
            block_assertion=False,
            arbitrate_via_escalation_manager=is_superbond,
            discard_oracle=False,
            validate_disputers=False,
        )

    def is_dispute_allowed(self, assertion_id: bytes, disputer: str) -> bool:
        return True

    @staticmethod
    def get_request_id(identifier: str, time: int, ancillary_data: bytes) -> HexBytes:
        return HexBytes(Web3.solidity_keccak(
            ["bytes32", "uint256", "bytes"],
            [identifier_to_bytes32(identifier), time, bytes(ancillary_data)],
        ))

    def request_price(self, identifier: str, time: int, ancillary_data: bytes) -> None:
        request_id = self.get_request_id(identifier, time, ancillary_data)
        self.price_requests.append(PriceRequestAdded(request_id, identifier, time, bytes(ancillary_data)))
        logger.info(f"Escalated price request {request_id.hex()[:10]}... for {identifier} at {time}")

    def set_arbitration_resolution(
        self, caller: str, identifier: str, time: int, ancillary_data: bytes, arbitration_resolution: bool
    ) -> None:
        """Record the owner's answer to an escalated request. Each request is answered once."""
        self._only_owner(caller)
        request_id = self.get_request_id(identifier, time, ancillary_data)
        if request_id in self.arbitration_resolutions:
            raise InvalidStateError("Arbitration already resolved")
        self.arbitration_resolutions[request_id] = ArbitrationResolution(True, arbitration_resolution)

    def get_price(self, identifier: str, time: int, ancillary_data: bytes) -> int:
        resolution = self.arbitration_resolutions.get(self.get_request_id(identifier, time, ancillary_data))
        if resolution is None or not resolution.value_set:
            raise InvalidStateError("Arbitration resolution not set")
        return self.NUMERICAL_TRUE if resolution.resolution else 0

    def assertion_resolved_callback(self, assertion_id: bytes, asserted_truthfully: bool) -> None:
        pass

    def assertion_disputed_callback(self, assertion_id: bytes) -> None:
        pass
