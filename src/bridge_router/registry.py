"""
Service discovery and whitelists.

The Finder maps symbolic interface names to live implementations. Components
receive the Finder at construction and resolve through it on every call, so
repointing an interface takes effect immediately.
"""

import logging
from enum import Enum
from typing import Any

from web3 import Web3

from .errors import ExternalDependencyUnavailableError, InvalidInputError
from .utils.address_utility import derive_address, to_checksum

logger = logging.getLogger(__name__)


class OracleInterfaces(str, Enum):
    OPTIMISTIC_ORACLE = "OptimisticOracle"
    IDENTIFIER_WHITELIST = "IdentifierWhitelist"
    COLLATERAL_WHITELIST = "CollateralWhitelist"
    STORE = "Store"
    ORACLE = "Oracle"


def identifier_to_bytes32(identifier: str) -> bytes:
    """Right-pad a price identifier to 32 bytes."""
    raw = identifier.encode()
    if not raw or len(raw) > 32:
        raise InvalidInputError(f"Price identifier must be 1-32 bytes, got {identifier!r}")
    return raw.ljust(32, b"\0")


class Finder:
    """Registry of protocol service implementations."""

    def __init__(self) -> None:
        self.address = derive_address("Finder")
        self._implementations: dict[str, Any] = {}

    def change_implementation_address(self, interface: OracleInterfaces | str, implementation: Any) -> None:
        """
        Point an interface name at an implementation.

        Args:
            interface: Interface name
            implementation: Component exposing an ``address`` attribute
        """
        name = OracleInterfaces(interface).value
        self._implementations[name] = implementation
        logger.info(f"Finder: {name} -> {getattr(implementation, 'address', implementation)}")

    def get_implementation(self, interface: OracleInterfaces | str) -> Any:
        """
        Resolve an interface to its current implementation.

        Raises:
            ExternalDependencyUnavailableError: If nothing is registered
        """
        name = OracleInterfaces(interface).value
        implementation = self._implementations.get(name)
        if implementation is None:
            raise ExternalDependencyUnavailableError(f"Implementation not found for {name}")
        return implementation

    def get_implementation_address(self, interface: OracleInterfaces | str) -> str:
        return self.get_implementation(interface).address


class IdentifierWhitelist:
    """Price identifiers the oracle accepts."""

    def __init__(self) -> None:
        self.address = derive_address("IdentifierWhitelist")
        self._supported: set[bytes] = set()

    def add_supported_identifier(self, identifier: str) -> None:
        self._supported.add(identifier_to_bytes32(identifier))

    def remove_supported_identifier(self, identifier: str) -> None:
        self._supported.discard(identifier_to_bytes32(identifier))

    def is_identifier_supported(self, identifier: str) -> bool:
        return identifier_to_bytes32(identifier) in self._supported


class AddressWhitelist:
    """Set of approved addresses, used for collateral currencies."""

    def __init__(self, label: str = "CollateralWhitelist") -> None:
        self.address = derive_address(label)
        self._members: set[str] = set()

    def add_to_whitelist(self, address: str) -> None:
        self._members.add(to_checksum(address, "whitelist address"))

    def remove_from_whitelist(self, address: str) -> None:
        self._members.discard(to_checksum(address, "whitelist address"))

    def is_on_whitelist(self, address: str) -> bool:
        return Web3.is_address(address) and Web3.to_checksum_address(address) in self._members

    def get_whitelist(self) -> list[str]:
        return sorted(self._members)


class Store:
    """Fee schedule: the final fee charged per currency on oracle requests."""

    def __init__(self) -> None:
        self.address = derive_address("Store")
        self._final_fees: dict[str, int] = {}

    def set_final_fee(self, currency: str, fee: int) -> None:
        if fee < 0:
            raise InvalidInputError(f"Final fee must be non-negative, got {fee}")
        self._final_fees[to_checksum(currency, "currency")] = fee

    def compute_final_fee(self, currency: str) -> int:
        return self._final_fees.get(to_checksum(currency, "currency"), 0)
