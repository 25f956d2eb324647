"""
Address helpers shared by every component.

Addresses are handled as checksummed hex strings throughout the package,
the same representation web3 returns from contract calls and event logs.
"""

from web3 import Web3

from ..errors import InvalidInputError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_checksum(address: str, label: str = "address") -> str:
    """
    Validate an address and return its checksummed form.

    Args:
        address: Hex address in any letter case
        label: Name used in the error message

    Returns:
        Checksummed address

    Raises:
        InvalidInputError: If the value is not a 20-byte hex address
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidInputError(f"Invalid {label}: {address!r}")
    return Web3.to_checksum_address(address)


def derive_address(label: str) -> str:
    """Deterministic component address: last 20 bytes of keccak(label)."""
    digest = Web3.keccak(text=label)
    return Web3.to_checksum_address(digest[-20:])


def same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()
