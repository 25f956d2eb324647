"""
Ancillary data encoding for relay price requests.

The optimistic oracle identifies a relay dispute by its ancillary data: a
UTF-8 string of ``key:value`` pairs joined by commas. Integers are written in
base 10 and addresses as 40 lowercase hex characters without the ``0x``
prefix. Key spelling and order are part of the protocol; changing either
breaks every verifier that re-derives the payload.
"""

import logging

from hexbytes import HexBytes
from web3 import Web3

from .errors import InvalidInputError
from .models import RelayData

logger = logging.getLogger(__name__)

RELAY_ANCILLARY_KEYS: tuple[str, ...] = (
    "depositId",
    "depositTimestamp",
    "recipient",
    "l2Sender",
    "l1Token",
    "amount",
    "realizedFee",
    "maxFee",
    "relayer",
    "depositContract",
)


class AncillaryDataEncoder:
    """Builds and parses ``key:value`` ancillary data payloads."""

    @staticmethod
    def format_uint(value: int) -> bytes:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInputError(f"Ancillary integer must be a non-negative int, got {value!r}")
        return str(value).encode()

    @staticmethod
    def format_address(value: str) -> bytes:
        if not isinstance(value, str) or not Web3.is_address(value):
            raise InvalidInputError(f"Ancillary address is invalid: {value!r}")
        return value.lower().removeprefix("0x").encode()

    @staticmethod
    def append_key_value(current: bytes, key: str, value: bytes) -> bytes:
        """
        Append one ``key:value`` pair, comma-separated from existing content.

        Args:
            current: Payload built so far (may be empty)
            key: Key name
            value: Already formatted value bytes

        Returns:
            The extended payload
        """
        prefix = b"," if current else b""
        return current + prefix + key.encode() + b":" + value

    @classmethod
    def append_key_value_uint(cls, current: bytes, key: str, value: int) -> bytes:
        return cls.append_key_value(current, key, cls.format_uint(value))

    @classmethod
    def append_key_value_address(cls, current: bytes, key: str, value: str) -> bytes:
        return cls.append_key_value(current, key, cls.format_address(value))

    @classmethod
    def encode_relay(cls, relay_data: RelayData, deposit_contract: str) -> HexBytes:
        """
        Serialize relay parameters into the oracle's dispute payload.

        Args:
            relay_data: The relay being proposed
            deposit_contract: Address of the L2 deposit contract

        Returns:
            Canonical ancillary data bytes
        """
        data = b""
        data = cls.append_key_value_uint(data, "depositId", relay_data.deposit_id)
        data = cls.append_key_value_uint(data, "depositTimestamp", relay_data.deposit_timestamp)
        data = cls.append_key_value_address(data, "recipient", relay_data.recipient)
        data = cls.append_key_value_address(data, "l2Sender", relay_data.l2_sender)
        data = cls.append_key_value_address(data, "l1Token", relay_data.l1_token)
        data = cls.append_key_value_uint(data, "amount", relay_data.amount)
        data = cls.append_key_value_uint(data, "realizedFee", relay_data.realized_fee)
        data = cls.append_key_value_uint(data, "maxFee", relay_data.max_fee)
        data = cls.append_key_value_address(data, "relayer", relay_data.relayer)
        data = cls.append_key_value_address(data, "depositContract", deposit_contract)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Encoded ancillary data for deposit {relay_data.deposit_id}: {data.decode()}")

        return HexBytes(data)

    @staticmethod
    def decode(data: bytes) -> dict[str, str]:
        """
        Parse a ``key:value`` payload back into a dictionary.

        Raises:
            InvalidInputError: If a pair has no ``:`` separator or a key repeats
        """
        pairs: dict[str, str] = {}
        if not data:
            return pairs

        try:
            text = bytes(data).decode()
        except UnicodeDecodeError:
            raise InvalidInputError("Ancillary data is not valid UTF-8") from None

        for item in text.split(","):
            key, sep, value = item.partition(":")
            if not sep or not key:
                raise InvalidInputError(f"Malformed ancillary data pair: {item!r}")
            if key in pairs:
                raise InvalidInputError(f"Duplicate ancillary data key: {key}")
            pairs[key] = value
        return pairs

    @classmethod
    def deposit_id_of(cls, data: bytes) -> int:
        """Recover the deposit id from relay ancillary data."""
        value = cls.decode(data).get("depositId")
        if value is None or not value.isdigit():
            raise InvalidInputError("Ancillary data carries no depositId")
        return int(value)


def encode_relay_ancillary_data(relay_data: RelayData, deposit_contract: str) -> HexBytes:
    return AncillaryDataEncoder.encode_relay(relay_data, deposit_contract)


def decode_ancillary_data(data: bytes) -> dict[str, str]:
    return AncillaryDataEncoder.decode(data)
