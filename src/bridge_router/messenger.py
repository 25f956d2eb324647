"""
Cross-domain messaging boundary.

The router sends administrative calls (token whitelisting, deposit pausing)
to the L2 deposit contract through a messenger. ``InMemoryMessenger`` records
messages for simulations and tests; ``HttpMessenger`` hands them to an
external relay service over HTTP.
"""

import codecs
import logging
from typing import Any, Protocol

import cbor2
import httpx
from eth_abi import encode
from web3 import Web3

from .errors import ExternalDependencyUnavailableError
from .ledger import Snapshottable
from .models import CrossDomainMessage
from .utils.address_utility import to_checksum

logger = logging.getLogger(__name__)


def encode_call(signature: str, arg_types: list[str], args: list[Any]) -> bytes:
    """
    ABI-encode a contract call: 4-byte selector followed by the arguments.

    Args:
        signature: Canonical function signature, e.g. ``whitelistToken(address,address)``
        arg_types: ABI types of the arguments
        args: Argument values
    """
    selector = Web3.keccak(text=signature)[:4]
    return bytes(selector) + encode(arg_types, args)


class CrossDomainMessenger(Protocol):
    def send_cross_domain_message(self, target: str, gas_limit: int, payload: bytes) -> None: ...


class InMemoryMessenger(Snapshottable):
    """Messenger that keeps every message it is asked to send."""

    LOG_FIELDS = ("messages",)

    def __init__(self, sender: str = "") -> None:
        self.sender = sender
        self.messages: list[CrossDomainMessage] = []

    def send_cross_domain_message(self, target: str, gas_limit: int, payload: bytes) -> None:
        message = CrossDomainMessage(
            target=to_checksum(target, "message target"),
            gas_limit=gas_limit,
            payload=bytes(payload),
            sender=self.sender,
        )
        self.messages.append(message)
        logger.debug(f"Queued cross-domain message to {message.target} ({len(message.payload)} bytes)")


class HttpMessenger:
    """
    Messenger backed by an HTTP relay service.

    Messages are posted as JSON; the service answers with a hex-encoded CBOR
    document holding either ``ok`` or ``error``.
    """

    SEND_PATH = "/v1/messages/send"

    def __init__(self, url: str, timeout: float = 30.0, transport: httpx.BaseTransport | None = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
                response = client.post(self.url + path, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise ExternalDependencyUnavailableError(f"Messenger service unavailable: {e}") from e

    @staticmethod
    def _decode_cbor_response(response_hex: str) -> dict[str, Any]:
        """
        Decode the service's hex-encoded CBOR answer.

        Raises:
            ExternalDependencyUnavailableError: If the answer cannot be decoded
        """
        try:
            data_bytes = codecs.decode(response_hex, "hex")
            decoded = cbor2.loads(data_bytes)
        except (ValueError, cbor2.CBORDecodeError) as e:
            raise ExternalDependencyUnavailableError(f"Undecodable messenger response: {e}") from e
        logger.debug(f"Decoded CBOR: {decoded}")
        return decoded if isinstance(decoded, dict) else {"data": decoded}

    def send_cross_domain_message(self, target: str, gas_limit: int, payload: bytes) -> None:
        body = {
            "target": to_checksum(target, "message target"),
            "gas_limit": gas_limit,
            "data": bytes(payload).hex(),
        }
        response = self._post(self.SEND_PATH, body)
        if "data" not in response:
            raise ExternalDependencyUnavailableError(f"Messenger response has no data: {response}")
        decoded = self._decode_cbor_response(response["data"])

        if "ok" in decoded:
            logger.info(f"Cross-domain message to {body['target']} accepted")
            return
        if "error" in decoded:
            raise ExternalDependencyUnavailableError(f"Cross-domain message rejected: {decoded['error']}")
        raise ExternalDependencyUnavailableError(f"Unknown messenger response format: {decoded}")
