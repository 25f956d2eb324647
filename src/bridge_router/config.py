"""Configuration management for the bridge router.

This module provides frozen configuration dataclasses with validation. Values
are loaded from environment variables with sensible defaults where a
deployment can run without them.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar

from web3 import Web3

from .optimistic_oracle import MAX_LIVENESS

logger = logging.getLogger(__name__)

FIXED_POINT_ONE = 10**18
DEFAULT_SLASH_PER_TOKEN = 1_600_000_000_000_000  # 0.16%


def _checksum_field(instance: object, name: str, label: str, env_var: str) -> None:
    """Validate an address attribute of a frozen dataclass and store it checksummed."""
    value = getattr(instance, name)
    if not value:
        raise ValueError(f"{label} is required ({env_var})")
    if not Web3.is_address(value):
        raise ValueError(f"Invalid {label}: {value}")
    checksummed = Web3.to_checksum_address(value)
    if checksummed != value:
        object.__setattr__(instance, name, checksummed)


@dataclass(frozen=True, slots=True)
class OracleSettings:
    """Optimistic oracle parameters used for every relay.

    Attributes:
        identifier: Price identifier relays are requested under
        liveness: Challenge window in seconds
        proposed_price: Value proposed for a valid relay
    """

    identifier: str = "IS_RELAY_VALID"
    liveness: int = 7200
    proposed_price: int = FIXED_POINT_ONE

    def __post_init__(self) -> None:
        if not self.identifier or len(self.identifier.encode()) > 32:
            raise ValueError(f"Price identifier must be 1-32 bytes, got {self.identifier!r}")
        if self.liveness <= 0:
            raise ValueError(f"Liveness must be positive, got {self.liveness}")
        if self.liveness >= MAX_LIVENESS:
            raise ValueError(f"Liveness too long (max 5200 weeks), got {self.liveness}")


@dataclass(frozen=True, slots=True)
class EscalationSettings:
    superbond: int = 0
    superbond_currency: str | None = None

    def __post_init__(self) -> None:
        if self.superbond < 0:
            raise ValueError(f"Superbond must be non-negative, got {self.superbond}")
        if self.superbond_currency is not None:
            _checksum_field(self, "superbond_currency", "superbond currency", "SUPERBOND_CURRENCY")

    @classmethod
    def from_env(cls) -> "EscalationSettings":
        return cls(
            superbond=int(os.environ.get("SUPERBOND", "0")),
            superbond_currency=os.environ.get("SUPERBOND_CURRENCY") or None,
        )


@dataclass(frozen=True, slots=True)
class SlashingSettings:
    """Fixed slash rates, 1e18 fixed point fractions of stake."""

    base_slash_per_token: int = DEFAULT_SLASH_PER_TOKEN
    governance_slash_per_token: int = DEFAULT_SLASH_PER_TOKEN

    def __post_init__(self) -> None:
        for name in ("base_slash_per_token", "governance_slash_per_token"):
            value = getattr(self, name)
            if not 0 <= value <= FIXED_POINT_ONE:
                raise ValueError(f"{name} must be within [0, 1e18], got {value}")

    @classmethod
    def from_env(cls) -> "SlashingSettings":
        return cls(
            base_slash_per_token=int(os.environ.get("BASE_SLASH_PER_TOKEN", DEFAULT_SLASH_PER_TOKEN)),
            governance_slash_per_token=int(os.environ.get("GOVERNANCE_SLASH_PER_TOKEN", DEFAULT_SLASH_PER_TOKEN)),
        )


@dataclass(frozen=True, slots=True)
class MessengerSettings:
    url: str | None = None
    gas_limit: int = 5_000_000
    timeout: int = 30

    MAX_GAS_LIMIT: ClassVar[int] = 30_000_000

    def __post_init__(self) -> None:
        if self.url and not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid messenger URL scheme: {self.url}. Expected http or https")
        if not 0 < self.gas_limit <= self.MAX_GAS_LIMIT:
            raise ValueError(f"Messenger gas limit must be within (0, {self.MAX_GAS_LIMIT}], got {self.gas_limit}")
        if not 0 < self.timeout <= 120:
            raise ValueError(f"Messenger timeout must be within (0, 120], got {self.timeout}")


@dataclass(frozen=True, slots=True)
class BridgeRouterConfig:
    """Main configuration for a bridge router deployment.

    Attributes:
        owner: Address allowed to whitelist tokens and pause deposits
        deposit_contract: Address of the L2 deposit contract
        oracle: Optimistic oracle parameters
        escalation: Superbond escalation parameters
        slashing: Slashing library rates
        messenger: Cross-domain messenger settings
    """

    owner: str
    deposit_contract: str
    oracle: OracleSettings = field(default_factory=OracleSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    slashing: SlashingSettings = field(default_factory=SlashingSettings)
    messenger: MessengerSettings = field(default_factory=MessengerSettings)

    def __post_init__(self) -> None:
        _checksum_field(self, "owner", "Owner address", "BRIDGE_OWNER_ADDRESS")
        _checksum_field(self, "deposit_contract", "Deposit contract address", "DEPOSIT_CONTRACT_ADDRESS")

    @classmethod
    def from_env(cls) -> "BridgeRouterConfig":
        """Load configuration from environment variables.

        Returns:
            BridgeRouterConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        owner = os.environ.get("BRIDGE_OWNER_ADDRESS", "")
        if not owner:
            raise ValueError(
                "BRIDGE_OWNER_ADDRESS environment variable is required. "
                "This is the account allowed to whitelist tokens."
            )

        deposit_contract = os.environ.get("DEPOSIT_CONTRACT_ADDRESS", "")
        if not deposit_contract:
            raise ValueError(
                "DEPOSIT_CONTRACT_ADDRESS environment variable is required. "
                "This should be the L2 deposit contract address."
            )

        oracle = OracleSettings(
            identifier=os.environ.get("PRICE_IDENTIFIER", "IS_RELAY_VALID"),
            liveness=int(os.environ.get("OPTIMISTIC_ORACLE_LIVENESS", "7200")),
        )
        escalation = EscalationSettings.from_env()
        slashing = SlashingSettings.from_env()
        messenger = MessengerSettings(
            url=os.environ.get("MESSENGER_URL") or None,
            gas_limit=int(os.environ.get("MESSENGER_GAS_LIMIT", "5000000")),
        )

        return cls(
            owner=owner,
            deposit_contract=deposit_contract,
            oracle=oracle,
            escalation=escalation,
            slashing=slashing,
            messenger=messenger,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Bridge Router Configuration")
        logger.info("=" * 60)

        logger.info(f"  Owner: {self.owner}")
        logger.info(f"  Deposit Contract (L2): {self.deposit_contract}")

        logger.info("Optimistic Oracle:")
        logger.info(f"  Identifier: {self.oracle.identifier}")
        logger.info(f"  Liveness: {self.oracle.liveness} seconds")

        logger.info("Escalation:")
        logger.info(f"  Superbond: {self.escalation.superbond}")
        logger.info(f"  Superbond Currency: {self.escalation.superbond_currency or '[NOT SET]'}")

        logger.info("Slashing:")
        logger.info(f"  Base Slash Per Token: {self.slashing.base_slash_per_token}")
        logger.info(f"  Governance Slash Per Token: {self.slashing.governance_slash_per_token}")

        logger.info("Messenger:")
        logger.info(f"  URL: {self.messenger.url or '[IN-MEMORY]'}")
        logger.info(f"  Gas Limit: {self.messenger.gas_limit}")

        logger.info("=" * 60)
