"""Optimistic relay router for L2 to L1 deposits."""

from .ancillary_data import AncillaryDataEncoder, decode_ancillary_data, encode_relay_ancillary_data
from .bridge_pool import BridgePool
from .bridge_router import BridgeRouter
from .config import BridgeRouterConfig, EscalationSettings, SlashingSettings
from .errors import (
    BridgeRouterError,
    ConflictError,
    ExternalDependencyUnavailableError,
    InsufficientAuthorizationError,
    InvalidInputError,
    InvalidStateError,
)
from .escalation_manager import SuperbondEscalationManager
from .event_indexer import RelayEventIndexer
from .ledger import TokenLedger, atomic
from .messenger import HttpMessenger, InMemoryMessenger
from .models import Assertion, Deposit, DepositState, DepositType, RelayData, TokenRelationship
from .optimistic_oracle import MockDataVerificationMechanism, OptimisticOracle, RequestState
from .registry import AddressWhitelist, Finder, IdentifierWhitelist, OracleInterfaces, Store
from .slashing import FixedSlashSlashingLibrary, VoteOutcome, apply_slashing

__version__ = "0.1.0"

__all__ = [
    "AddressWhitelist",
    "AncillaryDataEncoder",
    "Assertion",
    "BridgePool",
    "BridgeRouter",
    "BridgeRouterConfig",
    "BridgeRouterError",
    "ConflictError",
    "Deposit",
    "DepositState",
    "DepositType",
    "EscalationSettings",
    "ExternalDependencyUnavailableError",
    "Finder",
    "FixedSlashSlashingLibrary",
    "HttpMessenger",
    "IdentifierWhitelist",
    "InMemoryMessenger",
    "InsufficientAuthorizationError",
    "InvalidInputError",
    "InvalidStateError",
    "MockDataVerificationMechanism",
    "OptimisticOracle",
    "OracleInterfaces",
    "RelayData",
    "RelayEventIndexer",
    "RequestState",
    "SlashingSettings",
    "Store",
    "SuperbondEscalationManager",
    "TokenLedger",
    "TokenRelationship",
    "VoteOutcome",
    "apply_slashing",
    "atomic",
    "decode_ancillary_data",
    "encode_relay_ancillary_data",
]
