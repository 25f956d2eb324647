#!/usr/bin/env python3
"""Command line entry point for the bridge router.

Provides configuration inspection, ancillary data encoding, slashing
calculations, escalation policy checks and an in-memory relay simulation.
"""

import argparse
import dataclasses
import json
import logging
import os
import sys

from dotenv import load_dotenv


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from eth_account import Account
from web3 import Web3

from bridge_router import (
    AddressWhitelist,
    Assertion,
    BridgePool,
    BridgeRouter,
    BridgeRouterConfig,
    BridgeRouterError,
    EscalationSettings,
    Finder,
    FixedSlashSlashingLibrary,
    HttpMessenger,
    IdentifierWhitelist,
    InMemoryMessenger,
    MockDataVerificationMechanism,
    OptimisticOracle,
    OracleInterfaces,
    RelayData,
    RelayEventIndexer,
    SlashingSettings,
    Store,
    SuperbondEscalationManager,
    TokenLedger,
    VoteOutcome,
    apply_slashing,
    decode_ancillary_data,
    encode_relay_ancillary_data,
)
from bridge_router.config import MessengerSettings
from bridge_router.utils import ManualTimer


def demo_account(label: str) -> str:
    """Deterministic demo account derived from a label."""
    return Account.from_key(Web3.keccak(text=label)).address


def cmd_show_config(args: argparse.Namespace) -> None:
    config = BridgeRouterConfig.from_env()
    config.log_config()


def cmd_encode_ancillary(args: argparse.Namespace) -> None:
    relay_data = RelayData(
        deposit_id=args.deposit_id,
        deposit_timestamp=args.deposit_timestamp,
        recipient=args.recipient,
        l2_sender=args.l2_sender,
        l1_token=args.l1_token,
        amount=args.amount,
        realized_fee=args.realized_fee,
        max_fee=args.max_fee,
        relayer=args.relayer,
    )
    ancillary_data = encode_relay_ancillary_data(relay_data, args.deposit_contract)
    print(ancillary_data.to_0x_hex())
    if args.decode:
        print(json.dumps(decode_ancillary_data(ancillary_data), indent=2))


def cmd_slashing(args: argparse.Namespace) -> None:
    """Slash or reward voters given as ``voter=stake:outcome`` entries."""
    stakes: dict[str, int] = {}
    outcomes: dict[str, VoteOutcome] = {}
    for entry in args.votes:
        voter, _, rest = entry.partition("=")
        stake, _, outcome = rest.partition(":")
        if not voter or not stake.isdigit():
            raise ValueError(f"Invalid vote entry {entry!r}, expected voter=stake[:outcome]")
        stakes[voter] = int(stake)
        if outcome:
            outcomes[voter] = VoteOutcome(outcome)

    settings = SlashingSettings.from_env()
    overrides = {
        name: value
        for name, value in (
            ("base_slash_per_token", args.base_slash_per_token),
            ("governance_slash_per_token", args.governance_slash_per_token),
        )
        if value is not None
    }
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    library = FixedSlashSlashingLibrary.from_settings(settings)
    changes = apply_slashing(library, stakes, outcomes, is_governance=args.governance)
    print(json.dumps(changes, indent=2))


class SingleAssertion:
    """Assertion source answering with one assertion given on the command line."""

    def __init__(self, assertion: Assertion):
        self.assertion = assertion

    def get_assertion(self, assertion_id: bytes) -> Assertion:
        return self.assertion


def cmd_assertion_policy(args: argparse.Namespace) -> None:
    """Show how the configured escalation manager arbitrates an assertion."""
    assertion = Assertion(
        assertion_id=bytes(32),
        asserter=args.asserter,
        currency=args.currency,
        bond=args.bond,
    )
    settings = EscalationSettings.from_env()
    manager = SuperbondEscalationManager.from_settings(args.asserter, SingleAssertion(assertion), settings)
    policy = manager.get_assertion_policy(assertion.assertion_id)
    print(json.dumps(dataclasses.asdict(policy), indent=2))


def cmd_simulate(args: argparse.Namespace) -> None:
    """Run one relay through request, liveness and finalization in memory."""
    owner = demo_account("owner")
    relayer = demo_account("relayer")
    provider = demo_account("liquidity-provider")
    recipient = demo_account("recipient")
    l1_token = demo_account("l1-token")
    l2_token = demo_account("l2-token")

    config = BridgeRouterConfig(
        owner=owner,
        deposit_contract=demo_account("deposit-contract"),
        messenger=MessengerSettings(url=os.environ.get("MESSENGER_URL") or None),
    )
    config.log_config()

    timer = ManualTimer()
    ledger = TokenLedger()
    finder = Finder()
    identifiers = IdentifierWhitelist()
    identifiers.add_supported_identifier(config.oracle.identifier)
    collateral = AddressWhitelist()
    collateral.add_to_whitelist(l1_token)
    store = Store()
    store.set_final_fee(l1_token, args.final_fee)
    oracle = OptimisticOracle(finder, ledger, timer)
    for interface, implementation in (
        (OracleInterfaces.IDENTIFIER_WHITELIST, identifiers),
        (OracleInterfaces.COLLATERAL_WHITELIST, collateral),
        (OracleInterfaces.STORE, store),
        (OracleInterfaces.OPTIMISTIC_ORACLE, oracle),
        (OracleInterfaces.ORACLE, MockDataVerificationMechanism()),
    ):
        finder.change_implementation_address(interface, implementation)

    if config.messenger.url:
        messenger = HttpMessenger(config.messenger.url, timeout=config.messenger.timeout)
    else:
        messenger = InMemoryMessenger()
    router = BridgeRouter(config, finder, ledger, messenger, timer)
    indexer = RelayEventIndexer()
    router.subscribe(indexer)

    pool = BridgePool(l1_token, ledger)
    ledger.mint(l1_token, provider, args.amount * 10)
    ledger.approve(l1_token, provider, pool.address, args.amount * 10)
    pool.deposit(provider, args.amount * 10)
    router.whitelist_token(owner, l1_token, l2_token, pool, args.reward, args.bond)

    ledger.mint(l1_token, relayer, args.reward + args.bond + args.final_fee)
    ledger.approve(l1_token, relayer, router.address, args.reward + args.bond + args.final_fee)
    router.relay_deposit(
        relayer, 1, timer.get_current_time(), recipient, demo_account("l2-sender"),
        l1_token, args.amount, args.realized_fee, args.max_fee,
    )
    timer.advance(config.oracle.liveness)
    router.finalize_relay(relayer, 1)

    logger.info(f"Recipient balance: {ledger.balance_of(l1_token, recipient)}")
    logger.info(f"Relayer balance: {ledger.balance_of(l1_token, relayer)}")
    print(json.dumps(indexer.get_stats(), indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bridge Router - optimistic relays of L2 deposits into L1",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  BRIDGE_OWNER_ADDRESS       - Account allowed to whitelist tokens
  DEPOSIT_CONTRACT_ADDRESS   - L2 deposit contract address
  PRICE_IDENTIFIER           - Oracle identifier (default: IS_RELAY_VALID)
  OPTIMISTIC_ORACLE_LIVENESS - Liveness in seconds (default: 7200)
  SUPERBOND / SUPERBOND_CURRENCY - Escalation threshold
  BASE_SLASH_PER_TOKEN / GOVERNANCE_SLASH_PER_TOKEN - Slash rates (1e18 fixed point)
  MESSENGER_URL / MESSENGER_GAS_LIMIT - Cross-domain messenger
  LOG_LEVEL                  - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    show_config = subparsers.add_parser("show-config", help="Load and log configuration from the environment")
    show_config.set_defaults(func=cmd_show_config)

    encode = subparsers.add_parser("encode-ancillary", help="Encode relay ancillary data")
    encode.add_argument("--deposit-id", type=int, required=True)
    encode.add_argument("--deposit-timestamp", type=int, required=True)
    encode.add_argument("--recipient", required=True)
    encode.add_argument("--l2-sender", required=True)
    encode.add_argument("--l1-token", required=True)
    encode.add_argument("--amount", type=int, required=True)
    encode.add_argument("--realized-fee", type=int, required=True)
    encode.add_argument("--max-fee", type=int, required=True)
    encode.add_argument("--relayer", required=True)
    encode.add_argument("--deposit-contract", required=True)
    encode.add_argument("--decode", action="store_true", help="Also print the decoded key/value pairs")
    encode.set_defaults(func=cmd_encode_ancillary)

    slashing = subparsers.add_parser("slashing", help="Compute slashing for one resolved request")
    slashing.add_argument("votes", nargs="+", help="voter=stake[:correct|wrong|no_vote]")
    slashing.add_argument("--base-slash-per-token", type=int, help="Overrides BASE_SLASH_PER_TOKEN")
    slashing.add_argument("--governance-slash-per-token", type=int, help="Overrides GOVERNANCE_SLASH_PER_TOKEN")
    slashing.add_argument("--governance", action="store_true", help="Treat the request as a governance vote")
    slashing.set_defaults(func=cmd_slashing)

    policy = subparsers.add_parser("assertion-policy", help="Check whether an assertion exceeds the superbond")
    policy.add_argument("--asserter", required=True)
    policy.add_argument("--currency", required=True)
    policy.add_argument("--bond", type=int, required=True)
    policy.set_defaults(func=cmd_assertion_policy)

    simulate = subparsers.add_parser("simulate", help="Relay and finalize one deposit in memory")
    simulate.add_argument("--amount", type=int, default=1000)
    simulate.add_argument("--realized-fee", type=int, default=40)
    simulate.add_argument("--max-fee", type=int, default=50)
    simulate.add_argument("--reward", type=int, default=10)
    simulate.add_argument("--bond", type=int, default=100)
    simulate.add_argument("--final-fee", type=int, default=5)
    simulate.set_defaults(func=cmd_simulate)

    return parser


def main() -> None:
    """Main entry point for the bridge router CLI.

    Raises:
        SystemExit: On configuration or protocol errors
    """
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args()
    setup_logging(args.log_level)

    try:
        args.func(args)
    except BridgeRouterError as e:
        logger.error(f"Protocol error: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - BRIDGE_OWNER_ADDRESS: Account allowed to whitelist tokens")
        logger.error("  - DEPOSIT_CONTRACT_ADDRESS: L2 deposit contract address")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
