"""Shared fixtures: a fully wired in-memory deployment."""

from types import SimpleNamespace

import pytest
from eth_account import Account

from bridge_router.bridge_pool import BridgePool
from bridge_router.bridge_router import BridgeRouter
from bridge_router.config import BridgeRouterConfig
from bridge_router.event_indexer import RelayEventIndexer
from bridge_router.ledger import TokenLedger
from bridge_router.messenger import InMemoryMessenger
from bridge_router.optimistic_oracle import MockDataVerificationMechanism, OptimisticOracle
from bridge_router.registry import AddressWhitelist, Finder, IdentifierWhitelist, OracleInterfaces, Store
from bridge_router.utils.timer import ManualTimer

AMOUNT = 1000
REALIZED_FEE = 40
MAX_FEE = 50
PROPOSER_REWARD = 10
PROPOSER_BOND = 100
FINAL_FEE = 5
TOTAL_BOND = PROPOSER_BOND + FINAL_FEE
STARTING_BALANCE = 10_000
POOL_LIQUIDITY = 100_000
LIVENESS = 7200
DEPOSIT_TIMESTAMP = 1_699_999_000


def account(index: int) -> str:
    return Account.from_key(index.to_bytes(32, "big")).address


@pytest.fixture
def accounts():
    """Deterministic test accounts."""
    return SimpleNamespace(
        owner=account(1),
        relayer=account(2),
        other_relayer=account(3),
        instant_relayer=account(4),
        disputer=account(5),
        recipient=account(6),
        l2_sender=account(7),
        provider=account(8),
        l1_token=account(9),
        l2_token=account(10),
        deposit_contract=account(11),
    )


@pytest.fixture
def config(accounts):
    return BridgeRouterConfig(owner=accounts.owner, deposit_contract=accounts.deposit_contract)


@pytest.fixture
def deployment(accounts, config):
    """Router, oracle, DVM, registry and a funded, whitelisted token pool."""
    timer = ManualTimer()
    ledger = TokenLedger()
    finder = Finder()

    identifiers = IdentifierWhitelist()
    identifiers.add_supported_identifier(config.oracle.identifier)
    collateral = AddressWhitelist()
    collateral.add_to_whitelist(accounts.l1_token)
    store = Store()
    store.set_final_fee(accounts.l1_token, FINAL_FEE)
    oracle = OptimisticOracle(finder, ledger, timer)
    dvm = MockDataVerificationMechanism()

    finder.change_implementation_address(OracleInterfaces.IDENTIFIER_WHITELIST, identifiers)
    finder.change_implementation_address(OracleInterfaces.COLLATERAL_WHITELIST, collateral)
    finder.change_implementation_address(OracleInterfaces.STORE, store)
    finder.change_implementation_address(OracleInterfaces.OPTIMISTIC_ORACLE, oracle)
    finder.change_implementation_address(OracleInterfaces.ORACLE, dvm)

    messenger = InMemoryMessenger()
    router = BridgeRouter(config, finder, ledger, messenger, timer)
    indexer = RelayEventIndexer()
    router.subscribe(indexer)

    pool = BridgePool(accounts.l1_token, ledger)
    ledger.mint(accounts.l1_token, accounts.provider, POOL_LIQUIDITY)
    ledger.approve(accounts.l1_token, accounts.provider, pool.address, POOL_LIQUIDITY)
    pool.deposit(accounts.provider, POOL_LIQUIDITY)
    router.whitelist_token(accounts.owner, accounts.l1_token, accounts.l2_token, pool, PROPOSER_REWARD, PROPOSER_BOND)

    for funded in (accounts.relayer, accounts.other_relayer, accounts.instant_relayer, accounts.disputer):
        ledger.mint(accounts.l1_token, funded, STARTING_BALANCE)
        ledger.approve(accounts.l1_token, funded, router.address, STARTING_BALANCE)

    return SimpleNamespace(
        timer=timer,
        ledger=ledger,
        finder=finder,
        identifiers=identifiers,
        collateral=collateral,
        store=store,
        oracle=oracle,
        dvm=dvm,
        messenger=messenger,
        router=router,
        indexer=indexer,
        pool=pool,
        token=accounts.l1_token,
    )


@pytest.fixture
def relay(deployment, accounts):
    """Submit a relay for deposit 1 with overridable parameters."""

    def _relay(relayer=None, deposit_id=1, **overrides):
        params = dict(
            deposit_timestamp=DEPOSIT_TIMESTAMP,
            recipient=accounts.recipient,
            l2_sender=accounts.l2_sender,
            l1_token=accounts.l1_token,
            amount=AMOUNT,
            realized_fee=REALIZED_FEE,
            max_fee=MAX_FEE,
        )
        params.update(overrides)
        return deployment.router.relay_deposit(relayer or accounts.relayer, deposit_id, **params)

    return _relay


@pytest.fixture
def resolve_dispute(deployment):
    """Push a DVM answer for a disputed relay record."""

    def _resolve(deposit, price):
        stamped = deployment.oracle.stamp_ancillary_data(deposit.ancillary_data, deployment.router.address)
        deployment.dvm.push_price(deployment.router.identifier, deposit.price_request_time, stamped, price)

    return _resolve
