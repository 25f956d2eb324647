"""Tests for the relay lifecycle in BridgeRouter."""

import dataclasses
import logging

import pytest
from eth_abi import decode
from web3 import Web3

from bridge_router.ancillary_data import decode_ancillary_data
from bridge_router.errors import (
    ConflictError,
    ExternalDependencyUnavailableError,
    InsufficientAuthorizationError,
    InvalidInputError,
    InvalidStateError,
)
from bridge_router.models import (
    DepositRelayed,
    DepositState,
    DepositType,
    DisputeSettled,
    RelayDisputed,
    RelayFinalized,
    RelaySpedUp,
    TokenWhitelisted,
)
from bridge_router.optimistic_oracle import RequestState
from bridge_router.registry import Finder, OracleInterfaces

from conftest import (
    AMOUNT,
    FINAL_FEE,
    LIVENESS,
    MAX_FEE,
    POOL_LIQUIDITY,
    PROPOSER_BOND,
    PROPOSER_REWARD,
    REALIZED_FEE,
    STARTING_BALANCE,
    TOTAL_BOND,
)

ACCEPTED = 10**18
# Proposer or disputer payout after a DVM resolution
DISPUTE_PAYOUT = 2 * PROPOSER_BOND - PROPOSER_BOND // 2 + FINAL_FEE + PROPOSER_REWARD


def balance(deployment, holder):
    return deployment.ledger.balance_of(deployment.token, holder)


def oracle_state(deployment, deposit):
    return deployment.router.oracle_adapter.get_state(
        deployment.router.identifier, deposit.price_request_time, deposit.ancillary_data
    )


class TestRelayDeposit:
    """Tests for submitting relays."""

    def test_relay_creates_pending_slow_deposit(self, deployment, accounts, relay):
        """A valid relay is stored PendingSlow with its ancillary data and proposal."""
        deposit = relay()

        stored = deployment.router.get_deposit(1)
        assert stored == deposit
        assert stored.state == DepositState.PENDING_SLOW
        assert stored.deposit_type == DepositType.SLOW
        assert stored.slow_relayer == accounts.relayer
        assert stored.instant_relayer is None
        assert stored.relay_data.amount == AMOUNT
        assert stored.relay_data.realized_fee == REALIZED_FEE
        assert stored.relay_data.max_fee == MAX_FEE
        assert stored.price_request_time == deployment.timer.get_current_time()

        fields = decode_ancillary_data(stored.ancillary_data)
        assert fields["depositId"] == "1"
        assert fields["relayer"] == accounts.relayer.lower()[2:]

        assert oracle_state(deployment, stored) == RequestState.PROPOSED
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE - PROPOSER_REWARD - TOTAL_BOND

    def test_relay_emits_event_with_every_field(self, deployment, accounts, relay):
        """DepositRelayed carries the relay data, ancillary data and bond."""
        deposit = relay()

        event = deployment.router.events[-1]
        assert isinstance(event, DepositRelayed)
        assert event.deposit_id == 1
        assert event.relay_data == deposit.relay_data
        assert event.relay_data.recipient == accounts.recipient
        assert event.relay_data.l2_sender == accounts.l2_sender
        assert event.relay_data.l1_token == accounts.l1_token
        assert event.ancillary_data == deposit.ancillary_data
        assert event.total_bond == TOTAL_BOND

    def test_second_relay_for_same_deposit_rejected(self, deployment, accounts, relay):
        """A second relayer cannot claim a deposit with a pending relay."""
        original = relay()

        with pytest.raises(ConflictError, match="Pending relay"):
            relay(relayer=accounts.other_relayer)

        assert deployment.router.get_deposit(1) == original
        assert balance(deployment, accounts.other_relayer) == STARTING_BALANCE

    def test_realized_fee_above_max_rejected(self, deployment, accounts, relay):
        """A realized fee above the max fee leaves the deposit Uninitialized."""
        events_before = list(deployment.router.events)

        with pytest.raises(InvalidInputError, match="realized fee"):
            relay(realized_fee=60, max_fee=50)

        assert deployment.router.get_deposit(1).state == DepositState.UNINITIALIZED
        assert deployment.router.events == events_before
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE

    def test_unsupported_identifier_rejected(self, deployment, relay):
        """Relays are refused once the identifier is removed from the whitelist."""
        deployment.identifiers.remove_supported_identifier(deployment.router.identifier)

        with pytest.raises(InvalidInputError, match="Identifier not registered"):
            relay()

    def test_unknown_token_rejected(self, deployment, accounts, relay):
        """Tokens never whitelisted on the router cannot be relayed."""
        with pytest.raises(InvalidInputError, match="Token not whitelisted"):
            relay(l1_token=accounts.l2_token)

    def test_token_removed_from_collateral_whitelist_rejected(self, deployment, accounts, relay):
        """The collateral whitelist is consulted on every relay."""
        deployment.collateral.remove_from_whitelist(accounts.l1_token)

        with pytest.raises(InvalidInputError, match="Token not whitelisted"):
            relay()

    def test_insufficient_allowance_rolls_back_everything(self, deployment, accounts, relay):
        """A failed bond pull leaves router, oracle and ledger untouched."""
        deployment.ledger.approve(deployment.token, accounts.relayer, deployment.router.address, PROPOSER_REWARD)
        events_before = list(deployment.router.events)

        with pytest.raises(InsufficientAuthorizationError, match="allowance"):
            relay()

        assert deployment.router.get_deposit(1).state == DepositState.UNINITIALIZED
        assert deployment.router.events == events_before
        assert deployment.oracle.requests == {}
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE
        assert balance(deployment, deployment.router.address) == 0
        assert deployment.ledger.allowance(
            deployment.token, accounts.relayer, deployment.router.address
        ) == PROPOSER_REWARD

    def test_missing_oracle_is_reported(self, deployment, relay, caplog):
        """An unresolvable oracle surfaces as ExternalDependencyUnavailable."""
        empty = Finder()
        empty.change_implementation_address(OracleInterfaces.IDENTIFIER_WHITELIST, deployment.identifiers)
        empty.change_implementation_address(OracleInterfaces.COLLATERAL_WHITELIST, deployment.collateral)
        deployment.router.finder = empty
        deployment.router.oracle_adapter.finder = empty

        with caplog.at_level(logging.DEBUG, logger="bridge_router.bridge_router"):
            with pytest.raises(ExternalDependencyUnavailableError):
                relay()

        assert deployment.router.get_deposit(1).state == DepositState.UNINITIALIZED
        assert "OptimisticOracle not registered" in caplog.text


class TestSpeedUpRelay:
    """Tests for instant relays."""

    def test_speed_up_pays_recipient_immediately(self, deployment, accounts, relay):
        """The instant relayer pays amount minus fee and the record turns PendingInstant."""
        relay()

        sped_up = deployment.router.speed_up_relay(accounts.instant_relayer, 1)

        assert sped_up.state == DepositState.PENDING_INSTANT
        assert sped_up.deposit_type == DepositType.INSTANT
        assert sped_up.instant_relayer == accounts.instant_relayer
        assert sped_up.slow_relayer == accounts.relayer
        assert balance(deployment, accounts.recipient) == AMOUNT - REALIZED_FEE
        assert balance(deployment, accounts.instant_relayer) == STARTING_BALANCE - (AMOUNT - REALIZED_FEE)
        assert isinstance(deployment.router.events[-1], RelaySpedUp)

    def test_speed_up_twice_rejected(self, deployment, accounts, relay):
        relay()
        deployment.router.speed_up_relay(accounts.instant_relayer, 1)

        with pytest.raises(InvalidStateError, match="cannot be sped up"):
            deployment.router.speed_up_relay(accounts.other_relayer, 1)

    def test_speed_up_after_liveness_rejected(self, deployment, accounts, relay):
        """Once the proposal has expired the relay can only be finalized."""
        relay()
        deployment.timer.advance(LIVENESS)

        with pytest.raises(InvalidStateError, match="liveness window"):
            deployment.router.speed_up_relay(accounts.instant_relayer, 1)

    def test_speed_up_unknown_deposit_rejected(self, deployment, accounts):
        with pytest.raises(InvalidStateError):
            deployment.router.speed_up_relay(accounts.instant_relayer, 42)


class TestFinalizeRelay:
    """Tests for finalizing undisputed relays."""

    def test_finalize_before_liveness_rejected(self, deployment, accounts, relay):
        relay()
        deployment.timer.advance(LIVENESS - 1)

        with pytest.raises(InvalidStateError, match="has not passed liveness"):
            deployment.router.finalize_relay(accounts.owner, 1)

        assert deployment.router.get_deposit(1).state == DepositState.PENDING_SLOW

    def test_finalize_slow_relay(self, deployment, accounts, relay):
        """Recipient receives amount minus fee; slow relayer earns the fee and gets bond and reward."""
        relay()
        deployment.timer.advance(LIVENESS)

        finalized = deployment.router.finalize_relay(accounts.owner, 1)

        assert finalized.state == DepositState.FINALIZED_SLOW
        assert deployment.router.get_deposit(1) == finalized
        assert balance(deployment, accounts.recipient) == AMOUNT - REALIZED_FEE
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE + REALIZED_FEE
        assert deployment.pool.liquidity == POOL_LIQUIDITY - AMOUNT

        event = deployment.router.events[-1]
        assert isinstance(event, RelayFinalized)
        assert event.recipient_amount == AMOUNT - REALIZED_FEE
        assert event.relayer_payout == REALIZED_FEE
        assert event.caller == accounts.owner

    def test_finalize_instant_relay_reimburses_instant_relayer(self, deployment, accounts, relay):
        """After a speed-up the pool pays the full amount to the instant relayer."""
        relay()
        deployment.router.speed_up_relay(accounts.instant_relayer, 1)
        deployment.timer.advance(LIVENESS)

        finalized = deployment.router.finalize_relay(accounts.owner, 1)

        assert finalized.state == DepositState.FINALIZED_INSTANT
        assert balance(deployment, accounts.recipient) == AMOUNT - REALIZED_FEE
        assert balance(deployment, accounts.instant_relayer) == STARTING_BALANCE + REALIZED_FEE
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE

    def test_finalized_deposit_cannot_be_relayed_again(self, deployment, accounts, relay):
        relay()
        deployment.timer.advance(LIVENESS)
        deployment.router.finalize_relay(accounts.owner, 1)

        with pytest.raises(ConflictError):
            relay(relayer=accounts.other_relayer)
        with pytest.raises(InvalidStateError):
            deployment.router.finalize_relay(accounts.owner, 1)

    def test_finalize_with_short_pool_rolls_back(self, deployment, accounts, relay):
        """A pool without liquidity fails the payout and the oracle stays unsettled."""
        relay()
        deployment.pool.withdraw(accounts.provider, POOL_LIQUIDITY - 500)
        deployment.timer.advance(LIVENESS)

        with pytest.raises(InsufficientAuthorizationError):
            deployment.router.finalize_relay(accounts.owner, 1)

        deposit = deployment.router.get_deposit(1)
        assert deposit.state == DepositState.PENDING_SLOW
        assert oracle_state(deployment, deposit) == RequestState.EXPIRED
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE - PROPOSER_REWARD - TOTAL_BOND
        assert deployment.pool.liquidity == 500

    def test_finalize_after_oracle_settled_directly(self, deployment, accounts, relay):
        """Anyone may settle the expired request on the oracle; the relay still finalizes."""
        deposit = relay()
        deployment.timer.advance(LIVENESS)
        deployment.oracle.settle(
            deployment.router.address, deployment.router.identifier, deposit.price_request_time, deposit.ancillary_data
        )
        assert oracle_state(deployment, deposit) == RequestState.SETTLED

        finalized = deployment.router.finalize_relay(accounts.owner, 1)

        assert finalized.state == DepositState.FINALIZED_SLOW
        assert balance(deployment, accounts.recipient) == AMOUNT - REALIZED_FEE
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE + REALIZED_FEE
        assert deployment.pool.liquidity == POOL_LIQUIDITY - AMOUNT


class TestDisputes:
    """Tests for disputing and settling relays."""

    def test_dispute_moves_record_to_disputed_mapping(self, deployment, accounts, relay):
        """The disputed record is stored unchanged under (deposit id, disputer)."""
        original = relay()

        moved = deployment.router.dispute_relay(accounts.disputer, 1)

        assert moved == original
        assert 1 not in deployment.router.deposits
        assert deployment.router.get_deposit(1).state == DepositState.UNINITIALIZED
        assert deployment.router.disputed_deposits[(1, accounts.disputer)] == original
        assert deployment.router.get_disputed_deposit(1, accounts.disputer) == original
        assert oracle_state(deployment, original) == RequestState.DISPUTED
        assert balance(deployment, deployment.store.address) == FINAL_FEE + PROPOSER_BOND // 2
        assert balance(deployment, accounts.disputer) == STARTING_BALANCE - TOTAL_BOND

        event = deployment.router.events[-1]
        assert isinstance(event, RelayDisputed)
        assert event.disputer == accounts.disputer
        assert event.slow_relayer == accounts.relayer

    def test_dispute_directly_on_oracle_triggers_callback(self, deployment, accounts, relay):
        """Disputes filed on the oracle itself reach the router through price_disputed."""
        original = relay()
        deployment.ledger.approve(deployment.token, accounts.disputer, deployment.oracle.address, TOTAL_BOND)

        deployment.oracle.dispute_price_for(
            accounts.disputer,
            accounts.disputer,
            deployment.router.address,
            deployment.router.identifier,
            original.price_request_time,
            original.ancillary_data,
        )

        assert deployment.router.get_disputed_deposit(1, accounts.disputer) == original
        assert deployment.indexer.status_of(1) == "DISPUTED"

    def test_dispute_without_bond_rolls_back(self, deployment, accounts, relay):
        original = relay()
        deployment.ledger.approve(deployment.token, accounts.disputer, deployment.router.address, 0)

        with pytest.raises(InsufficientAuthorizationError):
            deployment.router.dispute_relay(accounts.disputer, 1)

        assert deployment.router.get_deposit(1) == original
        assert deployment.router.disputed_deposits == {}
        assert oracle_state(deployment, original) == RequestState.PROPOSED

    def test_dispute_after_liveness_rejected(self, deployment, accounts, relay):
        relay()
        deployment.timer.advance(LIVENESS)

        with pytest.raises(InvalidStateError):
            deployment.router.dispute_relay(accounts.disputer, 1)

    def test_disputing_relayer_blocked_from_relaying_same_deposit(self, deployment, accounts, relay):
        """A relayer holding an open dispute on a deposit cannot relay it."""
        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        deployment.ledger.mint(deployment.token, accounts.disputer, STARTING_BALANCE)
        deployment.ledger.approve(deployment.token, accounts.disputer, deployment.router.address, STARTING_BALANCE)

        with pytest.raises(ConflictError, match="Pending dispute"):
            relay(relayer=accounts.disputer)

    def test_other_relayer_can_relay_while_dispute_pending(self, deployment, accounts, relay):
        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)

        replacement = relay(relayer=accounts.other_relayer)

        assert replacement.state == DepositState.PENDING_SLOW
        assert deployment.router.get_deposit(1).slow_relayer == accounts.other_relayer

    def test_settle_before_resolution_rejected(self, deployment, accounts, relay):
        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)

        with pytest.raises(InvalidStateError, match="not resolved"):
            deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)

    def test_failed_dispute_pays_out_relay(self, deployment, accounts, relay, resolve_dispute):
        """An accepted price means the relay was valid: it is finalized and paid."""
        original = relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        resolve_dispute(original, ACCEPTED)

        successful = deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)

        assert successful is False
        assert deployment.router.get_deposit(1).state == DepositState.FINALIZED_SLOW
        assert (1, accounts.disputer) not in deployment.router.disputed_deposits
        assert balance(deployment, accounts.recipient) == AMOUNT - REALIZED_FEE
        assert balance(deployment, accounts.relayer) == (
            STARTING_BALANCE - PROPOSER_REWARD - TOTAL_BOND + DISPUTE_PAYOUT + REALIZED_FEE
        )
        assert balance(deployment, accounts.disputer) == STARTING_BALANCE - TOTAL_BOND

        event = deployment.router.events[-1]
        assert isinstance(event, DisputeSettled)
        assert event.dispute_successful is False
        assert event.relay_paid_out is True

    def test_successful_dispute_frees_deposit_id(self, deployment, accounts, relay, resolve_dispute):
        """A rejected price pays the disputer and lets the deposit be relayed again."""
        original = relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        resolve_dispute(original, 0)

        successful = deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)

        assert successful is True
        assert deployment.router.get_deposit(1).state == DepositState.UNINITIALIZED
        assert deployment.router.disputed_deposits == {}
        assert balance(deployment, accounts.disputer) == STARTING_BALANCE - TOTAL_BOND + DISPUTE_PAYOUT
        assert balance(deployment, accounts.recipient) == 0
        assert deployment.pool.liquidity == POOL_LIQUIDITY

        deployment.timer.advance(1)
        assert relay(relayer=accounts.other_relayer).state == DepositState.PENDING_SLOW

    def test_failed_dispute_does_not_pay_twice(self, deployment, accounts, relay, resolve_dispute):
        """When another relay has taken the id, a failed dispute does not pay the pool out again."""
        original = relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        relay(relayer=accounts.other_relayer)
        resolve_dispute(original, ACCEPTED)

        deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)

        assert deployment.router.get_deposit(1).slow_relayer == accounts.other_relayer
        assert deployment.router.get_deposit(1).state == DepositState.PENDING_SLOW
        assert deployment.pool.liquidity == POOL_LIQUIDITY
        assert deployment.router.events[-1].relay_paid_out is False

    def test_settle_after_oracle_settled_directly(self, deployment, accounts, relay, resolve_dispute):
        """A resolved dispute settled on the oracle first is still settled by the router, paying once."""
        original = relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        resolve_dispute(original, ACCEPTED)
        deployment.oracle.settle(
            deployment.router.address, deployment.router.identifier, original.price_request_time, original.ancillary_data
        )

        successful = deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)

        assert successful is False
        assert deployment.router.get_deposit(1).state == DepositState.FINALIZED_SLOW
        assert deployment.router.disputed_deposits == {}
        assert balance(deployment, accounts.relayer) == (
            STARTING_BALANCE - PROPOSER_REWARD - TOTAL_BOND + DISPUTE_PAYOUT + REALIZED_FEE
        )
        assert balance(deployment, accounts.disputer) == STARTING_BALANCE - TOTAL_BOND

    def test_rejected_dispute_callback_rolls_back_oracle(self, deployment, accounts, relay):
        """A second dispute by the same disputer is refused and the oracle request stays proposed."""
        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        replacement = relay(relayer=accounts.other_relayer)

        with pytest.raises(ConflictError, match="already has an open dispute"):
            deployment.router.dispute_relay(accounts.disputer, 1)

        assert deployment.router.get_deposit(1) == replacement
        assert oracle_state(deployment, replacement) == RequestState.PROPOSED
        assert balance(deployment, accounts.disputer) == STARTING_BALANCE - TOTAL_BOND
        assert balance(deployment, deployment.store.address) == FINAL_FEE + PROPOSER_BOND // 2

    def test_settle_unknown_dispute_rejected(self, deployment, accounts):
        with pytest.raises(InvalidStateError, match="No disputed relay"):
            deployment.router.settle_disputed_relay(accounts.owner, 1, accounts.disputer)


class TestAdministration:
    """Tests for token whitelisting and L2 deposit pausing."""

    def test_whitelist_sends_cross_domain_message(self, deployment, accounts):
        """Whitelisting tells the L2 deposit contract about the token pair."""
        message = deployment.messenger.messages[0]
        selector = Web3.keccak(text="whitelistToken(address,address)")[:4]

        assert message.target == accounts.deposit_contract
        assert message.gas_limit == deployment.router.config.messenger.gas_limit
        assert message.payload[:4] == bytes(selector)
        l1_token, l2_token = decode(["address", "address"], message.payload[4:])
        assert l1_token.lower() == accounts.l1_token.lower()
        assert l2_token.lower() == accounts.l2_token.lower()

        relationship = deployment.router.get_token_relationship(accounts.l1_token)
        assert relationship.l2_token == accounts.l2_token
        assert relationship.bridge_pool == deployment.pool.address
        assert relationship.proposer_reward == PROPOSER_REWARD
        assert relationship.proposer_bond == PROPOSER_BOND
        assert isinstance(deployment.router.events[0], TokenWhitelisted)

    def test_whitelist_requires_owner(self, deployment, accounts):
        with pytest.raises(InsufficientAuthorizationError, match="not the owner"):
            deployment.router.whitelist_token(
                accounts.relayer, accounts.l1_token, accounts.l2_token, deployment.pool, 1, 1
            )

    def test_whitelist_requires_collateral_approval(self, deployment, accounts):
        deployment.collateral.remove_from_whitelist(accounts.l1_token)

        with pytest.raises(InvalidInputError, match="Payment token not whitelisted"):
            deployment.router.whitelist_token(
                accounts.owner, accounts.l1_token, accounts.l2_token, deployment.pool, 1, 1
            )

    def test_whitelist_update_changes_bond_for_new_relays(self, deployment, accounts, relay):
        deployment.router.whitelist_token(
            accounts.owner, accounts.l1_token, accounts.l2_token, deployment.pool, 0, 200
        )

        relay()

        assert deployment.router.events[-1].total_bond == 200 + FINAL_FEE
        assert balance(deployment, accounts.relayer) == STARTING_BALANCE - 200 - FINAL_FEE

    def test_pause_sends_message(self, deployment, accounts):
        deployment.router.pause_l2_deposits(accounts.owner, accounts.l1_token, True)

        message = deployment.messenger.messages[-1]
        assert message.payload[:4] == bytes(Web3.keccak(text="setDepositsPaused(address,bool)")[:4])
        l2_token, paused = decode(["address", "bool"], message.payload[4:])
        assert l2_token.lower() == accounts.l2_token.lower()
        assert paused is True

    def test_pause_requires_owner(self, deployment, accounts):
        with pytest.raises(InsufficientAuthorizationError):
            deployment.router.pause_l2_deposits(accounts.relayer, accounts.l1_token, True)
        assert len(deployment.messenger.messages) == 1


class TestEventPublication:
    """Tests for subscriber delivery."""

    def test_subscribers_receive_committed_events_once(self, deployment, accounts, relay):
        received = []
        deployment.router.subscribe(received.append)

        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)

        assert [event.name for event in received] == ["DepositRelayed", "RelayDisputed"]

    def test_rolled_back_events_are_not_published(self, deployment, accounts, relay):
        received = []
        deployment.router.subscribe(received.append)
        deployment.ledger.approve(deployment.token, accounts.relayer, deployment.router.address, 0)

        with pytest.raises(InsufficientAuthorizationError):
            relay()

        assert received == []

    def test_nested_events_wait_for_outermost_commit(self, deployment, accounts, relay):
        """Events from an inner scope are dropped when an enclosing scope rolls back."""
        received = []
        deployment.router.subscribe(received.append)
        relay()

        with pytest.raises(RuntimeError):
            with deployment.router._transaction():
                deployment.router.dispute_relay(accounts.disputer, 1)
                raise RuntimeError("abort")

        assert [event.name for event in received] == ["DepositRelayed"]
        assert deployment.router.disputed_deposits == {}

        deployment.router.dispute_relay(accounts.disputer, 1)

        assert [event.name for event in received] == ["DepositRelayed", "RelayDisputed"]

    def test_retained_event_log_is_bounded(self, deployment, accounts, relay):
        """Old events are dropped from memory after delivery."""
        received = []
        deployment.router.subscribe(received.append)
        deployment.router.MAX_RETAINED_EVENTS = 2

        relay()
        deployment.router.dispute_relay(accounts.disputer, 1)
        relay(relayer=accounts.other_relayer)

        assert [event.name for event in deployment.router.events] == ["RelayDisputed", "DepositRelayed"]
        assert [event.name for event in received] == ["DepositRelayed", "RelayDisputed", "DepositRelayed"]
        assert deployment.indexer.get_stats()["open_disputes"] == 1

    def test_failing_subscriber_does_not_break_operation(self, deployment, relay):
        def broken(event):
            raise RuntimeError("subscriber down")

        deployment.router.subscribe(broken)

        deposit = relay()

        assert deployment.router.get_deposit(1) == deposit

    def test_records_are_immutable(self, relay):
        deposit = relay()

        with pytest.raises(dataclasses.FrozenInstanceError):
            deposit.state = DepositState.FINALIZED_SLOW
