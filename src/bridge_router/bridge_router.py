"""
Bridge router: the relay lifecycle state machine.

Deposits made on L2 are relayed on L1 by bonded relayers. Each relay opens an
optimistic oracle request whose ancillary data describes the relay; if the
proposal survives the liveness window the relay is finalized and paid out of
the token's bridge pool. A dispute moves the record into a per-disputer
mapping until the oracle resolves it.

For any deposit id, the primary mapping holds at most one record, and a
finalized record is never replaced.
"""

import dataclasses
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from .ancillary_data import AncillaryDataEncoder
from .bridge_pool import BridgePool
from .config import BridgeRouterConfig
from .errors import (
    ConflictError,
    ExternalDependencyUnavailableError,
    InsufficientAuthorizationError,
    InvalidInputError,
    InvalidStateError,
)
from .ledger import Snapshottable, TokenLedger, atomic
from .messenger import CrossDomainMessenger, encode_call
from .models import (
    Deposit,
    DepositRelayed,
    DepositState,
    DepositType,
    DisputeSettled,
    RelayData,
    RelayDisputed,
    RelayFinalized,
    RelaySpedUp,
    RouterEvent,
    TokenRelationship,
    TokenWhitelisted,
)
from .optimistic_oracle import OptimisticOracleAdapter, RequestState
from .registry import Finder, OracleInterfaces
from .utils.address_utility import derive_address, same_address, to_checksum
from .utils.timer import Timer

logger = logging.getLogger(__name__)


class BridgeRouter(Snapshottable):
    """Owns deposit and disputed-deposit records for relays into L1."""

    SNAPSHOT_FIELDS = ("deposits", "disputed_deposits", "whitelisted_tokens")
    LOG_FIELDS = ("events",)

    # Delivered events kept in memory
    MAX_RETAINED_EVENTS: int = 1_000

    def __init__(
        self,
        config: BridgeRouterConfig,
        finder: Finder,
        ledger: TokenLedger,
        messenger: CrossDomainMessenger,
        timer: Timer | None = None,
    ):
        """
        Initialize the router.

        Args:
            config: Deployment configuration
            finder: Registry resolving the oracle, whitelists and Store
            ledger: Token ledger for bonds, rewards and payouts
            messenger: Transport for messages to the L2 deposit contract
            timer: Clock used for price request timestamps
        """
        self.address = derive_address("BridgeRouter")
        self.config = config
        self.finder = finder
        self.ledger = ledger
        self.messenger = messenger
        self.timer = timer or Timer()
        self.oracle_adapter = OptimisticOracleAdapter(self, finder, ledger)

        self.deposits: dict[int, Deposit] = {}
        self.disputed_deposits: dict[tuple[int, str], Deposit] = {}
        self.whitelisted_tokens: dict[str, TokenRelationship] = {}
        self.bridge_pools: dict[str, BridgePool] = {}
        self.events: list[RouterEvent] = []

        self._subscribers: list[Callable[[RouterEvent], object]] = []
        self._published = 0
        self._depth = 0

    # Views

    @property
    def identifier(self) -> str:
        return self.config.oracle.identifier

    def get_deposit(self, deposit_id: int) -> Deposit:
        return self.deposits.get(deposit_id, Deposit.uninitialized())

    def get_disputed_deposit(self, deposit_id: int, disputer: str) -> Deposit:
        return self.disputed_deposits.get((deposit_id, to_checksum(disputer, "disputer")), Deposit.uninitialized())

    def get_token_relationship(self, l1_token: str) -> TokenRelationship | None:
        return self.whitelisted_tokens.get(to_checksum(l1_token, "l1 token"))

    def subscribe(self, callback: Callable[[RouterEvent], object]) -> None:
        """Register a callback receiving each event after its transaction commits."""
        self._subscribers.append(callback)

    # Internals

    def _only_owner(self, caller: str) -> None:
        if not same_address(caller, self.config.owner):
            raise InsufficientAuthorizationError("Caller is not the owner")

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """
        Atomic scope over every component an operation may touch.

        Scopes nest; events are published only when the outermost scope
        commits.
        """
        participants = [self, self.ledger, self.messenger, *self.bridge_pools.values()]
        for interface in (OracleInterfaces.OPTIMISTIC_ORACLE, OracleInterfaces.ORACLE):
            try:
                participants.append(self.finder.get_implementation(interface))
            except ExternalDependencyUnavailableError:
                logger.debug(f"{interface.value} not registered, leaving it out of the transaction")

        self._depth += 1
        try:
            with atomic(*participants):
                yield
        finally:
            self._depth -= 1
        if self._depth == 0:
            self._publish()

    def _publish(self) -> None:
        """Deliver committed events not yet seen by subscribers, then trim the retained log."""
        pending = self.events[self._published:]
        overflow = len(self.events) - self.MAX_RETAINED_EVENTS
        if overflow > 0:
            del self.events[:overflow]
        self._published = len(self.events)
        for event in pending:
            for callback in self._subscribers:
                try:
                    callback(event)
                except Exception as e:
                    logger.error(f"Event subscriber failed on {event.name}: {e}", exc_info=True)

    def _emit(self, event: RouterEvent) -> None:
        self.events.append(event)

    def _pool_for(self, l1_token: str) -> BridgePool:
        relationship = self.whitelisted_tokens.get(l1_token)
        if relationship is None:
            raise InvalidInputError(f"Token not whitelisted: {l1_token}")
        return self.bridge_pools[relationship.bridge_pool]

    def _pay_out_relay(self, deposit: Deposit) -> tuple[int, int]:
        """
        Pay a valid relay out of the bridge pool.

        Slow relays pay the recipient ``amount - realized_fee`` and the slow
        relayer the fee. Instant relays reimburse the instant relayer, who
        already paid the recipient, the full amount.

        Returns:
            (recipient amount, relayer payout)
        """
        relay = deposit.relay_data
        pool = self._pool_for(relay.l1_token)
        match deposit.deposit_type:
            case DepositType.SLOW:
                pool.pay_out(self.address, relay.recipient, relay.amount_after_fee)
                pool.pay_out(self.address, deposit.slow_relayer, relay.realized_fee)
                return relay.amount_after_fee, relay.realized_fee
            case DepositType.INSTANT:
                pool.pay_out(self.address, deposit.instant_relayer, relay.amount)
                return 0, relay.amount

    @staticmethod
    def _finalized(deposit: Deposit) -> Deposit:
        state = DepositState.FINALIZED_INSTANT if deposit.deposit_type == DepositType.INSTANT else DepositState.FINALIZED_SLOW
        return dataclasses.replace(deposit, state=state)

    # Administration

    def whitelist_token(
        self,
        caller: str,
        l1_token: str,
        l2_token: str,
        bridge_pool: BridgePool,
        proposer_reward: int,
        proposer_bond: int,
    ) -> TokenRelationship:
        """
        Register or update the L1/L2 token mapping and its bond parameters.

        The L2 deposit contract is told about the token through the
        cross-domain messenger.

        Raises:
            InsufficientAuthorizationError: If caller is not the owner
            InvalidInputError: If the token is not on the collateral whitelist
        """
        self._only_owner(caller)
        l1_token = to_checksum(l1_token, "l1 token")
        l2_token = to_checksum(l2_token, "l2 token")
        if not same_address(bridge_pool.l1_token, l1_token):
            raise InvalidInputError(f"Bridge pool holds {bridge_pool.l1_token}, not {l1_token}")
        if proposer_reward < 0 or proposer_bond < 0:
            raise InvalidInputError("Proposer reward and bond must be non-negative")

        collateral = self.finder.get_implementation(OracleInterfaces.COLLATERAL_WHITELIST)
        if not collateral.is_on_whitelist(l1_token):
            raise InvalidInputError(f"Payment token not whitelisted: {l1_token}")

        relationship = TokenRelationship(
            l2_token=l2_token,
            bridge_pool=bridge_pool.address,
            proposer_reward=proposer_reward,
            proposer_bond=proposer_bond,
        )
        with self._transaction():
            self.whitelisted_tokens[l1_token] = relationship
            self.messenger.send_cross_domain_message(
                self.config.deposit_contract,
                self.config.messenger.gas_limit,
                encode_call("whitelistToken(address,address)", ["address", "address"], [l1_token, l2_token]),
            )
            self._emit(TokenWhitelisted(l1_token, l2_token, bridge_pool.address, proposer_reward, proposer_bond))
        self.bridge_pools[bridge_pool.address] = bridge_pool
        bridge_pool.set_router(self.address)

        logger.info(f"Token whitelisted: {l1_token} <-> {l2_token}, pool {bridge_pool.address}")
        return relationship

    def pause_l2_deposits(self, caller: str, l1_token: str, paused: bool) -> None:
        """Ask the L2 deposit contract to stop (or resume) accepting a token."""
        self._only_owner(caller)
        l1_token = to_checksum(l1_token, "l1 token")
        relationship = self.whitelisted_tokens.get(l1_token)
        if relationship is None:
            raise InvalidInputError(f"Token not whitelisted: {l1_token}")

        with self._transaction():
            self.messenger.send_cross_domain_message(
                self.config.deposit_contract,
                self.config.messenger.gas_limit,
                encode_call("setDepositsPaused(address,bool)", ["address", "bool"], [relationship.l2_token, paused]),
            )
        logger.info(f"L2 deposits for {l1_token} {'paused' if paused else 'resumed'}")

    # Relay lifecycle

    def relay_deposit(
        self,
        relayer: str,
        deposit_id: int,
        deposit_timestamp: int,
        recipient: str,
        l2_sender: str,
        l1_token: str,
        amount: int,
        realized_fee: int,
        max_fee: int,
    ) -> Deposit:
        """
        Claim an L2 deposit and open its optimistic price request.

        The relayer must have approved the router for the proposer reward and
        ``proposer_bond + final_fee`` of ``l1_token``.

        Returns:
            The new PendingSlow deposit record

        Raises:
            InvalidInputError: Fee above max, unknown identifier or token
            ConflictError: A relay exists for the id, or the relayer holds an
                open dispute on it
            InsufficientAuthorizationError: Reward or bond could not be pulled
        """
        relayer = to_checksum(relayer, "relayer")
        l1_token = to_checksum(l1_token, "l1 token")

        if realized_fee > max_fee:
            logger.warning(f"Rejected relay for deposit {deposit_id}: realized fee {realized_fee} > max fee {max_fee}")
            raise InvalidInputError(f"Invalid realized fee: {realized_fee} exceeds max fee {max_fee}")
        if amount <= 0:
            raise InvalidInputError(f"Relay amount must be positive, got {amount}")
        if max_fee > amount:
            raise InvalidInputError(f"Max fee {max_fee} exceeds amount {amount}")

        identifiers = self.finder.get_implementation(OracleInterfaces.IDENTIFIER_WHITELIST)
        if not identifiers.is_identifier_supported(self.identifier):
            raise InvalidInputError(f"Identifier not registered: {self.identifier}")

        relationship = self.whitelisted_tokens.get(l1_token)
        collateral = self.finder.get_implementation(OracleInterfaces.COLLATERAL_WHITELIST)
        if relationship is None or not collateral.is_on_whitelist(l1_token):
            raise InvalidInputError(f"Token not whitelisted: {l1_token}")

        if self.get_deposit(deposit_id).state != DepositState.UNINITIALIZED:
            logger.warning(f"Rejected relay for deposit {deposit_id}: relay already exists")
            raise ConflictError(f"Pending relay for deposit ID {deposit_id} exists")
        if (deposit_id, relayer) in self.disputed_deposits:
            raise ConflictError(f"Pending dispute for deposit ID {deposit_id} by {relayer} exists")

        relay_data = RelayData(
            deposit_id=deposit_id,
            deposit_timestamp=deposit_timestamp,
            recipient=to_checksum(recipient, "recipient"),
            l2_sender=to_checksum(l2_sender, "l2 sender"),
            l1_token=l1_token,
            amount=amount,
            realized_fee=realized_fee,
            max_fee=max_fee,
            relayer=relayer,
        )
        ancillary_data = AncillaryDataEncoder.encode_relay(relay_data, self.config.deposit_contract)
        request_time = self.timer.get_current_time()
        deposit = Deposit(
            state=DepositState.PENDING_SLOW,
            deposit_type=DepositType.SLOW,
            slow_relayer=relayer,
            relay_data=relay_data,
            ancillary_data=bytes(ancillary_data),
            price_request_time=request_time,
        )

        with self._transaction():
            self.deposits[deposit_id] = deposit
            total_bond = self.oracle_adapter.request_and_propose(
                relayer=relayer,
                identifier=self.identifier,
                timestamp=request_time,
                ancillary_data=deposit.ancillary_data,
                currency=l1_token,
                reward=relationship.proposer_reward,
                proposer_bond=relationship.proposer_bond,
                liveness=self.config.oracle.liveness,
                proposed_value=self.config.oracle.proposed_price,
            )
            self._emit(DepositRelayed(relay_data, deposit.ancillary_data, request_time, total_bond))

        logger.info(
            f"Deposit {deposit_id} relayed by {relayer}: amount={amount} "
            f"realized_fee={realized_fee} max_fee={max_fee} bond={total_bond}"
        )
        return deposit

    def speed_up_relay(self, instant_relayer: str, deposit_id: int) -> Deposit:
        """
        Pay the recipient now, ahead of the liveness window.

        The instant relayer transfers ``amount - realized_fee`` to the
        recipient and is reimbursed by the pool on finalization.

        Raises:
            InvalidStateError: Relay is not PendingSlow or its window has ended
            InsufficientAuthorizationError: The instant relayer's transfer failed
        """
        instant_relayer = to_checksum(instant_relayer, "instant relayer")
        deposit = self.get_deposit(deposit_id)
        if deposit.state != DepositState.PENDING_SLOW:
            raise InvalidStateError(f"Relay for deposit {deposit_id} cannot be sped up from {deposit.state.name}")
        oracle_state = self.oracle_adapter.get_state(self.identifier, deposit.price_request_time, deposit.ancillary_data)
        if oracle_state != RequestState.PROPOSED:
            raise InvalidStateError(f"Relay for deposit {deposit_id} is no longer in its liveness window")

        relay = deposit.relay_data
        sped_up = dataclasses.replace(
            deposit,
            state=DepositState.PENDING_INSTANT,
            deposit_type=DepositType.INSTANT,
            instant_relayer=instant_relayer,
        )
        with self._transaction():
            self.ledger.transfer_from(relay.l1_token, self.address, instant_relayer, relay.recipient, relay.amount_after_fee)
            self.deposits[deposit_id] = sped_up
            self._emit(RelaySpedUp(deposit_id, instant_relayer, deposit.slow_relayer))

        logger.info(f"Relay for deposit {deposit_id} sped up by {instant_relayer}")
        return sped_up

    def dispute_relay(self, disputer: str, deposit_id: int) -> Deposit:
        """
        Dispute a pending relay, funding the dispute bond from ``disputer``.

        The oracle's dispute callback moves the record into the disputed
        mapping; the moved record is returned.
        """
        disputer = to_checksum(disputer, "disputer")
        deposit = self.get_deposit(deposit_id)
        if not deposit.state.is_pending:
            raise InvalidStateError(f"No pending relay for deposit {deposit_id}")

        with self._transaction():
            self.oracle_adapter.dispute(disputer, self.identifier, deposit.price_request_time, deposit.ancillary_data)

        return self.disputed_deposits[(deposit_id, disputer)]

    def price_disputed(self, identifier: str, timestamp: int, ancillary_data: bytes, refund: int) -> None:
        """
        Oracle callback: move the disputed relay out of the primary mapping.

        The record is stored unchanged under ``(deposit_id, disputer)``.
        """
        deposit_id = AncillaryDataEncoder.deposit_id_of(ancillary_data)
        deposit = self.get_deposit(deposit_id)
        if not deposit.state.is_pending or deposit.ancillary_data != bytes(ancillary_data):
            raise InvalidStateError(f"Disputed request does not match a pending relay for deposit {deposit_id}")

        request = self.oracle_adapter.get_request(identifier, timestamp, ancillary_data)
        if request is None or request.disputer is None:
            raise InvalidStateError(f"Oracle reports no dispute for deposit {deposit_id}")
        disputer = request.disputer
        if (deposit_id, disputer) in self.disputed_deposits:
            raise ConflictError(f"Deposit {deposit_id} already has an open dispute by {disputer}")

        with self._transaction():
            del self.deposits[deposit_id]
            self.disputed_deposits[(deposit_id, disputer)] = deposit
            self._emit(RelayDisputed(deposit_id, disputer, deposit.slow_relayer))

        logger.info(f"Relay for deposit {deposit_id} disputed by {disputer}")

    def finalize_relay(self, caller: str, deposit_id: int) -> Deposit:
        """
        Settle an undisputed relay whose liveness window has elapsed.

        The proposer receives bond and reward back from the oracle and the
        bridge pool pays the relay out. The oracle request may already have
        been settled directly; the relay is still paid out.

        Raises:
            InvalidStateError: No pending relay, or liveness has not elapsed
            InsufficientAuthorizationError: Pool liquidity is insufficient
        """
        caller = to_checksum(caller, "caller")
        deposit = self.get_deposit(deposit_id)
        if not deposit.state.is_pending:
            raise InvalidStateError(f"No pending relay for deposit {deposit_id}")

        oracle_state = self.oracle_adapter.get_state(self.identifier, deposit.price_request_time, deposit.ancillary_data)
        if oracle_state not in (RequestState.EXPIRED, RequestState.SETTLED):
            raise InvalidStateError(f"Relay for deposit {deposit_id} has not passed liveness ({oracle_state.name})")

        finalized = self._finalized(deposit)
        with self._transaction():
            price = self.oracle_adapter.settle_and_get_price(
                self.identifier, deposit.price_request_time, deposit.ancillary_data
            )
            if price != self.config.oracle.proposed_price:
                raise InvalidStateError(f"Oracle settled deposit {deposit_id} at {price}, not the proposed price")
            recipient_amount, relayer_payout = self._pay_out_relay(deposit)
            self.deposits[deposit_id] = finalized
            self._emit(RelayFinalized(
                deposit_id, deposit.deposit_type, deposit.relay_data.recipient, recipient_amount, relayer_payout, caller
            ))

        logger.info(f"Relay for deposit {deposit_id} finalized ({finalized.state.name})")
        return finalized

    def settle_disputed_relay(self, caller: str, deposit_id: int, disputer: str) -> bool:
        """
        Settle a disputed relay once the oracle has resolved it.

        If the dispute failed the relay was valid and is paid out, provided no
        other relay has since taken the deposit id; the relayer keeps the
        oracle payout either way. If the dispute succeeded the disputer is
        paid by the oracle and the deposit id stays free for a new relay. The
        oracle request may already have been settled directly.

        Returns:
            True if the dispute succeeded

        Raises:
            InvalidStateError: No such disputed relay, or not yet resolved
        """
        caller = to_checksum(caller, "caller")
        disputer = to_checksum(disputer, "disputer")
        key = (deposit_id, disputer)
        deposit = self.disputed_deposits.get(key)
        if deposit is None:
            raise InvalidStateError(f"No disputed relay for deposit {deposit_id} by {disputer}")

        oracle_state = self.oracle_adapter.get_state(self.identifier, deposit.price_request_time, deposit.ancillary_data)
        if oracle_state not in (RequestState.RESOLVED, RequestState.SETTLED):
            raise InvalidStateError(f"Dispute for deposit {deposit_id} not resolved ({oracle_state.name})")

        paid_out = False
        with self._transaction():
            price = self.oracle_adapter.settle_and_get_price(
                self.identifier, deposit.price_request_time, deposit.ancillary_data
            )
            dispute_successful = price != self.config.oracle.proposed_price
            del self.disputed_deposits[key]

            if not dispute_successful and self.get_deposit(deposit_id).state == DepositState.UNINITIALIZED:
                self._pay_out_relay(deposit)
                self.deposits[deposit_id] = self._finalized(deposit)
                paid_out = True

            self._emit(DisputeSettled(deposit_id, disputer, dispute_successful, paid_out, caller))

        logger.info(
            f"Dispute on deposit {deposit_id} by {disputer} settled: "
            f"{'successful' if dispute_successful else 'unsuccessful'}, relay paid out: {paid_out}"
        )
        return dispute_successful
