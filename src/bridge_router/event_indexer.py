"""
Event indexer for router events.

This module keeps a bounded, queryable view of what the router has emitted:
the latest status of each deposit, open disputes and per-relayer activity.
It is fed by ``BridgeRouter.subscribe`` and never touches router state.
"""

import logging
from collections import OrderedDict, deque

from .models import (
    DepositRelayed,
    DisputeSettled,
    RelayDisputed,
    RelayFinalized,
    RelaySpedUp,
    RouterEvent,
    TokenWhitelisted,
)

logger = logging.getLogger(__name__)


def _lru_put(index: OrderedDict, key, value, limit: int) -> None:
    """Insert or refresh ``key``, evicting the least recently updated entry at ``limit``."""
    if key in index:
        index.move_to_end(key)
    elif len(index) >= limit:
        evicted, _ = index.popitem(last=False)
        logger.debug(f"Evicted {evicted} from index")
    index[key] = value


class RelayEventIndexer:
    """Indexes router events by deposit id."""

    MAX_TRACKED_DEPOSITS: int = 10_000
    MAX_TRACKED_DISPUTES: int = 10_000
    MAX_TRACKED_RELAYERS: int = 10_000
    MAX_RECENT_EVENTS: int = 1_000

    def __init__(self) -> None:
        # OrderedDict gives O(1) lookups and insertion order for LRU eviction
        self.deposit_status: OrderedDict[int, str] = OrderedDict()
        self.open_disputes: OrderedDict[tuple[int, str], str] = OrderedDict()
        self.relays_by_relayer: OrderedDict[str, int] = OrderedDict()
        self.whitelisted_tokens: dict[str, str] = {}
        self.recent_events: deque[RouterEvent] = deque(maxlen=self.MAX_RECENT_EVENTS)

        self.total_relayed = 0
        self.total_paid_out = 0
        self.disputes_won = 0
        self.disputes_lost = 0

    def __call__(self, event: RouterEvent) -> None:
        self.process_event(event)

    def process_event(self, event: RouterEvent) -> None:
        """
        Update the index with one committed router event.

        Args:
            event: Event as published by the router
        """
        self.recent_events.append(event)

        match event:
            case TokenWhitelisted(l1_token=l1_token, l2_token=l2_token):
                self.whitelisted_tokens[l1_token] = l2_token
                logger.debug(f"Indexed token mapping {l1_token} -> {l2_token}")

            case DepositRelayed(relay_data=relay):
                self._track_status(relay.deposit_id, "PENDING_SLOW")
                relay_count = self.relays_by_relayer.get(relay.relayer, 0) + 1
                _lru_put(self.relays_by_relayer, relay.relayer, relay_count, self.MAX_TRACKED_RELAYERS)
                self.total_relayed += relay.amount

            case RelaySpedUp(deposit_id=deposit_id):
                self._track_status(deposit_id, "PENDING_INSTANT")

            case RelayDisputed(deposit_id=deposit_id, disputer=disputer, slow_relayer=slow_relayer):
                self._track_status(deposit_id, "DISPUTED")
                _lru_put(self.open_disputes, (deposit_id, disputer), slow_relayer, self.MAX_TRACKED_DISPUTES)

            case RelayFinalized(deposit_id=deposit_id, recipient_amount=recipient_amount, relayer_payout=payout):
                self._track_status(deposit_id, "FINALIZED")
                self.total_paid_out += recipient_amount + payout

            case DisputeSettled(deposit_id=deposit_id, disputer=disputer, dispute_successful=successful, relay_paid_out=paid):
                self.open_disputes.pop((deposit_id, disputer), None)
                if successful:
                    self.disputes_won += 1
                    # The id is free again unless another relay already took it
                    if self.deposit_status.get(deposit_id) == "DISPUTED":
                        self._track_status(deposit_id, "UNINITIALIZED")
                else:
                    self.disputes_lost += 1
                    if paid:
                        self._track_status(deposit_id, "FINALIZED")

            case _:
                logger.warning(f"Unexpected event type: {type(event).__name__}")

    def _track_status(self, deposit_id: int, status: str) -> None:
        """
        Record the latest status of a deposit with LRU eviction.

        Args:
            deposit_id: Deposit the status belongs to
            status: Name of the new status
        """
        _lru_put(self.deposit_status, deposit_id, status, self.MAX_TRACKED_DEPOSITS)

    def status_of(self, deposit_id: int) -> str | None:
        return self.deposit_status.get(deposit_id)

    def get_stats(self) -> dict:
        """
        Get current indexer statistics.

        Returns:
            Dictionary with current state metrics
        """
        return {
            'tracked_deposits': len(self.deposit_status),
            'open_disputes': len(self.open_disputes),
            'whitelisted_tokens': len(self.whitelisted_tokens),
            'total_relayed': self.total_relayed,
            'total_paid_out': self.total_paid_out,
            'disputes_won': self.disputes_won,
            'disputes_lost': self.disputes_lost,
        }
