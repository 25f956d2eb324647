"""
Slashing library for stake-weighted dispute voting.

Rates are 1e18 fixed point fractions of stake. Voters who voted wrongly or
did not vote lose ``stake * rate / 1e18``; the total is shared pro rata by
correct voters. Every function here is pure.
"""

import dataclasses
import logging
from collections.abc import Mapping
from enum import Enum

from .config import SlashingSettings
from .errors import InvalidInputError
from .models import SlashingTracker

logger = logging.getLogger(__name__)

FIXED_POINT_ONE = 10**18


class VoteOutcome(str, Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    NO_VOTE = "no_vote"


def _validate_totals(total_staked: int, total_votes: int, total_correct_votes: int) -> None:
    if min(total_staked, total_votes, total_correct_votes) < 0:
        raise InvalidInputError("Stake and vote totals must be non-negative")
    if total_votes > total_staked:
        raise InvalidInputError(f"Total votes {total_votes} exceed total staked {total_staked}")
    if total_correct_votes > total_votes:
        raise InvalidInputError(f"Correct votes {total_correct_votes} exceed total votes {total_votes}")


class FixedSlashSlashingLibrary:
    """
    Constant slash rates, with a separate rate for governance requests.

    No slashing happens for a request without correct votes, since there is
    nobody to receive the slashed stake.
    """

    def __init__(self, base_slash_per_token: int, governance_slash_per_token: int):
        for name, value in (
            ("base_slash_per_token", base_slash_per_token),
            ("governance_slash_per_token", governance_slash_per_token),
        ):
            if not 0 <= value <= FIXED_POINT_ONE:
                raise InvalidInputError(f"{name} must be within [0, 1e18], got {value}")
        self.base_slash_per_token = base_slash_per_token
        self.governance_slash_per_token = governance_slash_per_token

    @classmethod
    def from_settings(cls, settings: SlashingSettings) -> "FixedSlashSlashingLibrary":
        return cls(settings.base_slash_per_token, settings.governance_slash_per_token)

    def _rate(self, total_correct_votes: int, is_governance: bool) -> int:
        if total_correct_votes == 0:
            return 0
        return self.governance_slash_per_token if is_governance else self.base_slash_per_token

    def calc_wrong_vote_slash_per_token(
        self, total_staked: int, total_votes: int, total_correct_votes: int, is_governance: bool
    ) -> int:
        _validate_totals(total_staked, total_votes, total_correct_votes)
        return self._rate(total_correct_votes, is_governance)

    def calc_no_vote_slash_per_token(
        self, total_staked: int, total_votes: int, total_correct_votes: int, is_governance: bool
    ) -> int:
        _validate_totals(total_staked, total_votes, total_correct_votes)
        return self._rate(total_correct_votes, is_governance)

    def calc_slashing(
        self, total_staked: int, total_votes: int, total_correct_votes: int, is_governance: bool
    ) -> tuple[int, int]:
        """Both rates in one call: (wrong vote slash per token, no vote slash per token)."""
        return (
            self.calc_wrong_vote_slash_per_token(total_staked, total_votes, total_correct_votes, is_governance),
            self.calc_no_vote_slash_per_token(total_staked, total_votes, total_correct_votes, is_governance),
        )


def compute_slashing_tracker(
    library: FixedSlashSlashingLibrary,
    total_staked: int,
    total_votes: int,
    total_correct_votes: int,
    is_governance: bool,
) -> SlashingTracker:
    """
    Slash rates and the total amount slashed for one resolved request.

    ``total_slashed`` is taken from the stake that did not vote and the
    stake that voted wrongly; it never exceeds that stake.
    """
    wrong_rate, no_vote_rate = library.calc_slashing(total_staked, total_votes, total_correct_votes, is_governance)
    total_slashed = (
        no_vote_rate * (total_staked - total_votes) + wrong_rate * (total_votes - total_correct_votes)
    ) // FIXED_POINT_ONE
    return SlashingTracker(
        wrong_vote_slash_per_token=wrong_rate,
        no_vote_slash_per_token=no_vote_rate,
        total_slashed=total_slashed,
        total_correct_votes=total_correct_votes,
    )


def voter_slash_amount(stake: int, outcome: VoteOutcome, tracker: SlashingTracker) -> int:
    """
    Signed stake change for one voter.

    Returns:
        Negative amount for wrong and missing votes, the voter's pro rata
        share of ``total_slashed`` for correct votes
    """
    if stake < 0:
        raise InvalidInputError(f"Stake must be non-negative, got {stake}")
    match VoteOutcome(outcome):
        case VoteOutcome.NO_VOTE:
            return -(stake * tracker.no_vote_slash_per_token // FIXED_POINT_ONE)
        case VoteOutcome.WRONG:
            return -(stake * tracker.wrong_vote_slash_per_token // FIXED_POINT_ONE)
        case VoteOutcome.CORRECT:
            if tracker.total_correct_votes == 0:
                return 0
            return tracker.total_slashed * stake // tracker.total_correct_votes


def apply_slashing(
    library: FixedSlashSlashingLibrary,
    stakes: Mapping[str, int],
    outcomes: Mapping[str, VoteOutcome],
    is_governance: bool = False,
) -> dict[str, int]:
    """
    Slash or reward every staker for one request.

    Args:
        library: Slashing library supplying the rates
        stakes: Stake per voter
        outcomes: Outcome per voter; stakers missing here did not vote
        is_governance: Whether the request is a governance vote

    Returns:
        Stake change per voter
    """
    total_staked = sum(stakes.values())
    total_votes = sum(stake for voter, stake in stakes.items() if outcomes.get(voter, VoteOutcome.NO_VOTE) != VoteOutcome.NO_VOTE)
    total_correct = sum(stake for voter, stake in stakes.items() if outcomes.get(voter) == VoteOutcome.CORRECT)

    tracker = compute_slashing_tracker(library, total_staked, total_votes, total_correct, is_governance)

    # Penalties round down per voter, so the pool shared out is their exact sum.
    changes: dict[str, int] = {}
    for voter, stake in stakes.items():
        outcome = outcomes.get(voter, VoteOutcome.NO_VOTE)
        if outcome != VoteOutcome.CORRECT:
            changes[voter] = voter_slash_amount(stake, outcome, tracker)
    tracker = dataclasses.replace(tracker, total_slashed=-sum(changes.values()))
    for voter, stake in stakes.items():
        if outcomes.get(voter) == VoteOutcome.CORRECT:
            changes[voter] = voter_slash_amount(stake, VoteOutcome.CORRECT, tracker)
    logger.debug(
        f"Slashing applied to {len(stakes)} voters: total slashed {tracker.total_slashed}, "
        f"wrong rate {tracker.wrong_vote_slash_per_token}, no-vote rate {tracker.no_vote_slash_per_token}"
    )
    return changes
