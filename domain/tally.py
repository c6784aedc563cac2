"""Vote counting. Pure functions over option and vote collections."""

from typing import Sequence

from domain.models import LunchOption, Vote


def tally(options: Sequence[LunchOption], votes: Sequence[Vote]) -> dict[str, int]:
    """Votes per option id. Options nobody voted for count as zero."""
    counts = {option.id: 0 for option in options}
    for vote in votes:
        if vote.option_id in counts:
            counts[vote.option_id] += 1
    return counts


def winner(
    options: Sequence[LunchOption],
    votes: Sequence[Vote],
) -> LunchOption | None:
    """Option with the most votes, the earliest added one on a tie."""
    if not options:
        return None
    counts = tally(options, votes)
    # sorted is stable with reverse=True, so tied options keep insertion order.
    ranked = sorted(options, key=lambda option: counts[option.id], reverse=True)
    return ranked[0]


def voting_complete(votes: Sequence[Vote], threshold: int = 2) -> bool:
    return len(votes) >= threshold


def has_voted(votes: Sequence[Vote], option_id: str, user_id: str) -> bool:
    return any(v.option_id == option_id and v.user_id == user_id for v in votes)
