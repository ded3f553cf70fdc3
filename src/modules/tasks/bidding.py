"""Reverse-auction bidding on open tasks."""

from datetime import datetime

from src.core.errors import BidNotCompetitiveError, InvalidInputError, InvalidTransitionError, PermissionDeniedError
from src.domain.task import Bid, Task, TaskStatus


def current_best_price(task: Task) -> float:
    """Lowest bid amount, or the starting price when nobody has bid yet."""
    if not task.bids:
        return task.starting_price
    return min(bid.amount for bid in task.bids)


def lowest_bid(task: Task) -> Bid | None:
    """The winning bid: lowest amount, earliest timestamp, then insertion order."""
    if not task.bids:
        return None
    _, _, winner = min((bid.amount, bid.at, index) for index, bid in enumerate(task.bids))
    return task.bids[winner]


def place_bid(task: Task, *, bidder_id: str, amount: float, note: str, at: datetime) -> Task:
    """Return a copy of the open task with a new bid appended.

    Raises:
        InvalidTransitionError: The task is not open for bids
        PermissionDeniedError: The bidder proposed the task
        InvalidInputError: The amount is not positive
        BidNotCompetitiveError: The amount is not strictly below the current best price
    """
    if task.status != TaskStatus.OPEN:
        msg = f"Task {task.id} is {task.status}, bids are only accepted while open"
        raise InvalidTransitionError(msg)

    if bidder_id == task.created_by:
        msg = f"Member {bidder_id} cannot bid on their own task {task.id}"
        raise PermissionDeniedError(msg)

    if amount <= 0:
        msg = f"Bid amount must be greater than 0, got {amount}"
        raise InvalidInputError(msg)

    best = current_best_price(task)
    if amount >= best:
        msg = f"Bid of {amount} is not below the current best price of {best}"
        raise BidNotCompetitiveError(msg)

    update: dict[str, object] = {"bids": [*task.bids, Bid(by=bidder_id, amount=amount, note=note, at=at)]}
    if task.bidding_started_at is None:
        update["bidding_started_at"] = at
    return task.model_copy(update=update)
