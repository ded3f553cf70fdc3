"""Council approval quorum for pending tasks."""

from datetime import datetime

from src.core.config import settings
from src.core.errors import DuplicateVoteError, InvalidTransitionError
from src.domain.task import Task, TaskStatus, Vote
from src.domain.user import Capability, Member, has_capability, require_capability


def _ensure_can_vote(task: Task, voter: Member) -> None:
    require_capability(voter, Capability.VOTE)
    if task.status != TaskStatus.PENDING:
        msg = f"Task {task.id} is {task.status}, votes are only accepted while pending"
        raise InvalidTransitionError(msg)
    if task.has_voted(voter.id):
        msg = f"Member {voter.id} has already voted on task {task.id}"
        raise DuplicateVoteError(msg)


def record_approval(task: Task, voter: Member, at: datetime) -> Task:
    """Return a copy of the pending task with the voter's approval appended."""
    _ensure_can_vote(task, voter)
    return task.model_copy(update={"approvals": [*task.approvals, Vote(by=voter.id, at=at)]})


def record_rejection(task: Task, voter: Member, at: datetime) -> Task:
    """Return a copy of the pending task with the voter's rejection appended."""
    _ensure_can_vote(task, voter)
    return task.model_copy(update={"rejections": [*task.rejections, Vote(by=voter.id, at=at)]})


def quorum_reached(task: Task, latest_voter: Member) -> bool:
    """Whether the task has enough approvals to open.

    An approver holding FORCE_OPEN opens the task on their own.
    """
    if has_capability(latest_voter, Capability.FORCE_OPEN):
        return True
    return len({vote.by for vote in task.approvals}) >= settings.council_min_approvals
