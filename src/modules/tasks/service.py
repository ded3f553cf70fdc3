"""Task lifecycle service: every state-changing operation goes through here.

Each mutation reads the task, applies a pure transition to a copy and writes it back
conditioned on the version it read. A lost race reloads and re-applies, so an operation
whose effect another writer already produced turns into a no-op instead of a second write.
"""

import hashlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError

from src.core.config import constants, settings
from src.core.errors import (
    ConcurrentModificationError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from src.core.logging import log_with_task_context, span
from src.domain.create_models import RatingCreate, TaskCreate
from src.domain.ledger import LedgerEntry
from src.domain.task import DeletedRating, Rating, Task, TaskCategory, TaskScope, TaskStatus
from src.domain.user import Capability, Member, has_capability, require_capability
from src.models.service_models import NotificationIntent
from src.modules.tasks import approval, bidding, repository, settlement, state_machine
from src.services import notification_service, user_service


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    """A task mutation ready to be written, with the ledger posting it implies."""

    task: Task
    ledger_entry: LedgerEntry | None = None


@dataclass(frozen=True)
class Applied:
    """Result of running a mutation through the lifecycle gate."""

    task: Task
    changed: bool
    before: Task


# Returns None when the requested effect is already in place
Mutation = Callable[[Task, datetime], Change | None]
IntentBuilder = Callable[[], Awaitable[list[NotificationIntent]]]


def _now() -> datetime:
    return datetime.now(UTC)


def _author_ref(member_id: str) -> str:
    """Stable pseudonym for a rating author."""
    digest = hashlib.sha256(member_id.encode()).hexdigest()
    return digest[: constants.RATING_AUTHOR_HASH_LENGTH]


async def _apply(task_id: str, mutation: Mutation, *, operation: str, now: datetime | None = None) -> Applied:
    """Run a mutation with optimistic retries.

    Raises:
        ConcurrentModificationError: Every attempt lost its write race
        NotFoundError: The task does not exist
        StorageError: The store failed; nothing was written
    """
    attempts = settings.write_retry_attempts
    for attempt in range(1, attempts + 1):
        task = await repository.get_task(task_id)
        change = mutation(task, now or _now())
        if change is None:
            log_with_task_context(logger, "debug", f"{operation} already applied", task_id=task_id)
            return Applied(task=task, changed=False, before=task)

        try:
            saved = await repository.save_task(
                change.task,
                expected_version=task.version,
                ledger_entry=change.ledger_entry,
            )
        except ConcurrentModificationError:
            if attempt == attempts:
                logger.warning("%s on task %s lost %d write races", operation, task_id, attempts)
                raise
            log_with_task_context(logger, "info", f"{operation} retrying after conflict", task_id=task_id, attempt=attempt)
            continue

        log_with_task_context(
            logger,
            "info",
            f"{operation} applied",
            task_id=task_id,
            status=str(saved.status),
            version=saved.version,
        )
        return Applied(task=saved, changed=True, before=task)

    msg = f"{operation} on task {task_id} was not attempted"
    raise ConcurrentModificationError(msg)


async def _notify_after_commit(build: IntentBuilder) -> None:
    """Resolve recipients for a committed change and hand delivery off. Never raises."""
    try:
        intents = await build()
        notification_service.dispatch_in_background(intents)
    except Exception:
        logger.exception("Failed to dispatch notifications")


# Queries


async def get_task(task_id: str) -> Task:
    """Fetch a task by id."""
    return await repository.get_task(task_id)


async def list_tasks(*, status: TaskStatus | None = None) -> list[Task]:
    """List tasks, newest first."""
    return await repository.list_tasks(status=status)


# Proposal and approval


async def create_task(
    *,
    proposer_id: str,
    title: str,
    scope: TaskScope,
    starting_price: float,
    category: TaskCategory = TaskCategory.MISC,
    location: str = "",
    details: str = "",
    photo: str | None = None,
    warranty_days: int = 0,
) -> Task:
    """Propose a task.

    A proposer who may vote counts as the first approval; if that alone reaches quorum
    the task is created already open.

    Raises:
        InvalidInputError: Blank title, price outside (0, ceiling] or negative warranty
        PermissionDeniedError: The proposer is banned
        NotFoundError: The proposer is unknown
    """
    with span("task_service.create_task"):
        try:
            payload = TaskCreate(
                title=title,
                category=category,
                scope=scope,
                location=location,
                details=details,
                photo=photo,
                starting_price=starting_price,
                warranty_days=warranty_days,
            )
        except ValidationError as e:
            raise InvalidInputError(str(e)) from e

        proposer = await user_service.require_active_member(proposer_id)
        require_capability(proposer, Capability.PROPOSE)

        now = _now()
        task = Task(**payload.model_dump(), created_by=proposer.id, created_at=now)

        if has_capability(proposer, Capability.VOTE):
            task = approval.record_approval(task, proposer, now)
            if approval.quorum_reached(task, proposer):
                task = state_machine.transition(task, TaskStatus.OPEN)

        task = await repository.insert_task(task)
        log_with_task_context(logger, "info", "Task proposed", task_id=task.id, status=str(task.status))

        async def intents() -> list[NotificationIntent]:
            if task.status == TaskStatus.OPEN:
                return [_open_for_bids_intent(task, await notification_service.member_recipients(exclude=[task.created_by]))]
            return [
                NotificationIntent(
                    recipients=await notification_service.council_recipients(exclude=[proposer.id]),
                    subject=f"Approval needed: {task.title}",
                    body=f"{proposer.display_name} proposed '{task.title}' for up to {task.starting_price}.",
                )
            ]

        await _notify_after_commit(intents)
        return task


def _open_for_bids_intent(task: Task, recipients: frozenset[str]) -> NotificationIntent:
    return NotificationIntent(
        recipients=recipients,
        subject=f"Open for bids: {task.title}",
        body=f"'{task.title}' ({task.location or 'no location'}) is open for bids below {task.starting_price}.",
    )


async def approve_task(*, task_id: str, approver_id: str) -> Task:
    """Record a council approval; open the task once quorum is reached.

    Approving a task that is already open (or further along) is a no-op.

    Raises:
        PermissionDeniedError: The approver may not vote
        DuplicateVoteError: The approver already voted on this pending task
        InvalidTransitionError: The task was rejected
    """
    with span("task_service.approve_task"):
        approver = await user_service.require_active_member(approver_id)
        require_capability(approver, Capability.VOTE)

        def mutate(task: Task, now: datetime) -> Change | None:
            if task.status == TaskStatus.REJECTED:
                msg = f"Task {task.id} was rejected and cannot be approved"
                raise InvalidTransitionError(msg)
            if task.status != TaskStatus.PENDING:
                return None
            updated = approval.record_approval(task, approver, now)
            if approval.quorum_reached(updated, approver):
                updated = state_machine.transition(updated, TaskStatus.OPEN)
            return Change(updated)

        applied = await _apply(task_id, mutate, operation="approve_task")
        task = applied.task

        if applied.changed and task.status == TaskStatus.OPEN:

            async def intents() -> list[NotificationIntent]:
                recipients = await notification_service.member_recipients(exclude=[task.created_by])
                return [
                    _open_for_bids_intent(task, recipients),
                    NotificationIntent(
                        recipients=frozenset({task.created_by}),
                        subject=f"Approved: {task.title}",
                        body=f"Your task '{task.title}' was approved and is now open for bids.",
                    ),
                ]

            await _notify_after_commit(intents)
        return task


async def reject_task(*, task_id: str, rejecter_id: str) -> Task:
    """Reject a pending task. A single rejection is final.

    Raises:
        PermissionDeniedError: The rejecter may not vote
        DuplicateVoteError: The rejecter already approved this pending task
        InvalidTransitionError: The task is no longer pending
    """
    with span("task_service.reject_task"):
        rejecter = await user_service.require_active_member(rejecter_id)
        require_capability(rejecter, Capability.VOTE)

        def mutate(task: Task, now: datetime) -> Change | None:
            if task.status == TaskStatus.REJECTED:
                return None
            updated = approval.record_rejection(task, rejecter, now)
            return Change(state_machine.transition(updated, TaskStatus.REJECTED))

        applied = await _apply(task_id, mutate, operation="reject_task")
        task = applied.task

        if applied.changed:

            async def intents() -> list[NotificationIntent]:
                return [
                    NotificationIntent(
                        recipients=frozenset({task.created_by}),
                        subject=f"Rejected: {task.title}",
                        body=f"Your task '{task.title}' was rejected by the council.",
                    )
                ]

            await _notify_after_commit(intents)
        return task


# Bidding and award


async def place_bid(*, task_id: str, bidder_id: str, amount: float, note: str = "") -> Task:
    """Place a bid strictly below the current best price of an open task.

    Raises:
        PermissionDeniedError: The bidder is banned or proposed the task
        InvalidInputError: The amount is not positive
        BidNotCompetitiveError: The amount is not below the current best price
        InvalidTransitionError: The task is not open
    """
    with span("task_service.place_bid"):
        bidder = await user_service.require_active_member(bidder_id)
        require_capability(bidder, Capability.BID)

        def mutate(task: Task, now: datetime) -> Change | None:
            return Change(bidding.place_bid(task, bidder_id=bidder.id, amount=amount, note=note, at=now))

        applied = await _apply(task_id, mutate, operation="place_bid")
        task = applied.task
        previous = bidding.lowest_bid(applied.before)

        async def intents() -> list[NotificationIntent]:
            result = [
                NotificationIntent(
                    recipients=frozenset({task.created_by}),
                    subject=f"New bid: {task.title}",
                    body=f"'{task.title}' received a bid of {amount}.",
                )
            ]
            if previous is not None and previous.by != bidder.id:
                result.append(
                    NotificationIntent(
                        recipients=frozenset({previous.by}),
                        subject=f"Outbid: {task.title}",
                        body=f"Your bid of {previous.amount} on '{task.title}' was undercut by {amount}.",
                    )
                )
            return result

        await _notify_after_commit(intents)
        return task


def _award(task: Task) -> Change | None:
    if task.status in {TaskStatus.AWARDED, TaskStatus.VERIFICATION, TaskStatus.COMPLETED}:
        return None
    state_machine.ensure_transition(task, TaskStatus.AWARDED)
    winner = bidding.lowest_bid(task)
    if winner is None:
        msg = f"Task {task.id} has no bids to award"
        raise InvalidTransitionError(msg)
    return Change(
        state_machine.transition(task, TaskStatus.AWARDED, awarded_to=winner.by, awarded_amount=winner.amount)
    )


async def _notify_award(task: Task) -> None:
    async def intents() -> list[NotificationIntent]:
        return [
            NotificationIntent(
                recipients=frozenset({task.awarded_to}) if task.awarded_to else frozenset(),
                subject=f"You won: {task.title}",
                body=f"Your bid of {task.awarded_amount} on '{task.title}' won. Please carry out the job.",
            ),
            NotificationIntent(
                recipients=(
                    await notification_service.council_recipients(exclude=[task.awarded_to or ""]) | {task.created_by}
                ),
                subject=f"Awarded: {task.title}",
                body=f"'{task.title}' was awarded for {task.awarded_amount}.",
            ),
        ]

    await _notify_after_commit(intents)


async def award_lowest(*, task_id: str, actor_id: str) -> Task:
    """Award an open task to its lowest bid ahead of the bidding window.

    Raises:
        PermissionDeniedError: The actor did not propose the task
        InvalidTransitionError: The task is not open or has no bids
    """
    with span("task_service.award_lowest"):
        await user_service.require_active_member(actor_id)

        def mutate(task: Task, _at: datetime) -> Change | None:
            if task.created_by != actor_id:
                msg = f"Only the proposer may award task {task.id}"
                raise PermissionDeniedError(msg)
            return _award(task)

        applied = await _apply(task_id, mutate, operation="award_lowest")
        if applied.changed:
            await _notify_award(applied.task)
        return applied.task


def bidding_window_elapsed(task: Task, now: datetime) -> bool:
    """Whether the task's bidding window has run out at ``now``."""
    if task.bidding_started_at is None:
        return False
    return now - task.bidding_started_at >= timedelta(hours=settings.bidding_window_hours)


async def auto_award(*, task_id: str, now: datetime | None = None) -> Applied:
    """Award a task whose bidding window has elapsed.

    The window is re-checked on fresh state, so a task awarded or still inside its
    window by the time of the write is left untouched.
    """
    with span("task_service.auto_award"):
        at = now or _now()

        def mutate(task: Task, _at: datetime) -> Change | None:
            if task.status == TaskStatus.OPEN and not bidding_window_elapsed(task, at):
                return None
            return _award(task)

        applied = await _apply(task_id, mutate, operation="auto_award", now=at)
        if applied.changed:
            await _notify_award(applied.task)
        return applied


# Execution and verification


async def request_verification(*, task_id: str, worker_id: str) -> Task:
    """Submit awarded work for council verification.

    Raises:
        PermissionDeniedError: The worker is not the assignee
        InvalidTransitionError: The task is not awarded
    """
    with span("task_service.request_verification"):
        await user_service.require_active_member(worker_id)

        def mutate(task: Task, _at: datetime) -> Change | None:
            if task.status in {TaskStatus.AWARDED, TaskStatus.VERIFICATION} and task.awarded_to != worker_id:
                msg = f"Only the assignee may submit task {task.id} for verification"
                raise PermissionDeniedError(msg)
            if task.status == TaskStatus.VERIFICATION:
                return None
            state_machine.ensure_transition(task, TaskStatus.VERIFICATION)
            return Change(state_machine.transition(task, TaskStatus.VERIFICATION))

        applied = await _apply(task_id, mutate, operation="request_verification")
        task = applied.task

        if applied.changed:

            async def intents() -> list[NotificationIntent]:
                return [
                    NotificationIntent(
                        recipients=await notification_service.council_recipients(exclude=[worker_id]),
                        subject=f"Verification requested: {task.title}",
                        body=f"The work on '{task.title}' is done and awaits verification.",
                    )
                ]

            await _notify_after_commit(intents)
        return task


def _ensure_can_verify(task: Task, verifier: Member) -> None:
    require_capability(verifier, Capability.VERIFY)
    if task.awarded_to == verifier.id:
        msg = f"Member {verifier.id} cannot verify their own work on task {task.id}"
        raise PermissionDeniedError(msg)


async def reject_work(*, task_id: str, verifier_id: str) -> Task:
    """Send submitted work back to the assignee.

    Raises:
        PermissionDeniedError: The verifier may not verify, or is the assignee
        InvalidTransitionError: The task is not under verification
    """
    with span("task_service.reject_work"):
        verifier = await user_service.require_active_member(verifier_id)
        require_capability(verifier, Capability.VERIFY)

        def mutate(task: Task, _at: datetime) -> Change | None:
            if task.status == TaskStatus.AWARDED:
                return None
            state_machine.ensure_transition(task, TaskStatus.AWARDED)
            _ensure_can_verify(task, verifier)
            return Change(state_machine.transition(task, TaskStatus.AWARDED))

        applied = await _apply(task_id, mutate, operation="reject_work")
        task = applied.task

        if applied.changed:

            async def intents() -> list[NotificationIntent]:
                return [
                    NotificationIntent(
                        recipients=frozenset({task.awarded_to}) if task.awarded_to else frozenset(),
                        subject=f"Work not accepted: {task.title}",
                        body=f"The council did not accept the work on '{task.title}'. Please redo it and resubmit.",
                    )
                ]

            await _notify_after_commit(intents)
        return task


async def complete_task(*, task_id: str, verifier_id: str) -> Task:
    """Accept submitted work, complete the task and post its ledger entry atomically.

    Completing an already completed task is a no-op and posts nothing.

    Raises:
        PermissionDeniedError: The verifier may not verify, or is the assignee
        InvalidTransitionError: The task is not under verification
    """
    with span("task_service.complete_task"):
        verifier = await user_service.require_active_member(verifier_id)
        require_capability(verifier, Capability.VERIFY)

        def mutate(task: Task, now: datetime) -> Change | None:
            if task.status == TaskStatus.COMPLETED:
                return None
            state_machine.ensure_transition(task, TaskStatus.COMPLETED)
            _ensure_can_verify(task, verifier)
            completed = state_machine.transition(
                task,
                TaskStatus.COMPLETED,
                completion_at=now,
                validated_by=verifier.id,
            )
            return Change(completed, ledger_entry=settlement.build_ledger_entry(completed, now))

        applied = await _apply(task_id, mutate, operation="complete_task")
        task = applied.task

        if applied.changed:

            async def intents() -> list[NotificationIntent]:
                return [
                    NotificationIntent(
                        recipients=frozenset(r for r in (task.awarded_to, task.created_by) if r),
                        subject=f"Completed: {task.title}",
                        body=f"'{task.title}' was verified and completed for {task.awarded_amount}.",
                    )
                ]

            await _notify_after_commit(intents)
        return task


# Ratings


async def rate_task(*, task_id: str, author_id: str, stars: int, comment: str = "") -> Task:
    """Rate a completed task.

    Raises:
        InvalidInputError: Stars outside the allowed range
        InvalidTransitionError: The task is not completed
    """
    with span("task_service.rate_task"):
        author = await user_service.require_active_member(author_id)
        require_capability(author, Capability.RATE)
        try:
            payload = RatingCreate(stars=stars, comment=comment)
        except ValidationError as e:
            raise InvalidInputError(str(e)) from e

        def mutate(task: Task, now: datetime) -> Change | None:
            if task.status != TaskStatus.COMPLETED:
                msg = f"Task {task.id} is {task.status}, only completed tasks can be rated"
                raise InvalidTransitionError(msg)
            rating = Rating(stars=payload.stars, comment=payload.comment, at=now, author_ref=_author_ref(author.id))
            return Change(task.model_copy(update={"ratings": [*task.ratings, rating]}))

        applied = await _apply(task_id, mutate, operation="rate_task")
        return applied.task


async def delete_rating(*, task_id: str, index: int, actor_id: str) -> Task:
    """Soft-delete a rating, keeping it with deletion metadata.

    ``index`` picks the rating as the moderator saw it. Retries after a lost write
    race act on that same rating, and do nothing if another moderator already
    removed it.

    Raises:
        PermissionDeniedError: The actor may not moderate ratings
        NotFoundError: No rating at this index
    """
    with span("task_service.delete_rating"):
        actor = await user_service.require_active_member(actor_id)
        require_capability(actor, Capability.MODERATE_RATINGS)

        seen = await repository.get_task(task_id)
        if not 0 <= index < len(seen.ratings):
            msg = f"Task {task_id} has no rating at index {index}"
            raise NotFoundError(msg)
        target = seen.ratings[index].key

        def mutate(task: Task, now: datetime) -> Change | None:
            removed = next((r for r in task.ratings if r.key == target), None)
            if removed is None:
                return None
            deleted = DeletedRating(**removed.model_dump(), deleted_at=now, deleted_by=actor.id)
            return Change(
                task.model_copy(
                    update={
                        "ratings": [r for r in task.ratings if r.key != target],
                        "deleted_ratings": [*task.deleted_ratings, deleted],
                    }
                )
            )

        applied = await _apply(task_id, mutate, operation="delete_rating")
        return applied.task


# Administration


async def delete_task(*, task_id: str, actor_id: str) -> None:
    """Hard-delete a task. Its ledger entry, if any, is kept.

    Raises:
        PermissionDeniedError: The actor is not an administrator
        NotFoundError: The task does not exist
    """
    with span("task_service.delete_task"):
        actor = await user_service.require_active_member(actor_id)
        require_capability(actor, Capability.ADMINISTER)
        await repository.delete_task(task_id)
        log_with_task_context(logger, "warning", "Task deleted", task_id=task_id, actor_id=actor_id)


async def list_ledger(*, actor_id: str) -> list[LedgerEntry]:
    """List ledger entries, newest first."""
    actor = await user_service.require_active_member(actor_id)
    require_capability(actor, Capability.VIEW_LEDGER)
    return await repository.list_ledger_entries()


async def delete_ledger_entry(*, entry_id: str, actor_id: str) -> None:
    """Delete a ledger entry (administrative correction).

    Raises:
        PermissionDeniedError: The actor is not an administrator
        NotFoundError: The entry does not exist
    """
    with span("task_service.delete_ledger_entry"):
        actor = await user_service.require_active_member(actor_id)
        require_capability(actor, Capability.ADMINISTER)
        await repository.delete_ledger_entry(entry_id)
        logger.warning("Ledger entry %s deleted by %s", entry_id, actor_id)
