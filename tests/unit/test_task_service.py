"""Tests for the task lifecycle service against a real SQLite store."""

from datetime import timedelta

import pytest

from src.core import db_client
from src.core.config import settings
from src.core.errors import (
    BidNotCompetitiveError,
    DuplicateVoteError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from src.domain.ledger import LedgerEntryType
from src.domain.task import Task, TaskScope, TaskStatus
from src.domain.user import Member, MemberStatus
from src.modules.tasks import repository, service
from src.services import notification_service, user_service


async def propose(members: dict[str, Member], *, proposer: str = "alice", **overrides) -> Task:
    fields = {"title": "Replace hallway bulb", "scope": TaskScope.SHARED, "starting_price": 15}
    fields.update(overrides)
    return await service.create_task(proposer_id=members[proposer].id, **fields)


async def open_task(members: dict[str, Member], **overrides) -> Task:
    task = await propose(members, **overrides)
    await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)
    return await service.approve_task(task_id=task.id, approver_id=members["council_b"].id)


async def awarded_task(members: dict[str, Member], **overrides) -> Task:
    task = await open_task(members, **overrides)
    await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=10)
    return await service.award_lowest(task_id=task.id, actor_id=members["alice"].id)


async def under_verification(members: dict[str, Member], **overrides) -> Task:
    task = await awarded_task(members, **overrides)
    return await service.request_verification(task_id=task.id, worker_id=members["bob"].id)


class TestCreateTask:
    @pytest.mark.unit
    async def test_owner_proposal_starts_pending(self, members, sent_notifications) -> None:
        task = await propose(members)

        assert task.status == TaskStatus.PENDING
        assert task.approvals == []
        assert task.created_by == members["alice"].id
        assert sent_notifications[0]["subject"] == "Approval needed: Replace hallway bulb"
        assert members["alice"].id not in sent_notifications[0]["recipients"]
        assert members["council_a"].id in sent_notifications[0]["recipients"]

    @pytest.mark.unit
    async def test_council_proposer_counts_as_first_approval(self, members, sent_notifications) -> None:
        task = await propose(members, proposer="council_a")

        assert task.status == TaskStatus.PENDING
        assert [v.by for v in task.approvals] == [members["council_a"].id]

        opened = await service.approve_task(task_id=task.id, approver_id=members["council_b"].id)
        assert opened.status == TaskStatus.OPEN

    @pytest.mark.unit
    async def test_admin_proposal_is_open_immediately(self, members, sent_notifications) -> None:
        task = await propose(members, proposer="admin")

        assert task.status == TaskStatus.OPEN
        assert sent_notifications[0]["subject"] == "Open for bids: Replace hallway bulb"

    @pytest.mark.unit
    @pytest.mark.parametrize("price", [0, 101])
    async def test_price_outside_bounds_is_invalid(self, members, price: float) -> None:
        with pytest.raises(InvalidInputError):
            await propose(members, starting_price=price)

        assert await repository.list_tasks() == []

    @pytest.mark.unit
    async def test_banned_member_cannot_propose(self, members) -> None:
        await user_service.set_member_status(members["alice"].id, MemberStatus.BANNED)

        with pytest.raises(PermissionDeniedError):
            await propose(members)

    @pytest.mark.unit
    async def test_unknown_member_cannot_propose(self, members) -> None:
        with pytest.raises(NotFoundError):
            await service.create_task(
                proposer_id="999", title="Fix door", scope=TaskScope.SHARED, starting_price=10
            )


class TestApproval:
    @pytest.mark.unit
    async def test_opens_after_exactly_two_council_approvals(self, members, sent_notifications) -> None:
        task = await propose(members)

        after_one = await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)
        assert after_one.status == TaskStatus.PENDING

        after_two = await service.approve_task(task_id=task.id, approver_id=members["council_b"].id)
        assert after_two.status == TaskStatus.OPEN
        assert after_two.bidding_started_at is None
        assert any(n["subject"] == "Open for bids: Replace hallway bulb" for n in sent_notifications)

    @pytest.mark.unit
    async def test_single_admin_approval_opens(self, members) -> None:
        task = await propose(members)

        opened = await service.approve_task(task_id=task.id, approver_id=members["admin"].id)

        assert opened.status == TaskStatus.OPEN

    @pytest.mark.unit
    async def test_repeat_approval_does_not_change_count(self, members) -> None:
        task = await propose(members)
        await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)

        with pytest.raises(DuplicateVoteError):
            await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)

        stored = await service.get_task(task.id)
        assert len(stored.approvals) == 1
        assert stored.status == TaskStatus.PENDING

    @pytest.mark.unit
    async def test_approving_open_task_is_noop(self, members) -> None:
        task = await open_task(members)

        again = await service.approve_task(task_id=task.id, approver_id=members["council_c"].id)

        assert again.status == TaskStatus.OPEN
        assert again.version == task.version
        assert len(again.approvals) == 2

    @pytest.mark.unit
    async def test_owner_cannot_approve(self, members) -> None:
        task = await propose(members)

        with pytest.raises(PermissionDeniedError):
            await service.approve_task(task_id=task.id, approver_id=members["bob"].id)

    @pytest.mark.unit
    async def test_quorum_size_is_configurable(self, members, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "council_min_approvals", 3)
        task = await open_task(members)
        assert task.status == TaskStatus.PENDING

        opened = await service.approve_task(task_id=task.id, approver_id=members["council_c"].id)
        assert opened.status == TaskStatus.OPEN


class TestRejection:
    @pytest.mark.unit
    async def test_single_rejection_is_final(self, members, sent_notifications) -> None:
        """Council rejection is terminal and blocks later approvals."""
        task = await propose(members)

        rejected = await service.reject_task(task_id=task.id, rejecter_id=members["council_a"].id)

        assert rejected.status == TaskStatus.REJECTED
        assert [v.by for v in rejected.rejections] == [members["council_a"].id]
        with pytest.raises(InvalidTransitionError):
            await service.approve_task(task_id=task.id, approver_id=members["council_b"].id)
        assert sent_notifications[-1]["recipients"] == {members["alice"].id}

    @pytest.mark.unit
    async def test_rejecting_rejected_task_is_noop(self, members) -> None:
        task = await propose(members)
        first = await service.reject_task(task_id=task.id, rejecter_id=members["council_a"].id)

        again = await service.reject_task(task_id=task.id, rejecter_id=members["council_b"].id)

        assert again.version == first.version
        assert len(again.rejections) == 1

    @pytest.mark.unit
    async def test_approver_cannot_reject(self, members) -> None:
        task = await propose(members)
        await service.approve_task(task_id=task.id, approver_id=members["council_a"].id)

        with pytest.raises(DuplicateVoteError):
            await service.reject_task(task_id=task.id, rejecter_id=members["council_a"].id)

    @pytest.mark.unit
    async def test_open_task_cannot_be_rejected(self, members) -> None:
        task = await open_task(members)

        with pytest.raises(InvalidTransitionError):
            await service.reject_task(task_id=task.id, rejecter_id=members["council_c"].id)


class TestBiddingAndAward:
    @pytest.mark.unit
    async def test_reverse_auction_then_auto_award(self, members, sent_notifications) -> None:
        """Price 15: bid 12 ok, 13 not competitive, 10 ok; auto-award picks 10."""
        task = await open_task(members)
        assert task.status == TaskStatus.OPEN

        task = await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=12)
        with pytest.raises(BidNotCompetitiveError):
            await service.place_bid(task_id=task.id, bidder_id=members["carol"].id, amount=13)
        task = await service.place_bid(task_id=task.id, bidder_id=members["carol"].id, amount=10)

        assert [b.amount for b in task.bids] == [12, 10]
        assert any(n["subject"].startswith("Outbid") and n["recipients"] == {members["bob"].id} for n in sent_notifications)

        applied = await service.auto_award(task_id=task.id, now=task.bidding_started_at + timedelta(hours=24))

        assert applied.changed
        assert applied.task.status == TaskStatus.AWARDED
        assert applied.task.awarded_to == members["carol"].id
        assert applied.task.awarded_amount == 10

        won = next(n for n in sent_notifications if n["subject"].startswith("You won"))
        assert won["recipients"] == {members["carol"].id}
        outcome = next(n for n in sent_notifications if n["subject"].startswith("Awarded"))
        assert members["council_a"].id in outcome["recipients"]
        assert members["admin"].id in outcome["recipients"]

    @pytest.mark.unit
    async def test_proposer_cannot_bid_on_own_task(self, members) -> None:
        task = await open_task(members)

        with pytest.raises(PermissionDeniedError):
            await service.place_bid(task_id=task.id, bidder_id=members["alice"].id, amount=5)

    @pytest.mark.unit
    async def test_first_bid_sets_window_once(self, members) -> None:
        task = await open_task(members)

        first = await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=12)
        second = await service.place_bid(task_id=task.id, bidder_id=members["carol"].id, amount=11)

        assert first.bidding_started_at is not None
        assert second.bidding_started_at == first.bidding_started_at

    @pytest.mark.unit
    async def test_bid_on_pending_task_is_invalid(self, members) -> None:
        task = await propose(members)

        with pytest.raises(InvalidTransitionError):
            await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=5)

    @pytest.mark.unit
    async def test_auto_award_inside_window_is_noop(self, members) -> None:
        task = await open_task(members)
        task = await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=12)

        applied = await service.auto_award(task_id=task.id, now=task.bidding_started_at + timedelta(hours=23))

        assert not applied.changed
        assert applied.task.status == TaskStatus.OPEN

    @pytest.mark.unit
    async def test_late_bid_before_award_can_still_win(self, members) -> None:
        task = await open_task(members)
        task = await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=12)
        late = task.bidding_started_at + timedelta(hours=30)

        await service.place_bid(task_id=task.id, bidder_id=members["carol"].id, amount=9)
        applied = await service.auto_award(task_id=task.id, now=late)

        assert applied.task.awarded_to == members["carol"].id

    @pytest.mark.unit
    async def test_manual_award_only_by_proposer(self, members) -> None:
        task = await open_task(members)
        await service.place_bid(task_id=task.id, bidder_id=members["bob"].id, amount=12)

        with pytest.raises(PermissionDeniedError):
            await service.award_lowest(task_id=task.id, actor_id=members["council_a"].id)

    @pytest.mark.unit
    async def test_manual_award_needs_a_bid(self, members) -> None:
        task = await open_task(members)

        with pytest.raises(InvalidTransitionError):
            await service.award_lowest(task_id=task.id, actor_id=members["alice"].id)

    @pytest.mark.unit
    async def test_award_is_idempotent(self, members) -> None:
        task = await awarded_task(members)

        again = await service.award_lowest(task_id=task.id, actor_id=members["alice"].id)
        auto = await service.auto_award(task_id=task.id, now=task.bidding_started_at + timedelta(days=2))

        assert again.version == task.version
        assert not auto.changed
        assert auto.task.awarded_to == members["bob"].id

    @pytest.mark.unit
    async def test_award_on_pending_task_is_invalid(self, members) -> None:
        task = await propose(members)

        with pytest.raises(InvalidTransitionError):
            await service.award_lowest(task_id=task.id, actor_id=members["alice"].id)


class TestVerification:
    @pytest.mark.unit
    async def test_rework_loop_then_completion(self, members) -> None:
        """Rejected work returns to awarded; resubmission and acceptance post one shared-scope entry."""
        task = await under_verification(members)
        assert task.status == TaskStatus.VERIFICATION

        reworked = await service.reject_work(task_id=task.id, verifier_id=members["council_a"].id)
        assert reworked.status == TaskStatus.AWARDED
        assert reworked.awarded_to == members["bob"].id
        assert reworked.awarded_amount == 10

        await service.request_verification(task_id=task.id, worker_id=members["bob"].id)
        completed = await service.complete_task(task_id=task.id, verifier_id=members["council_b"].id)

        assert completed.status == TaskStatus.COMPLETED
        assert completed.validated_by == members["council_b"].id
        assert completed.completion_at is not None

        entries = await repository.list_ledger_entries()
        assert len(entries) == 1
        assert entries[0].task_id == task.id
        assert entries[0].type == LedgerEntryType.CHARGE_CREDIT
        assert entries[0].payer is None
        assert entries[0].payee == members["bob"].id
        assert entries[0].amount == completed.awarded_amount

    @pytest.mark.unit
    async def test_private_unit_is_paid_by_proposer(self, members) -> None:
        task = await under_verification(members, scope=TaskScope.PRIVATE_UNIT)

        await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)

        entry = await repository.get_ledger_entry_for_task(task.id)
        assert entry.type == LedgerEntryType.APARTMENT_PAYMENT
        assert entry.payer == members["alice"].id

    @pytest.mark.unit
    async def test_completing_twice_posts_once(self, members) -> None:
        task = await under_verification(members)

        first = await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)
        second = await service.complete_task(task_id=task.id, verifier_id=members["council_b"].id)

        assert second.version == first.version
        assert second.validated_by == members["council_a"].id
        assert len(await repository.list_ledger_entries()) == 1

    @pytest.mark.unit
    async def test_only_assignee_requests_verification(self, members) -> None:
        task = await awarded_task(members)

        with pytest.raises(PermissionDeniedError):
            await service.request_verification(task_id=task.id, worker_id=members["carol"].id)

    @pytest.mark.unit
    async def test_resubmission_under_verification_checks_assignee(self, members) -> None:
        task = await under_verification(members)

        with pytest.raises(PermissionDeniedError):
            await service.request_verification(task_id=task.id, worker_id=members["carol"].id)

        again = await service.request_verification(task_id=task.id, worker_id=members["bob"].id)
        assert again.status == TaskStatus.VERIFICATION
        assert again.version == task.version

    @pytest.mark.unit
    async def test_owner_cannot_verify(self, members) -> None:
        task = await under_verification(members)

        with pytest.raises(PermissionDeniedError):
            await service.complete_task(task_id=task.id, verifier_id=members["carol"].id)

    @pytest.mark.unit
    async def test_assignee_cannot_verify_own_work(self, members) -> None:
        task = await open_task(members)
        await service.place_bid(task_id=task.id, bidder_id=members["council_c"].id, amount=10)
        await service.award_lowest(task_id=task.id, actor_id=members["alice"].id)
        await service.request_verification(task_id=task.id, worker_id=members["council_c"].id)

        with pytest.raises(PermissionDeniedError):
            await service.complete_task(task_id=task.id, verifier_id=members["council_c"].id)

    @pytest.mark.unit
    async def test_cannot_complete_awarded_task(self, members) -> None:
        task = await awarded_task(members)

        with pytest.raises(InvalidTransitionError):
            await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)
        assert await repository.list_ledger_entries() == []

    @pytest.mark.unit
    async def test_settlement_failure_aborts_completion(self, members, monkeypatch: pytest.MonkeyPatch) -> None:
        task = await under_verification(members)
        original_insert = db_client.Transaction.insert

        async def failing_insert(self, *, collection, data):
            if collection == "ledger_entries":
                msg = "ledger unavailable"
                raise db_client.DatabaseError(msg)
            return await original_insert(self, collection=collection, data=data)

        monkeypatch.setattr(db_client.Transaction, "insert", failing_insert)

        with pytest.raises(db_client.DatabaseError):
            await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)

        stored = await service.get_task(task.id)
        assert stored.status == TaskStatus.VERIFICATION
        assert stored.completion_at is None


class TestRatings:
    @pytest.mark.unit
    async def test_rate_and_soft_delete(self, members) -> None:
        task = await under_verification(members)
        await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)

        rated = await service.rate_task(task_id=task.id, author_id=members["alice"].id, stars=4, comment="Quick")
        assert rated.ratings[0].stars == 4
        assert rated.ratings[0].author_ref != members["alice"].id
        assert len(rated.ratings[0].author_ref) == 10

        cleaned = await service.delete_rating(task_id=task.id, index=0, actor_id=members["council_b"].id)
        assert cleaned.ratings == []
        assert cleaned.deleted_ratings[0].comment == "Quick"
        assert cleaned.deleted_ratings[0].deleted_by == members["council_b"].id

    @pytest.mark.unit
    async def test_only_completed_tasks_can_be_rated(self, members) -> None:
        task = await awarded_task(members)

        with pytest.raises(InvalidTransitionError):
            await service.rate_task(task_id=task.id, author_id=members["alice"].id, stars=5)

    @pytest.mark.unit
    @pytest.mark.parametrize("stars", [0, 6])
    async def test_stars_out_of_range(self, members, stars: int) -> None:
        task = await propose(members)

        with pytest.raises(InvalidInputError):
            await service.rate_task(task_id=task.id, author_id=members["alice"].id, stars=stars)

    @pytest.mark.unit
    async def test_owner_cannot_delete_rating(self, members) -> None:
        task = await under_verification(members)
        await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)
        await service.rate_task(task_id=task.id, author_id=members["alice"].id, stars=2)

        with pytest.raises(PermissionDeniedError):
            await service.delete_rating(task_id=task.id, index=0, actor_id=members["bob"].id)
        with pytest.raises(NotFoundError):
            await service.delete_rating(task_id=task.id, index=3, actor_id=members["council_a"].id)


class TestAdministration:
    @pytest.mark.unit
    async def test_admin_deletes_task_in_any_state(self, members) -> None:
        task = await awarded_task(members)

        await service.delete_task(task_id=task.id, actor_id=members["admin"].id)

        with pytest.raises(NotFoundError):
            await service.get_task(task.id)

    @pytest.mark.unit
    async def test_council_cannot_delete_task(self, members) -> None:
        task = await propose(members)

        with pytest.raises(PermissionDeniedError):
            await service.delete_task(task_id=task.id, actor_id=members["council_a"].id)

    @pytest.mark.unit
    async def test_ledger_listing_and_deletion(self, members) -> None:
        task = await under_verification(members)
        await service.complete_task(task_id=task.id, verifier_id=members["council_a"].id)

        entries = await service.list_ledger(actor_id=members["council_b"].id)
        assert len(entries) == 1

        with pytest.raises(PermissionDeniedError):
            await service.list_ledger(actor_id=members["bob"].id)
        with pytest.raises(PermissionDeniedError):
            await service.delete_ledger_entry(entry_id=entries[0].id, actor_id=members["council_b"].id)

        await service.delete_ledger_entry(entry_id=entries[0].id, actor_id=members["admin"].id)
        assert await service.list_ledger(actor_id=members["admin"].id) == []
        # Accounting correction only, task state untouched
        assert (await service.get_task(task.id)).status == TaskStatus.COMPLETED


class TestNotificationIsolation:
    @pytest.mark.unit
    async def test_notifier_failure_does_not_roll_back(self, members, monkeypatch: pytest.MonkeyPatch) -> None:
        def exploding_dispatch(_intents) -> None:
            msg = "relay down"
            raise RuntimeError(msg)

        monkeypatch.setattr(notification_service, "dispatch_in_background", exploding_dispatch)

        task = await propose(members, proposer="admin")

        assert (await service.get_task(task.id)).status == TaskStatus.OPEN
