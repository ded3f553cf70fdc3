"""HTTP interface for the task workflow."""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Query, Request, Response, status
from fastapi.responses import JSONResponse

from src.core.errors import classify_error_with_response
from src.domain.create_models import BidCreate, MemberCreate, RatingCreate, TaskCreate
from src.domain.ledger import LedgerEntry
from src.domain.task import Task, TaskStatus
from src.domain.user import Capability, Member, MemberStatus, require_capability
from src.modules.tasks import service
from src.services import user_service


logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])

# Identity is asserted by the authenticating proxy in front of this service
MemberId = Annotated[str, Header(alias="X-Member-Id")]


async def task_engine_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate workflow errors into structured JSON responses."""
    error_response = classify_error_with_response(exc)
    logger.info(
        "request_failed",
        extra={"path": request.url.path, "code": error_response.code, "error": str(exc)},
    )
    return JSONResponse(
        status_code=error_response.http_status,
        content={
            "code": error_response.code,
            "message": error_response.message,
            "suggestion": error_response.suggestion,
            "retryable": error_response.retryable,
        },
    )


# Tasks


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def propose_task(payload: TaskCreate, member_id: MemberId) -> Task:
    """Propose a new task."""
    return await service.create_task(proposer_id=member_id, **payload.model_dump())


@router.get("/tasks")
async def list_tasks(task_status: Annotated[TaskStatus | None, Query(alias="status")] = None) -> list[Task]:
    """List tasks, newest first, optionally by status."""
    return await service.list_tasks(status=task_status)


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> Task:
    return await service.get_task(task_id)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, member_id: MemberId) -> Response:
    await service.delete_task(task_id=task_id, actor_id=member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/tasks/{task_id}/approve")
async def approve_task(task_id: str, member_id: MemberId) -> Task:
    return await service.approve_task(task_id=task_id, approver_id=member_id)


@router.post("/tasks/{task_id}/reject")
async def reject_task(task_id: str, member_id: MemberId) -> Task:
    return await service.reject_task(task_id=task_id, rejecter_id=member_id)


@router.post("/tasks/{task_id}/bids")
async def place_bid(task_id: str, payload: BidCreate, member_id: MemberId) -> Task:
    return await service.place_bid(task_id=task_id, bidder_id=member_id, amount=payload.amount, note=payload.note)


@router.post("/tasks/{task_id}/award")
async def award_task(task_id: str, member_id: MemberId) -> Task:
    """Award the task to its lowest bid before the bidding window ends."""
    return await service.award_lowest(task_id=task_id, actor_id=member_id)


@router.post("/tasks/{task_id}/verification")
async def request_verification(task_id: str, member_id: MemberId) -> Task:
    return await service.request_verification(task_id=task_id, worker_id=member_id)


@router.post("/tasks/{task_id}/reject-work")
async def reject_work(task_id: str, member_id: MemberId) -> Task:
    return await service.reject_work(task_id=task_id, verifier_id=member_id)


@router.post("/tasks/{task_id}/complete")
async def complete_task(task_id: str, member_id: MemberId) -> Task:
    return await service.complete_task(task_id=task_id, verifier_id=member_id)


@router.post("/tasks/{task_id}/ratings")
async def rate_task(task_id: str, payload: RatingCreate, member_id: MemberId) -> Task:
    return await service.rate_task(task_id=task_id, author_id=member_id, stars=payload.stars, comment=payload.comment)


@router.delete("/tasks/{task_id}/ratings/{index}")
async def delete_rating(task_id: str, index: int, member_id: MemberId) -> Task:
    return await service.delete_rating(task_id=task_id, index=index, actor_id=member_id)


# Ledger


@router.get("/ledger")
async def list_ledger(member_id: MemberId) -> list[LedgerEntry]:
    return await service.list_ledger(actor_id=member_id)


@router.delete("/ledger/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ledger_entry(entry_id: str, member_id: MemberId) -> Response:
    await service.delete_ledger_entry(entry_id=entry_id, actor_id=member_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Members


@router.post("/members", status_code=status.HTTP_201_CREATED)
async def register_member(payload: MemberCreate, member_id: MemberId) -> Member:
    """Register a member (administrators only)."""
    admin = await user_service.require_active_member(member_id)
    require_capability(admin, Capability.ADMINISTER)
    return await user_service.create_member(payload)


@router.put("/members/{target_id}/status")
async def set_member_status(target_id: str, member_status: MemberStatus, member_id: MemberId) -> Member:
    """Ban or reinstate a member (administrators only)."""
    admin = await user_service.require_active_member(member_id)
    require_capability(admin, Capability.ADMINISTER)
    return await user_service.set_member_status(target_id, member_status)

