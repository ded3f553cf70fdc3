"""Member directory: lookup, registration and moderation of building members."""

import logging
from typing import Any

from src.core import db_client
from src.core.config import constants
from src.core.errors import InvalidInputError, PermissionDeniedError
from src.core.logging import span
from src.domain.create_models import MemberCreate
from src.domain.user import Member, MemberRole, MemberStatus


logger = logging.getLogger(__name__)

MEMBERS = "members"


def _record_to_member(record: dict[str, Any]) -> Member:
    return Member.model_validate(record)


async def get_member(member_id: str) -> Member:
    """Fetch a member by id.

    Raises:
        NotFoundError: If no member has this id
    """
    record = await db_client.get_record(collection=MEMBERS, record_id=member_id)
    return _record_to_member(record)


async def require_active_member(member_id: str) -> Member:
    """Fetch a member and refuse banned accounts.

    Raises:
        NotFoundError: If no member has this id
        PermissionDeniedError: If the member is banned
    """
    member = await get_member(member_id)
    if member.status != MemberStatus.ACTIVE:
        msg = f"Member {member_id} is {member.status}"
        logger.warning("Rejected request from inactive member %s", member_id)
        raise PermissionDeniedError(msg)
    return member


async def create_member(payload: MemberCreate) -> Member:
    """Register a member.

    Raises:
        InvalidInputError: If the email is already registered
        StorageError: If the database operation fails
    """
    with span("user_service.create_member"):
        existing = await db_client.get_first_record(collection=MEMBERS, filters={"email": payload.email})
        if existing:
            msg = f"Member with email {payload.email} already exists"
            raise InvalidInputError(msg)

        record = await db_client.create_record(collection=MEMBERS, data=payload.model_dump(mode="json"))
        logger.info("Registered member %s (%s)", record["id"], payload.role)
        return _record_to_member(record)


async def list_members(
    *,
    roles: list[MemberRole] | None = None,
    status: MemberStatus | None = MemberStatus.ACTIVE,
) -> list[Member]:
    """List members, by default only active ones, optionally restricted to some roles."""
    filters: dict[str, Any] = {}
    if status is not None:
        filters["status"] = str(status)
    if roles is not None:
        filters["role"] = [str(role) for role in roles]

    records = await db_client.list_records(
        collection=MEMBERS,
        filters=filters,
        per_page=constants.DEFAULT_PER_PAGE_LIMIT,
    )
    return [_record_to_member(r) for r in records]


async def set_member_status(member_id: str, status: MemberStatus) -> Member:
    """Ban or reinstate a member."""
    with span("user_service.set_member_status"):
        record = await db_client.update_record(collection=MEMBERS, record_id=member_id, data={"status": str(status)})
        logger.info("Member %s is now %s", member_id, status)
        return _record_to_member(record)
