"""Member domain models, roles and capabilities."""

from enum import StrEnum

from pydantic import BaseModel, Field

from src.core.errors import PermissionDeniedError


class MemberRole(StrEnum):
    """Member role in the building."""

    OWNER = "owner"
    COUNCIL = "council"
    ADMIN = "admin"


class MemberStatus(StrEnum):
    """Member account status."""

    ACTIVE = "active"
    BANNED = "banned"


class Capability(StrEnum):
    """Actions a role may perform. Guards check capabilities, never roles."""

    PROPOSE = "propose"
    BID = "bid"
    RATE = "rate"
    VOTE = "vote"
    FORCE_OPEN = "force_open"
    VERIFY = "verify"
    MODERATE_RATINGS = "moderate_ratings"
    VIEW_LEDGER = "view_ledger"
    ADMINISTER = "administer"


_RESIDENT = frozenset({Capability.PROPOSE, Capability.BID, Capability.RATE})
_COUNCIL = _RESIDENT | {Capability.VOTE, Capability.VERIFY, Capability.MODERATE_RATINGS, Capability.VIEW_LEDGER}

ROLE_CAPABILITIES: dict[MemberRole, frozenset[Capability]] = {
    MemberRole.OWNER: _RESIDENT,
    MemberRole.COUNCIL: _COUNCIL,
    MemberRole.ADMIN: _COUNCIL | {Capability.FORCE_OPEN, Capability.ADMINISTER},
}


class Member(BaseModel):
    """Member data transfer object, as provided by the identity directory."""

    id: str = Field(..., description="Opaque member identity")
    email: str = Field(..., description="Address used for notifications")
    first_name: str = Field(default="")
    last_name: str = Field(default="")
    role: MemberRole = Field(default=MemberRole.OWNER)
    status: MemberStatus = Field(default=MemberStatus.ACTIVE)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.email


def has_capability(member: Member, capability: Capability) -> bool:
    """Return True if an active member's role grants the capability."""
    if member.status != MemberStatus.ACTIVE:
        return False
    return capability in ROLE_CAPABILITIES[member.role]


def require_capability(member: Member, capability: Capability) -> None:
    """Raise PermissionDeniedError unless the member holds the capability."""
    if not has_capability(member, capability):
        msg = f"Member {member.id} ({member.role}) is not allowed to {capability}"
        raise PermissionDeniedError(msg)
