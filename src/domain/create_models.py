"""Pydantic models for validating inbound create requests."""

from pydantic import BaseModel, Field, field_validator

from src.core.config import constants, settings
from src.domain.task import TaskCategory, TaskScope
from src.domain.user import MemberRole, MemberStatus


class TaskCreate(BaseModel):
    """Pydantic model for proposing a task."""

    title: str = Field(..., description="Short title of the job")
    category: TaskCategory = Field(default=TaskCategory.MISC, description="Job category")
    scope: TaskScope = Field(..., description="shared or private_unit")
    location: str = Field(default="", description="Where in the building")
    details: str = Field(default="", description="Free-text description")
    photo: str | None = Field(default=None, description="Reference to an externally stored photo")
    starting_price: float = Field(..., description="Maximum price the proposer is willing to pay")
    warranty_days: int = Field(default=0, description="Warranty period after completion, in days")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate title is not blank."""
        v = v.strip()
        if not v:
            msg = "Title must not be empty"
            raise ValueError(msg)
        return v

    @field_validator("starting_price")
    @classmethod
    def validate_starting_price(cls, v: float) -> float:
        """Validate starting price is positive and within the configured ceiling."""
        if v <= 0:
            msg = "Starting price must be greater than 0"
            raise ValueError(msg)
        if v > settings.max_task_price:
            msg = f"Starting price must not exceed {settings.max_task_price}"
            raise ValueError(msg)
        return v

    @field_validator("warranty_days")
    @classmethod
    def validate_warranty_days(cls, v: int) -> int:
        if v < 0:
            msg = "Warranty days must not be negative"
            raise ValueError(msg)
        return v


class BidCreate(BaseModel):
    """Pydantic model for placing a bid."""

    amount: float = Field(..., description="Offered price")
    note: str = Field(default="", description="Optional note from the bidder")


class RatingCreate(BaseModel):
    """Pydantic model for rating a completed task."""

    stars: int = Field(..., description="Star rating")
    comment: str = Field(default="", description="Optional comment")

    @field_validator("stars")
    @classmethod
    def validate_stars(cls, v: int) -> int:
        if not constants.RATING_MIN_STARS <= v <= constants.RATING_MAX_STARS:
            msg = f"Stars must be between {constants.RATING_MIN_STARS} and {constants.RATING_MAX_STARS}"
            raise ValueError(msg)
        return v


class MemberCreate(BaseModel):
    """Pydantic model for registering a member."""

    email: str = Field(..., description="Notification address")
    first_name: str = Field(default="")
    last_name: str = Field(default="")
    role: MemberRole = Field(default=MemberRole.OWNER, description="Member role in the building")
    status: MemberStatus = Field(default=MemberStatus.ACTIVE)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate email has a local part and a domain."""
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            msg = "Email must look like name@example.com"
            raise ValueError(msg)
        return v
