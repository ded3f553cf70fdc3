"""Task domain models and enums."""

from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    PENDING = "pending"
    OPEN = "open"
    AWARDED = "awarded"
    VERIFICATION = "verification"
    COMPLETED = "completed"
    REJECTED = "rejected"


class TaskScope(StrEnum):
    """Who bears the cost of a task."""

    SHARED = "shared"  # Common areas, paid by the collective
    PRIVATE_UNIT = "private_unit"  # Inside one unit, paid by the proposer


class TaskCategory(StrEnum):
    """Fixed set of maintenance job categories."""

    LIGHT_BULB = "light_bulb"
    DOOR = "door"
    BULKY_ITEMS = "bulky_items"
    MISC = "misc"


class Bid(BaseModel):
    """A reverse-auction offer. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    by: str = Field(..., description="Bidder identity")
    amount: float = Field(..., gt=0, description="Offered price")
    note: str = Field(default="", description="Optional note from the bidder")
    at: datetime = Field(..., description="Server timestamp of submission")


class Vote(BaseModel):
    """An approval or rejection cast by a council member."""

    model_config = ConfigDict(frozen=True)

    by: str = Field(..., description="Voter identity")
    at: datetime = Field(..., description="When the vote was recorded")


class Rating(BaseModel):
    """Feedback left on a completed task."""

    model_config = ConfigDict(frozen=True)

    stars: int = Field(..., ge=1, le=5)
    comment: str = Field(default="")
    at: datetime
    author_ref: str = Field(..., description="Pseudonymous reference to the author")

    @property
    def key(self) -> tuple[datetime, str]:
        """Identifies this rating regardless of its position in the list."""
        return (self.at, self.author_ref)


class DeletedRating(Rating):
    """A soft-deleted rating kept for audit."""

    deleted_at: datetime
    deleted_by: str


class Task(BaseModel):
    """Task data transfer object."""

    id: str | None = Field(default=None, description="Unique task ID (None until stored)")
    version: int = Field(default=1, description="Optimistic concurrency version")

    title: str = Field(..., description="Short title of the job")
    category: TaskCategory = Field(default=TaskCategory.MISC)
    scope: TaskScope = Field(..., description="shared or private_unit")
    location: str = Field(default="", description="Where in the building")
    details: str = Field(default="", description="Free-text description")
    photo: str | None = Field(default=None, description="Reference to an externally stored photo")

    starting_price: float = Field(..., gt=0)
    warranty_days: int = Field(default=0, ge=0)

    status: TaskStatus = Field(default=TaskStatus.PENDING)
    created_by: str = Field(..., description="Proposer identity")
    created_at: datetime

    bidding_started_at: datetime | None = None
    bids: list[Bid] = Field(default_factory=list)

    approvals: list[Vote] = Field(default_factory=list)
    rejections: list[Vote] = Field(default_factory=list)

    awarded_to: str | None = None
    awarded_amount: float | None = None

    completion_at: datetime | None = None
    validated_by: str | None = None

    ratings: list[Rating] = Field(default_factory=list)
    deleted_ratings: list[DeletedRating] = Field(default_factory=list)

    def has_voted(self, identity: str) -> bool:
        """Whether the identity already approved or rejected this task."""
        return any(vote.by == identity for vote in (*self.approvals, *self.rejections))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def warranty_until(self) -> datetime | None:
        """End of the warranty period, once the task is completed."""
        if self.completion_at is None or not self.warranty_days:
            return None
        return self.completion_at + timedelta(days=self.warranty_days)
