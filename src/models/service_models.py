"""Pydantic models for service layer return types.

These models provide type safety at service boundaries for results that are not
domain entities themselves.
"""

from pydantic import BaseModel, Field


class NotificationResult(BaseModel):
    """Result of sending a notification to one member."""

    member_id: str
    email: str
    success: bool
    error: str | None = None


class NotificationIntent(BaseModel):
    """A message the workflow wants delivered once its state change is committed."""

    recipients: frozenset[str] = Field(..., description="Member identities to notify")
    subject: str
    body: str


class AutoAwardSummary(BaseModel):
    """Outcome of one auto-award scan."""

    scanned: int = 0
    awarded: list[str] = Field(default_factory=list, description="Ids of tasks awarded in this scan")
    skipped: int = 0
    failed: int = 0
