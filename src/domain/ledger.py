"""Ledger domain models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntryType(StrEnum):
    """Kind of posting made when a task is settled."""

    CHARGE_CREDIT = "charge_credit"  # Shared scope, booked against the collective charges
    APARTMENT_PAYMENT = "apartment_payment"  # Private unit, paid by the proposer


class LedgerEntry(BaseModel):
    """A single monetary posting.

    ``payer`` is None when the collective pays. ``task_id`` is a reference only: the
    entry outlives the task, so title and creator are snapshotted at posting time.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    task_id: str
    type: LedgerEntryType
    payer: str | None = Field(default=None, description="Paying identity, None for the collective")
    payee: str = Field(..., description="Awarded worker identity")
    amount: float = Field(..., gt=0)
    at: datetime
    task_title: str = ""
    task_creator: str = ""
