"""Domain models and DTOs."""

from src.domain.create_models import BidCreate, MemberCreate, RatingCreate, TaskCreate
from src.domain.ledger import LedgerEntry, LedgerEntryType
from src.domain.task import Bid, DeletedRating, Rating, Task, TaskCategory, TaskScope, TaskStatus, Vote
from src.domain.user import Capability, Member, MemberRole, MemberStatus


__all__ = [
    "Bid",
    "BidCreate",
    "Capability",
    "DeletedRating",
    "LedgerEntry",
    "LedgerEntryType",
    "Member",
    "MemberCreate",
    "MemberRole",
    "MemberStatus",
    "Rating",
    "RatingCreate",
    "Task",
    "TaskCategory",
    "TaskCreate",
    "TaskScope",
    "TaskStatus",
    "Vote",
]
