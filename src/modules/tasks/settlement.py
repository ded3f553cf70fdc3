"""Ledger postings for completed tasks."""

from datetime import datetime

from src.core.errors import InvalidTransitionError
from src.domain.ledger import LedgerEntry, LedgerEntryType
from src.domain.task import Task, TaskScope


def build_ledger_entry(task: Task, at: datetime) -> LedgerEntry:
    """Build the single posting for an awarded task.

    Shared tasks are charged to the collective; private-unit tasks are paid by the proposer.
    """
    if task.id is None or task.awarded_to is None or task.awarded_amount is None:
        msg = f"Task {task.id} has no award to settle"
        raise InvalidTransitionError(msg)

    if task.scope == TaskScope.SHARED:
        entry_type, payer = LedgerEntryType.CHARGE_CREDIT, None
    else:
        entry_type, payer = LedgerEntryType.APARTMENT_PAYMENT, task.created_by

    return LedgerEntry(
        task_id=task.id,
        type=entry_type,
        payer=payer,
        payee=task.awarded_to,
        amount=task.awarded_amount,
        at=at,
        task_title=task.title,
        task_creator=task.created_by,
    )
