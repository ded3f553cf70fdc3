"""Persistence of tasks and ledger entries on top of the SQLite client."""

import json
import logging
from typing import Any

from src.core import db_client
from src.core.config import constants
from src.core.logging import span
from src.domain.ledger import LedgerEntry
from src.domain.task import Task, TaskStatus


logger = logging.getLogger(__name__)

TASKS = "tasks"
LEDGER = "ledger_entries"

# Columns holding JSON arrays
_JSON_FIELDS = ("bids", "approvals", "rejections", "ratings", "deleted_ratings")


def _record_to_task(record: dict[str, Any]) -> Task:
    data = dict(record)
    for field in _JSON_FIELDS:
        raw = data.get(field)
        data[field] = json.loads(raw) if isinstance(raw, str) and raw else []
    return Task.model_validate(data)


def _task_to_row(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json", exclude={"id", "version", "warranty_until"})


def _ledger_to_row(entry: LedgerEntry) -> dict[str, Any]:
    return entry.model_dump(mode="json", exclude={"id"})


async def get_task(task_id: str) -> Task:
    """Load a task by id, raising NotFoundError if it does not exist."""
    record = await db_client.get_record(collection=TASKS, record_id=task_id)
    return _record_to_task(record)


async def list_tasks(*, status: TaskStatus | None = None) -> list[Task]:
    """List tasks, newest first, optionally restricted to one status."""
    filters = {"status": str(status)} if status is not None else None
    records = await db_client.list_records(
        collection=TASKS,
        filters=filters,
        sort="id DESC",
        per_page=constants.DEFAULT_PER_PAGE_LIMIT,
    )
    return [_record_to_task(r) for r in records]


async def list_tasks_by_status(status: TaskStatus) -> list[Task]:
    """List every task in a status, oldest first."""
    tasks: list[Task] = []
    page = 1
    while True:
        records = await db_client.list_records(
            collection=TASKS,
            filters={"status": str(status)},
            sort="id ASC",
            page=page,
            per_page=constants.DEFAULT_PER_PAGE_LIMIT,
        )
        tasks.extend(_record_to_task(r) for r in records)
        if len(records) < constants.DEFAULT_PER_PAGE_LIMIT:
            return tasks
        page += 1


async def insert_task(task: Task) -> Task:
    """Store a new task and return it with its assigned id and initial version."""
    with span("task_repository.insert_task"):
        async with db_client.transaction() as tx:
            task_id = await tx.insert(collection=TASKS, data={**_task_to_row(task), "version": 1})

        logger.info("Inserted task %s", task_id, extra={"status": task.status})
        return task.model_copy(update={"id": task_id, "version": 1})


async def save_task(task: Task, *, expected_version: int, ledger_entry: LedgerEntry | None = None) -> Task:
    """Persist a mutated task if its stored version still equals ``expected_version``.

    When ``ledger_entry`` is given it is written in the same transaction, so the task
    change and the posting land together or not at all.

    Raises:
        ConcurrentModificationError: The stored version moved on
        NotFoundError: The task was deleted
        StorageError: The store failed; nothing was written
    """
    if task.id is None:
        msg = "Cannot save a task that was never inserted"
        raise ValueError(msg)

    with span("task_repository.save_task"):
        async with db_client.transaction() as tx:
            await tx.update(
                collection=TASKS,
                record_id=task.id,
                data=_task_to_row(task),
                expected_version=expected_version,
            )
            if ledger_entry is not None:
                entry_id = await tx.insert(collection=LEDGER, data=_ledger_to_row(ledger_entry))
                logger.info("Posted ledger entry %s for task %s", entry_id, task.id)

        return task.model_copy(update={"version": expected_version + 1})


async def delete_task(task_id: str) -> None:
    """Hard-delete a task. Ledger entries referencing it are kept."""
    await db_client.delete_record(collection=TASKS, record_id=task_id)


async def append_ledger_entry(entry: LedgerEntry) -> LedgerEntry:
    """Store a standalone ledger entry and return it with its id."""
    async with db_client.transaction() as tx:
        entry_id = await tx.insert(collection=LEDGER, data=_ledger_to_row(entry))
    return entry.model_copy(update={"id": entry_id})


async def list_ledger_entries() -> list[LedgerEntry]:
    """List ledger entries, newest first."""
    records = await db_client.list_records(
        collection=LEDGER,
        sort="id DESC",
        per_page=constants.DEFAULT_PER_PAGE_LIMIT,
    )
    return [LedgerEntry.model_validate(r) for r in records]


async def get_ledger_entry_for_task(task_id: str) -> LedgerEntry | None:
    """Return the posting made for a task, if any."""
    record = await db_client.get_first_record(collection=LEDGER, filters={"task_id": task_id})
    return LedgerEntry.model_validate(record) if record else None


async def delete_ledger_entry(entry_id: str) -> None:
    """Delete a ledger entry by id."""
    await db_client.delete_record(collection=LEDGER, record_id=entry_id)
