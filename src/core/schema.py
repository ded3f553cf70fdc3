"""SQLite schema management (code-first approach)."""

import logging

from src.core import db_client


logger = logging.getLogger(__name__)


# Central list of all tables in the schema, in creation order
COLLECTIONS = [
    "members",
    "tasks",
    "ledger_entries",
]


TABLE_SCHEMAS: dict[str, str] = {
    "members": """CREATE TABLE IF NOT EXISTS members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        role TEXT NOT NULL CHECK (role IN ('owner', 'council', 'admin')),
        status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'banned')),
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    )""",
    # Sub-collections (bids, votes, ratings) are JSON arrays on the task row so that a
    # single versioned UPDATE covers every mutation of a task.
    "tasks": """CREATE TABLE IF NOT EXISTS tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        version INTEGER NOT NULL DEFAULT 1,
        title TEXT NOT NULL,
        category TEXT NOT NULL,
        scope TEXT NOT NULL CHECK (scope IN ('shared', 'private_unit')),
        location TEXT NOT NULL DEFAULT '',
        details TEXT NOT NULL DEFAULT '',
        photo TEXT,
        starting_price REAL NOT NULL CHECK (starting_price > 0),
        warranty_days INTEGER NOT NULL DEFAULT 0 CHECK (warranty_days >= 0),
        status TEXT NOT NULL CHECK (
            status IN ('pending', 'open', 'awarded', 'verification', 'completed', 'rejected')
        ),
        created_by TEXT NOT NULL,
        created_at TEXT NOT NULL,
        bidding_started_at TEXT,
        bids TEXT NOT NULL DEFAULT '[]',
        approvals TEXT NOT NULL DEFAULT '[]',
        rejections TEXT NOT NULL DEFAULT '[]',
        awarded_to TEXT,
        awarded_amount REAL,
        completion_at TEXT,
        validated_by TEXT,
        ratings TEXT NOT NULL DEFAULT '[]',
        deleted_ratings TEXT NOT NULL DEFAULT '[]'
    )""",
    "ledger_entries": """CREATE TABLE IF NOT EXISTS ledger_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('charge_credit', 'apartment_payment')),
        payer TEXT,
        payee TEXT NOT NULL,
        amount REAL NOT NULL CHECK (amount > 0),
        at TEXT NOT NULL,
        task_title TEXT NOT NULL DEFAULT '',
        task_creator TEXT NOT NULL DEFAULT ''
    )""",
}


INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status)",
    "CREATE INDEX IF NOT EXISTS idx_members_role ON members (role)",
    # One ledger posting per task, enforced by the store as well as by the state machine
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_ledger_task ON ledger_entries (task_id)",
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables and indexes (idempotent)."""
    logger.info("Initializing SQLite schema", extra={"db_path": str(db_client.get_db_path(db_path))})

    conn = await db_client.get_connection(db_path=db_path)
    for collection_name in COLLECTIONS:
        await conn.execute(TABLE_SCHEMAS[collection_name])
    for index_sql in INDEXES:
        await conn.execute(index_sql)
    await conn.commit()

    logger.info("SQLite schema ready", extra={"tables": COLLECTIONS})
