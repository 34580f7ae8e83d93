# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC SQLite Vault - Append-only audit trail of collection runs.

Artifacts themselves carry their tombstone markers; the vault only
records what each run did, so operators can audit tombstoning and
deletion after the fact. Action records are never updated or deleted.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterable, List, Tuple, TypedDict

import aiosqlite
import structlog

from assetgc.exceptions import VaultError

logger = structlog.get_logger()


class OperationRecord(TypedDict):
    """Record of a collection run."""

    id: str  # ULID
    timestamp: str  # ISO 8601
    mode: str  # dry_run or execute
    stats: dict  # Run statistics
    completed_at: str | None
    error: str | None


class ActionRecord(TypedDict):
    """Record of a tombstone or delete applied to one artifact."""

    id: int  # Auto-increment
    operation_id: str
    store: str  # Bucket or repository name
    artifact: str  # Object key or image digest
    action: str  # tombstoned or deleted
    at: str  # ISO 8601


ACTION_TOMBSTONED = "tombstoned"
ACTION_DELETED = "deleted"


async def init_vault_db(db_path: Path) -> None:
    """
    Initialize the vault database schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS operations (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    stats TEXT NOT NULL,
                    completed_at TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_id TEXT NOT NULL,
                    store TEXT NOT NULL,
                    artifact TEXT NOT NULL,
                    action TEXT NOT NULL,
                    at TEXT NOT NULL,
                    FOREIGN KEY (operation_id) REFERENCES operations(id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS run_locks (
                    environment TEXT PRIMARY KEY,
                    operation_id TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_actions_operation_id
                ON actions(operation_id)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_actions_artifact
                ON actions(artifact)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_operations_timestamp
                ON operations(timestamp)
            """)

            await db.commit()

        logger.info("vault_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise VaultError(
            f"Failed to initialize vault database: {e}",
            details={"db_path": str(db_path)},
        )


async def record_operation(
    db: aiosqlite.Connection,
    operation_id: str,
    mode: str,
    stats: dict,
) -> None:
    """
    Record the start of a collection run.

    Args:
        db: SQLite database connection
        operation_id: Unique operation ID (ULID)
        mode: dry_run or execute
        stats: Initial statistics
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO operations (id, timestamp, mode, stats)
        VALUES (?, ?, ?, ?)
        """,
        (operation_id, now, mode, json.dumps(stats)),
    )
    await db.commit()

    logger.info("operation_recorded", operation_id=operation_id, mode=mode)


async def complete_operation(
    db: aiosqlite.Connection,
    operation_id: str,
    stats: dict,
    error: str | None = None,
) -> None:
    """
    Mark a run as completed.

    Args:
        db: SQLite database connection
        operation_id: Operation ID
        stats: Final statistics
        error: Error message if the run failed
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        UPDATE operations
        SET stats = ?, completed_at = ?, error = ?
        WHERE id = ?
        """,
        (json.dumps(stats), now, error, operation_id),
    )
    await db.commit()


async def record_actions(
    db: aiosqlite.Connection,
    operation_id: str,
    actions: Iterable[Tuple[str, str, str]],
) -> int:
    """
    Append tombstone/delete actions of a run.

    Args:
        db: SQLite database connection
        operation_id: Operation ID the actions belong to
        actions: (store, artifact, action) tuples

    Returns:
        Number of actions recorded
    """
    now = datetime.now(UTC).isoformat()
    rows = [
        (operation_id, store, artifact, action, now)
        for store, artifact, action in actions
    ]
    if not rows:
        return 0

    await db.executemany(
        """
        INSERT INTO actions (operation_id, store, artifact, action, at)
        VALUES (?, ?, ?, ?, ?)
        """,
        rows,
    )
    await db.commit()

    logger.debug("actions_recorded", operation_id=operation_id, count=len(rows))
    return len(rows)


def _operation_from_row(row) -> OperationRecord:
    return OperationRecord(
        id=row[0],
        timestamp=row[1],
        mode=row[2],
        stats=json.loads(row[3]),
        completed_at=row[4],
        error=row[5],
    )


async def get_operation(
    db: aiosqlite.Connection,
    operation_id: str,
) -> OperationRecord | None:
    """
    Get an operation record.

    Args:
        db: SQLite database connection
        operation_id: Operation ID

    Returns:
        Operation record or None if not found
    """
    async with db.execute(
        """
        SELECT id, timestamp, mode, stats, completed_at, error
        FROM operations WHERE id = ?
        """,
        (operation_id,),
    ) as cursor:
        row = await cursor.fetchone()

        if row:
            return _operation_from_row(row)

        return None


async def list_operations(
    db: aiosqlite.Connection,
    limit: int = 50,
    offset: int = 0,
    mode: str | None = None,
) -> List[OperationRecord]:
    """
    List operations with pagination, newest first.

    Args:
        db: SQLite database connection
        limit: Maximum number of records to return
        offset: Number of records to skip
        mode: Optional filter by mode

    Returns:
        List of operation records
    """
    query = "SELECT id, timestamp, mode, stats, completed_at, error FROM operations"
    params: List = []

    if mode:
        query += " WHERE mode = ?"
        params.append(mode)

    query += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    records: List[OperationRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_operation_from_row(row))

    return records


async def get_actions_by_operation(
    db: aiosqlite.Connection,
    operation_id: str,
    action: str | None = None,
) -> List[ActionRecord]:
    """
    Get the actions a run applied.

    Args:
        db: SQLite database connection
        operation_id: Operation ID
        action: Optional filter ('tombstoned' or 'deleted')

    Returns:
        List of action records in the order they were recorded
    """
    query = """
        SELECT id, operation_id, store, artifact, action, at
        FROM actions
        WHERE operation_id = ?
    """
    params: List = [operation_id]

    if action:
        query += " AND action = ?"
        params.append(action)

    query += " ORDER BY id"

    records: List[ActionRecord] = []

    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(
                ActionRecord(
                    id=row[0],
                    operation_id=row[1],
                    store=row[2],
                    artifact=row[3],
                    action=row[4],
                    at=row[5],
                )
            )

    return records


async def get_vault_stats(db: aiosqlite.Connection) -> dict:
    """
    Get vault statistics.

    Returns:
        Dict with vault statistics
    """
    stats = {}

    async with db.execute("SELECT COUNT(*) FROM operations") as cursor:
        row = await cursor.fetchone()
        stats["total_operations"] = row[0] if row else 0

    async with db.execute(
        "SELECT mode, COUNT(*) FROM operations GROUP BY mode"
    ) as cursor:
        stats["operations_by_mode"] = {row[0]: row[1] async for row in cursor}

    async with db.execute(
        "SELECT COUNT(*) FROM operations WHERE error IS NOT NULL"
    ) as cursor:
        row = await cursor.fetchone()
        stats["failed_operations"] = row[0] if row else 0

    async with db.execute(
        "SELECT action, COUNT(*) FROM actions GROUP BY action"
    ) as cursor:
        by_action = {row[0]: row[1] async for row in cursor}

    stats["total_tombstoned"] = by_action.get(ACTION_TOMBSTONED, 0)
    stats["total_deleted"] = by_action.get(ACTION_DELETED, 0)

    return stats
