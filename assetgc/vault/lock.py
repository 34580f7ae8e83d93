# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Run Lock - At most one collection run per environment.

Tombstoning is check-then-act against the stores, so two concurrent runs
could race each other. The lock is a row in the vault keyed by
environment; acquiring it is a single INSERT, so of two contenders
exactly one wins. A lock older than its TTL belongs to a crashed run and
is taken over.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import AsyncIterator

import aiosqlite
import structlog

from assetgc.exceptions import RunLockError

logger = structlog.get_logger()


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


async def acquire_run_lock(
    db: aiosqlite.Connection,
    environment: str,
    operation_id: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> None:
    """
    Acquire the run lock of an environment.

    Raises:
        RunLockError: If a live lock is held by another run
    """
    now = now or datetime.now(UTC)

    await db.execute(
        "DELETE FROM run_locks WHERE environment = ? AND acquired_at < ?",
        (environment, _timestamp(now - ttl)),
    )
    try:
        await db.execute(
            """
            INSERT INTO run_locks (environment, operation_id, acquired_at)
            VALUES (?, ?, ?)
            """,
            (environment, operation_id, _timestamp(now)),
        )
        await db.commit()
    except aiosqlite.IntegrityError:
        await db.rollback()
        async with db.execute(
            "SELECT operation_id, acquired_at FROM run_locks WHERE environment = ?",
            (environment,),
        ) as cursor:
            row = await cursor.fetchone()
        raise RunLockError(
            f"Another collection run is active for {environment}",
            details={
                "holder": row[0] if row else None,
                "acquired_at": row[1] if row else None,
            },
        )

    logger.debug("run_lock_acquired", environment=environment, operation_id=operation_id)


async def release_run_lock(
    db: aiosqlite.Connection,
    environment: str,
    operation_id: str,
) -> bool:
    """
    Release the run lock if this run still holds it.

    Returns:
        True if the lock was released
    """
    cursor = await db.execute(
        "DELETE FROM run_locks WHERE environment = ? AND operation_id = ?",
        (environment, operation_id),
    )
    await db.commit()

    released = cursor.rowcount > 0
    if released:
        logger.debug("run_lock_released", environment=environment, operation_id=operation_id)
    return released


@asynccontextmanager
async def run_lock(
    db_path: Path,
    environment: str,
    operation_id: str,
    ttl_minutes: int = 360,
) -> AsyncIterator[None]:
    """
    Hold the environment's run lock for the duration of the block.

    Args:
        db_path: Vault database path
        environment: Environment name (aws://account/region)
        operation_id: ID of the run taking the lock
        ttl_minutes: Age after which a held lock counts as stale
    """
    async with aiosqlite.connect(db_path) as db:
        await acquire_run_lock(db, environment, operation_id, timedelta(minutes=ttl_minutes))
    try:
        yield
    finally:
        async with aiosqlite.connect(db_path) as db:
            await release_run_lock(db, environment, operation_id)
