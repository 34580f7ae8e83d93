# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Core - Run orchestration for asset garbage collection.

A run builds the reference corpus once, then collects the staging
bucket and each managed image repository against it. Corpus failures
abort the run; store and repository failures are reported and their
siblings still run.
"""

import asyncio
import functools
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, AsyncContextManager, Callable, Iterator, Tuple, TypedDict

import structlog

from assetgc.classifier import isolated_images, isolated_objects
from assetgc.config import GCConfig
from assetgc.corpus import ReferenceCorpus, collect_corpus
from assetgc.report import ReclaimReport, StoreReport
from assetgc.scanners import (
    ManagedRepository,
    list_image_tags,
    list_managed_repositories,
    list_object_keys,
)
from assetgc.tombstone import process_isolated_images, process_isolated_objects

logger = structlog.get_logger()

# Called with (environment name, operation id); held for the whole run
RunLockFactory = Callable[[str, str], AsyncContextManager[None]]


@dataclass
class GCMetrics:
    """Metrics for collection runs."""

    total_runs: int
    last_run_at: datetime | None
    total_tombstoned: int
    total_deleted: int
    vault_operations: int
    last_error: str | None


class GCState(TypedDict):
    """Runtime state for collection runs."""

    vault_db_path: Path
    vault_path: Path
    session: Any  # aiobotocore session
    run_lock: RunLockFactory
    scheduler: Any  # APScheduler scheduler if scheduling is enabled
    last_run_at: datetime | None
    total_runs: int
    total_tombstoned: int
    total_deleted: int
    last_error: str | None


async def initialize_gc_state(
    config: GCConfig,
    session: Any = None,
    run_lock: RunLockFactory | None = None,
) -> GCState:
    """
    Initialize runtime state for collection runs.

    Creates the vault directory and database and an aiobotocore session.
    The session must already carry credentials for the environment.

    Args:
        config: Collector configuration
        session: Optional pre-built aiobotocore session
        run_lock: Optional mutual-exclusion hook replacing the vault lock

    Returns:
        Initialized GCState dictionary
    """
    from aiobotocore.session import get_session

    from assetgc.vault import init_vault_db
    from assetgc.vault import run_lock as vault_run_lock

    config.vault_path.mkdir(parents=True, exist_ok=True)
    vault_db_path = config.vault_path / "vault.db"
    await init_vault_db(vault_db_path)

    if run_lock is None:
        run_lock = functools.partial(
            vault_run_lock,
            vault_db_path,
            ttl_minutes=config.run_lock_ttl_minutes,
        )

    return GCState(
        vault_db_path=vault_db_path,
        vault_path=config.vault_path,
        session=session or get_session(),
        run_lock=run_lock,
        scheduler=None,
        last_run_at=None,
        total_runs=0,
        total_tombstoned=0,
        total_deleted=0,
        last_error=None,
    )


def _elapsed(start: datetime) -> float:
    return (datetime.now(UTC) - start).total_seconds()


async def collect_bucket(
    config: GCConfig,
    s3: Any,
    corpus: ReferenceCorpus,
    now: datetime,
) -> StoreReport:
    """Scan, classify and tombstone/sweep the staging bucket."""
    start = datetime.now(UTC)
    bucket = config.bucket or ""
    report = StoreReport(store=bucket, kind="objects")

    try:
        keys = await list_object_keys(s3, bucket, config.list_batch_size)
        report.scanned = len(keys)
        report.isolated = isolated_objects(keys, corpus)
        logger.info(
            "objects_classified",
            bucket=bucket,
            scanned=report.scanned,
            isolated=len(report.isolated),
        )

        if config.dry_run:
            logger.info("dry_run_skipping_object_tagging", bucket=bucket)
        else:
            await process_isolated_objects(
                s3,
                bucket,
                report.isolated,
                tag_key=config.isolated_tag,
                in_isolation_for=config.in_isolation_for,
                now=now,
                report=report,
            )
    except Exception as e:
        report.errors.append(str(e))
        logger.error("bucket_collection_failed", bucket=bucket, error=str(e))

    report.duration_seconds = _elapsed(start)
    return report


async def collect_repository(
    config: GCConfig,
    ecr: Any,
    repository: ManagedRepository,
    corpus: ReferenceCorpus,
    now: datetime,
) -> StoreReport:
    """Scan, classify and tombstone/sweep one managed repository."""
    start = datetime.now(UTC)
    report = StoreReport(store=repository.name, kind="images")

    try:
        images = await list_image_tags(ecr, repository.name)
        report.scanned = len(images)
        report.isolated = isolated_images(images, corpus, config.isolated_tag)
        logger.info(
            "images_classified",
            repository=repository.name,
            scanned=report.scanned,
            isolated=len(report.isolated),
        )

        if config.dry_run:
            logger.info("dry_run_skipping_image_tagging", repository=repository.name)
        else:
            await process_isolated_images(
                ecr,
                repository.name,
                images,
                report.isolated,
                tag_prefix=config.isolated_tag,
                in_isolation_for=config.in_isolation_for,
                now=now,
                report=report,
            )
    except Exception as e:
        report.errors.append(str(e))
        logger.error(
            "repository_collection_failed",
            repository=repository.name,
            error=str(e),
        )

    report.duration_seconds = _elapsed(start)
    return report


async def collect_garbage(
    config: GCConfig,
    cfn: Any,
    s3: Any = None,
    ecr: Any = None,
    *,
    now: datetime | None = None,
    operation_id: str | None = None,
) -> ReclaimReport:
    """
    Run one collection pass against already-open clients.

    Steps:
    1. Build the reference corpus from every deployed template
    2. Collect the staging bucket (objects / both)
    3. Discover managed repositories and collect each (images / both)

    In dry-run mode artifacts are classified and reported, but nothing is
    read beyond the listings and nothing is tagged or deleted.

    Args:
        config: Collector configuration
        cfn: aiobotocore CloudFormation client
        s3: aiobotocore S3 client (required when objects are collected)
        ecr: aiobotocore ECR client (required when images are collected)
        now: Time of the run, used for tombstones and grace periods
        operation_id: Run ID; a fresh ULID when omitted

    Returns:
        ReclaimReport of the run

    Raises:
        InventoryError: If the corpus could not be built completely
    """
    from ulid import ULID

    operation_id = operation_id or str(ULID())
    now = now or datetime.now(UTC)
    start = datetime.now(UTC)

    logger.info(
        "gc_run_started",
        operation_id=operation_id,
        environment=config.environment.name,
        store_kind=config.store_kind.value,
        dry_run=config.dry_run,
    )

    corpus = await collect_corpus(cfn)
    logger.info("corpus_ready", seconds=_elapsed(start))

    report = ReclaimReport(
        operation_id=operation_id,
        environment=config.environment.name,
        store_kind=config.store_kind.value,
        dry_run=config.dry_run,
        in_isolation_for=config.in_isolation_for,
        started_at=now,
        stacks_scanned=corpus.stack_count,
    )

    if config.store_kind.includes_objects:
        report.stores.append(await collect_bucket(config, s3, corpus, now))

    if config.store_kind.includes_images:
        try:
            repositories, skipped = await list_managed_repositories(
                ecr,
                config.repository_tag_key,
                config.repository_tag_value,
            )
        except Exception as e:
            report.errors.append(str(e))
            logger.error("repository_discovery_failed", error=str(e))
        else:
            report.errors.extend(skipped)
            semaphore = asyncio.Semaphore(config.max_concurrent_ops)

            async def bounded(repository: ManagedRepository) -> StoreReport:
                async with semaphore:
                    return await collect_repository(config, ecr, repository, corpus, now)

            report.stores.extend(
                await asyncio.gather(*(bounded(r) for r in repositories))
            )

    report.duration_seconds = _elapsed(start)

    logger.info(
        "gc_run_completed",
        operation_id=operation_id,
        isolated=report.isolated_count,
        tombstoned=report.tombstoned_count,
        deleted=report.deleted_count,
        errors=len(report.all_errors),
        duration=report.duration_seconds,
    )
    return report


def _report_actions(report: ReclaimReport) -> Iterator[Tuple[str, str, str]]:
    from assetgc.vault import ACTION_DELETED, ACTION_TOMBSTONED

    for store in report.stores:
        for artifact in store.tombstoned:
            yield (store.store, artifact, ACTION_TOMBSTONED)
        for artifact in store.deleted:
            yield (store.store, artifact, ACTION_DELETED)


async def run_gc_cycle(config: GCConfig, state: GCState) -> ReclaimReport:
    """
    Run a complete, audited collection cycle.

    This is the main entry point. It:
    1. Takes the environment's run lock
    2. Opens the CloudFormation, S3 and ECR clients it needs
    3. Runs collect_garbage()
    4. Records the run and every tombstone/delete in the vault

    Args:
        config: Collector configuration
        state: Runtime state

    Returns:
        ReclaimReport of the run
    """
    import aiosqlite
    from ulid import ULID

    from assetgc.vault import complete_operation, record_actions, record_operation

    operation_id = str(ULID())
    mode = "dry_run" if config.dry_run else "execute"
    region = config.environment.region

    async with state["run_lock"](config.environment.name, operation_id):
        async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
            await record_operation(
                vault_db,
                operation_id,
                mode,
                {
                    "store_kind": config.store_kind.value,
                    "in_isolation_for": config.in_isolation_for,
                },
            )

        try:
            async with AsyncExitStack() as stack:
                session = state["session"]
                cfn = await stack.enter_async_context(
                    session.create_client("cloudformation", region_name=region)
                )
                s3 = None
                if config.store_kind.includes_objects:
                    s3 = await stack.enter_async_context(
                        session.create_client("s3", region_name=region)
                    )
                ecr = None
                if config.store_kind.includes_images:
                    ecr = await stack.enter_async_context(
                        session.create_client("ecr", region_name=region)
                    )

                report = await collect_garbage(
                    config, cfn, s3, ecr, operation_id=operation_id
                )
        except Exception as e:
            state["last_error"] = str(e)
            async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
                await complete_operation(vault_db, operation_id, {}, error=str(e))
            logger.error("gc_cycle_failed", operation_id=operation_id, error=str(e))
            raise

        errors = report.all_errors
        async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
            await record_actions(vault_db, operation_id, _report_actions(report))
            await complete_operation(
                vault_db,
                operation_id,
                report.stats(),
                error="; ".join(errors) if errors else None,
            )

    state["last_run_at"] = datetime.now(UTC)
    state["total_runs"] += 1
    state["total_tombstoned"] += report.tombstoned_count
    state["total_deleted"] += report.deleted_count
    state["last_error"] = errors[0] if errors else None

    return report


async def get_metrics(config: GCConfig, state: GCState) -> GCMetrics:
    """Get current collection metrics."""
    import aiosqlite

    from assetgc.vault import get_vault_stats

    async with aiosqlite.connect(state["vault_db_path"]) as db:
        stats = await get_vault_stats(db)

    return GCMetrics(
        total_runs=state["total_runs"],
        last_run_at=state["last_run_at"],
        total_tombstoned=state["total_tombstoned"],
        total_deleted=state["total_deleted"],
        vault_operations=stats["total_operations"],
        last_error=state["last_error"],
    )


async def shutdown_gc_state(state: GCState) -> None:
    """Cleanup resources."""
    scheduler = state["scheduler"]
    if scheduler is not None:
        try:
            scheduler.shutdown(wait=False)
        except Exception as e:
            logger.warning("scheduler_shutdown_failed", error=str(e))
        state["scheduler"] = None

    logger.info("gc_state_shutdown_complete")
