# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC FastAPI Integration - Admin plugin for FastAPI applications.

This module provides:
- Lifespan management (startup/shutdown)
- Protected admin endpoints to trigger and audit runs
- Scheduled daily runs
- Health checks
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC

import aiosqlite
import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assetgc.config import GCConfig
from assetgc.core import (
    GCState,
    get_metrics,
    initialize_gc_state,
    run_gc_cycle,
    shutdown_gc_state,
)
from assetgc.exceptions import InventoryError, RunLockError
from assetgc.vault import get_actions_by_operation, get_operation, get_vault_stats, list_operations

logger = structlog.get_logger()

security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the ASSETGC_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("ASSETGC_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="ASSETGC_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_assetgc_routes(
    app: FastAPI,
    config: GCConfig,
    state: GCState,
    prefix: str = "/admin/assetgc",
) -> None:
    """
    Register admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Collector configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/assetgc)
    """

    @app.post(f"{prefix}/run", dependencies=[Depends(verify_api_key)])
    async def trigger_gc(dry_run: bool = False) -> dict:
        """
        Manually trigger a collection run.

        Args:
            dry_run: Force a dry run even if the config executes
        """
        run_config = config.with_updates(dry_run=True) if dry_run else config
        try:
            report = await run_gc_cycle(run_config, state)
        except RunLockError as e:
            raise HTTPException(status_code=409, detail=e.message)
        except InventoryError as e:
            raise HTTPException(status_code=502, detail=e.message)
        return report.to_dict()

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Get current collector status.

        Returns last run time, total runs, and current mode.
        """
        return {
            "last_run_at": (
                state["last_run_at"].isoformat() if state["last_run_at"] else None
            ),
            "total_runs": state["total_runs"],
            "total_tombstoned": state["total_tombstoned"],
            "total_deleted": state["total_deleted"],
            "dry_run": config.dry_run,
            "environment": config.environment.name,
            "store_kind": config.store_kind.value,
            "in_isolation_for": config.in_isolation_for,
        }

    @app.get(f"{prefix}/metrics", dependencies=[Depends(verify_api_key)])
    async def get_gc_metrics() -> dict:
        """Get collector metrics."""
        metrics = await get_metrics(config, state)
        data = asdict(metrics)
        data["last_run_at"] = (
            metrics.last_run_at.isoformat() if metrics.last_run_at else None
        )
        return data

    @app.get(f"{prefix}/operations", dependencies=[Depends(verify_api_key)])
    async def list_gc_operations(
        limit: int = 50,
        offset: int = 0,
        mode: str | None = None,
    ) -> list:
        """
        List collection runs with pagination.

        Args:
            limit: Maximum number of operations to return
            offset: Number of operations to skip
            mode: Filter by mode (dry_run, execute)
        """
        async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
            return await list_operations(vault_db, limit, offset, mode)

    @app.get(f"{prefix}/operations/{{operation_id}}", dependencies=[Depends(verify_api_key)])
    async def get_gc_operation(operation_id: str) -> dict:
        """Get one run with the tombstones and deletions it applied."""
        async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
            operation = await get_operation(vault_db, operation_id)
            if operation is None:
                raise HTTPException(status_code=404, detail="Operation not found")
            actions = await get_actions_by_operation(vault_db, operation_id)
        return {**operation, "actions": actions}

    @app.get(f"{prefix}/vault-stats", dependencies=[Depends(verify_api_key)])
    async def get_vault_statistics() -> dict:
        """Get vault statistics."""
        async with aiosqlite.connect(state["vault_db_path"]) as vault_db:
            return await get_vault_stats(vault_db)

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the vault and CloudFormation connectivity.
        """
        vault_ok = state["vault_db_path"].exists()

        cfn_ok = False
        cfn_error = None
        try:
            async with state["session"].create_client(
                "cloudformation",
                region_name=config.environment.region,
            ) as cfn:
                await cfn.list_stacks()
                cfn_ok = True
        except Exception as e:
            cfn_error = str(e)

        status = "healthy"
        if not vault_ok or not cfn_ok:
            status = "degraded"
        if not vault_ok and not cfn_ok:
            status = "unhealthy"

        return {
            "status": status,
            "vault_accessible": vault_ok,
            "cloudformation_reachable": cfn_ok,
            "cloudformation_error": cfn_error,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """Get current configuration."""
        return {
            "environment": config.environment.name,
            "bucket": config.bucket,
            "store_kind": config.store_kind.value,
            "dry_run": config.dry_run,
            "in_isolation_for": config.in_isolation_for,
            "isolated_tag": config.isolated_tag,
            "repository_tag": f"{config.repository_tag_key}={config.repository_tag_value}",
            "max_concurrent_ops": config.max_concurrent_ops,
            "schedule_cron": config.schedule_cron,
        }


def _setup_scheduled_task(config: GCConfig, state: GCState) -> None:
    """Set up APScheduler for scheduled runs."""
    try:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.cron import CronTrigger

        scheduler = AsyncIOScheduler()

        hour, minute = map(int, config.schedule_cron.split(":"))

        async def scheduled_gc():
            """Run scheduled collection."""
            logger.info("scheduled_gc_starting")
            try:
                report = await run_gc_cycle(config, state)
                logger.info(
                    "scheduled_gc_completed",
                    tombstoned=report.tombstoned_count,
                    deleted=report.deleted_count,
                    errors=len(report.all_errors),
                )
            except Exception as e:
                logger.error("scheduled_gc_failed", error=str(e))

        scheduler.add_job(
            scheduled_gc,
            trigger=CronTrigger(hour=hour, minute=minute, timezone="UTC"),
            id="assetgc_scheduled",
            replace_existing=True,
        )
        scheduler.start()
        state["scheduler"] = scheduler

        logger.info("scheduler_started", schedule=config.schedule_cron)

    except ImportError:
        logger.warning(
            "apscheduler_not_installed",
            message="Install the 'scheduler' extra for scheduled runs",
        )


@asynccontextmanager
async def assetgc_lifespan(app: FastAPI, config: GCConfig, prefix: str = "/admin/assetgc"):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: assetgc_lifespan(app, config))

    Args:
        app: FastAPI application
        config: Collector configuration
        prefix: URL prefix for admin endpoints
    """
    logger.info(
        "assetgc_lifespan_starting",
        environment=config.environment.name,
        dry_run=config.dry_run,
    )

    state = await initialize_gc_state(config)
    app.state.assetgc_state = state
    app.state.assetgc_config = config

    register_assetgc_routes(app, config, state, prefix)

    if config.schedule_cron:
        _setup_scheduled_task(config, state)

    logger.info("assetgc_lifespan_started")

    try:
        yield
    finally:
        logger.info("assetgc_lifespan_stopping")
        await shutdown_gc_state(state)
        logger.info("assetgc_lifespan_stopped")


def get_assetgc_state(app: FastAPI) -> GCState:
    """
    Get collector state from a FastAPI app.

    Raises:
        RuntimeError: If the collector is not initialized
    """
    state = getattr(app.state, "assetgc_state", None)
    if not state:
        raise RuntimeError("assetgc not initialized. Use assetgc_lifespan first.")
    return state
