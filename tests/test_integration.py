# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Integration Tests for Asset GC.

These tests verify the integration between components:
- Vault operations and the run lock
- Audited collection cycles
- FastAPI endpoints
- Configuration building
"""

import asyncio
from datetime import datetime, timedelta, UTC
from pathlib import Path

import aiosqlite
import pytest

from assetgc.config import Environment, GCConfig, StoreKind
from assetgc.exceptions import ConfigurationError, InventoryError, RunLockError
from assetgc.vault import (
    ACTION_DELETED,
    ACTION_TOMBSTONED,
    acquire_run_lock,
    complete_operation,
    get_actions_by_operation,
    get_operation,
    get_vault_stats,
    init_vault_db,
    list_operations,
    record_actions,
    record_operation,
    release_run_lock,
    run_lock,
)

from conftest import (
    ACCOUNT,
    BUCKET,
    REGION,
    FakeCloudFormation,
    FakeECR,
    FakeRepository,
    FakeS3,
    FakeSession,
)

AUTH = {"Authorization": "Bearer test-api-key-12345"}
ENV_NAME = f"aws://{ACCOUNT}/{REGION}"
TEMPLATE = '{"Code": "MyBucketKey123abc.zip", "Image": "assets:build-17"}'


def _session(failing_templates=()) -> FakeSession:
    return FakeSession(
        {
            "cloudformation": FakeCloudFormation(
                {"App": TEMPLATE}, failing_templates=failing_templates
            ),
            "s3": FakeS3({"MyBucketKey123abc.zip": [], "OldKeyDead456def.zip": []}),
            "ecr": FakeECR(
                [
                    FakeRepository(
                        "assets",
                        {"sha256:aaa": ["build-17"], "sha256:bbb": ["build-12"]},
                    )
                ]
            ),
        }
    )


# ============================================================================
# Vault Tests
# ============================================================================

@pytest.mark.asyncio
async def test_vault_operation_lifecycle(temp_dir: Path):
    """Test recording and completing a run with its actions."""
    db_path = temp_dir / "vault.db"
    await init_vault_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_operation(db, "01OPERATION", "execute", {"store_kind": "both"})

        operation = await get_operation(db, "01OPERATION")
        assert operation["mode"] == "execute"
        assert operation["completed_at"] is None

        count = await record_actions(
            db,
            "01OPERATION",
            [
                (BUCKET, "OldKeyDead456def.zip", ACTION_TOMBSTONED),
                ("assets", "sha256:bbb", ACTION_DELETED),
            ],
        )
        assert count == 2

        await complete_operation(db, "01OPERATION", {"tombstoned": 1, "deleted": 1})

        operation = await get_operation(db, "01OPERATION")
        assert operation["completed_at"] is not None
        assert operation["stats"] == {"tombstoned": 1, "deleted": 1}
        assert operation["error"] is None

        actions = await get_actions_by_operation(db, "01OPERATION")
        assert [a["artifact"] for a in actions] == ["OldKeyDead456def.zip", "sha256:bbb"]

        deleted = await get_actions_by_operation(db, "01OPERATION", ACTION_DELETED)
        assert [a["store"] for a in deleted] == ["assets"]

        assert await get_operation(db, "missing") is None


@pytest.mark.asyncio
async def test_vault_list_and_stats(temp_dir: Path):
    db_path = temp_dir / "vault.db"
    await init_vault_db(db_path)
    await init_vault_db(db_path)

    async with aiosqlite.connect(db_path) as db:
        await record_operation(db, "01A", "dry_run", {})
        await record_operation(db, "01B", "execute", {})
        await record_operation(db, "01C", "execute", {})
        await complete_operation(db, "01C", {}, error="assets: throttled")
        await record_actions(db, "01B", [("assets", "sha256:bbb", ACTION_TOMBSTONED)])
        assert await record_actions(db, "01C", []) == 0

        executes = await list_operations(db, mode="execute")
        assert {o["id"] for o in executes} == {"01B", "01C"}

        page = await list_operations(db, limit=1, offset=0)
        assert len(page) == 1

        stats = await get_vault_stats(db)

    assert stats["total_operations"] == 3
    assert stats["operations_by_mode"] == {"dry_run": 1, "execute": 2}
    assert stats["failed_operations"] == 1
    assert stats["total_tombstoned"] == 1
    assert stats["total_deleted"] == 0


# ============================================================================
# Run Lock Tests
# ============================================================================

@pytest.mark.asyncio
async def test_run_lock_excludes_a_second_run(temp_dir: Path):
    db_path = temp_dir / "vault.db"
    await init_vault_db(db_path)

    async with run_lock(db_path, ENV_NAME, "01FIRST"):
        with pytest.raises(RunLockError) as exc_info:
            async with run_lock(db_path, ENV_NAME, "01SECOND"):
                pass
        assert exc_info.value.details["holder"] == "01FIRST"

        # Other environments are independent
        async with run_lock(db_path, f"aws://{ACCOUNT}/eu-west-1", "01OTHER"):
            pass

    async with run_lock(db_path, ENV_NAME, "01THIRD"):
        pass


@pytest.mark.asyncio
async def test_concurrent_lock_attempts_have_one_winner(temp_dir: Path):
    db_path = temp_dir / "vault.db"
    await init_vault_db(db_path)

    async def attempt(operation_id: str) -> bool:
        async with aiosqlite.connect(db_path, timeout=30) as db:
            try:
                await acquire_run_lock(db, ENV_NAME, operation_id, timedelta(hours=1))
            except RunLockError:
                return False
            return True

    results = await asyncio.gather(*(attempt(f"01RUN{i}") for i in range(5)))

    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_stale_run_lock_is_taken_over(temp_dir: Path):
    db_path = temp_dir / "vault.db"
    await init_vault_db(db_path)
    now = datetime.now(UTC)

    async with aiosqlite.connect(db_path) as db:
        await acquire_run_lock(
            db, ENV_NAME, "01CRASHED", timedelta(hours=1), now=now - timedelta(hours=2)
        )
        await acquire_run_lock(db, ENV_NAME, "01NEXT", timedelta(hours=1), now=now)

        assert not await release_run_lock(db, ENV_NAME, "01CRASHED")
        assert await release_run_lock(db, ENV_NAME, "01NEXT")


# ============================================================================
# Collection Cycle Tests
# ============================================================================

@pytest.mark.asyncio
async def test_run_gc_cycle_records_run_in_vault(test_config):
    from assetgc.core import get_metrics, initialize_gc_state, run_gc_cycle

    session = _session()
    state = await initialize_gc_state(test_config, session=session)

    report = await run_gc_cycle(test_config, state)

    assert report.tombstoned_count == 2
    assert sorted(session.created) == ["cloudformation", "ecr", "s3"]
    assert state["total_runs"] == 1
    assert state["total_tombstoned"] == 2
    assert state["last_error"] is None

    async with aiosqlite.connect(state["vault_db_path"]) as db:
        operation = await get_operation(db, report.operation_id)
        actions = await get_actions_by_operation(db, report.operation_id)

    assert operation["mode"] == "execute"
    assert operation["completed_at"] is not None
    assert operation["stats"]["tombstoned"] == 2
    assert {(a["store"], a["artifact"]) for a in actions} == {
        (BUCKET, "OldKeyDead456def.zip"),
        ("assets", "sha256:bbb"),
    }

    metrics = await get_metrics(test_config, state)
    assert metrics.vault_operations == 1
    assert metrics.total_tombstoned == 2


@pytest.mark.asyncio
async def test_run_gc_cycle_opens_only_selected_stores(test_config):
    from assetgc.core import initialize_gc_state, run_gc_cycle

    config = test_config.with_updates(store_kind=StoreKind.IMAGES, bucket=None)
    session = _session()
    state = await initialize_gc_state(config, session=session)

    await run_gc_cycle(config, state)

    assert sorted(session.created) == ["cloudformation", "ecr"]


@pytest.mark.asyncio
async def test_run_gc_cycle_records_inventory_failure(test_config):
    from assetgc.core import initialize_gc_state, run_gc_cycle

    session = _session(failing_templates=["App"])
    state = await initialize_gc_state(test_config, session=session)

    with pytest.raises(InventoryError):
        await run_gc_cycle(test_config, state)

    assert state["total_runs"] == 0
    assert state["last_error"]

    async with aiosqlite.connect(state["vault_db_path"]) as db:
        operations = await list_operations(db)
    assert len(operations) == 1
    assert operations[0]["error"]
    assert session.clients["s3"].calls == []

    # The lock was released despite the failure
    await run_gc_cycle(test_config, {**state, "session": _session()})


@pytest.mark.asyncio
async def test_run_gc_cycle_uses_injected_run_lock(test_config):
    from contextlib import asynccontextmanager

    from assetgc.core import initialize_gc_state, run_gc_cycle

    held = []

    @asynccontextmanager
    async def external_lock(environment: str, operation_id: str):
        held.append((environment, operation_id))
        yield

    state = await initialize_gc_state(test_config, session=_session(), run_lock=external_lock)
    report = await run_gc_cycle(test_config, state)

    assert held == [(ENV_NAME, report.operation_id)]


# ============================================================================
# FastAPI Integration Tests
# ============================================================================

async def _app(config: GCConfig, session: FakeSession):
    from fastapi import FastAPI

    from assetgc.core import initialize_gc_state
    from assetgc.integrations.fastapi import register_assetgc_routes

    app = FastAPI()
    state = await initialize_gc_state(config, session=session)
    register_assetgc_routes(app, config, state)
    return app, state


@pytest.mark.asyncio
async def test_fastapi_run_endpoint(dry_run_config):
    from httpx import AsyncClient, ASGITransport

    app, state = await _app(dry_run_config, _session())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/admin/assetgc/run", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["dry_run"] is True
        assert data["isolated_count"] == 2
        assert data["tombstoned_count"] == 0

        response = await client.get("/admin/assetgc/operations", headers=AUTH)
        assert [o["id"] for o in response.json()] == [data["operation_id"]]

        response = await client.get(
            f"/admin/assetgc/operations/{data['operation_id']}", headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["mode"] == "dry_run"
        assert response.json()["actions"] == []

        response = await client.get("/admin/assetgc/operations/unknown", headers=AUTH)
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_fastapi_run_endpoint_reports_conflicts_and_inventory_errors(test_config):
    from httpx import AsyncClient, ASGITransport

    app, state = await _app(test_config, _session(failing_templates=["App"]))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/admin/assetgc/run", headers=AUTH)
        assert response.status_code == 502

        async with run_lock(state["vault_db_path"], ENV_NAME, "01HOLDER"):
            response = await client.post("/admin/assetgc/run", headers=AUTH)
        assert response.status_code == 409


@pytest.mark.asyncio
async def test_fastapi_status_and_config_endpoints(test_config):
    from httpx import AsyncClient, ASGITransport

    app, state = await _app(test_config, _session())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        status = (await client.get("/admin/assetgc/status", headers=AUTH)).json()
        assert status["total_runs"] == 0
        assert status["last_run_at"] is None
        assert status["environment"] == ENV_NAME
        assert status["dry_run"] is False

        config = (await client.get("/admin/assetgc/config", headers=AUTH)).json()
        assert config["bucket"] == BUCKET
        assert config["store_kind"] == "both"
        assert config["in_isolation_for"] == 3
        assert config["repository_tag"] == "awscdk:asset=true"

        stats = (await client.get("/admin/assetgc/vault-stats", headers=AUTH)).json()
        assert stats["total_operations"] == 0

        metrics = (await client.get("/admin/assetgc/metrics", headers=AUTH)).json()
        assert metrics["total_runs"] == 0


@pytest.mark.asyncio
async def test_fastapi_health_endpoint(test_config):
    from httpx import AsyncClient, ASGITransport

    app, state = await _app(test_config, _session())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/admin/assetgc/health", headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["vault_accessible"] is True
    assert data["cloudformation_reachable"] is True


@pytest.mark.asyncio
async def test_fastapi_unauthorized_access(test_config):
    from httpx import AsyncClient, ASGITransport

    app, state = await _app(test_config, _session())

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/admin/assetgc/status")
        assert response.status_code == 401

        response = await client.post(
            "/admin/assetgc/run",
            headers={"Authorization": "Bearer wrong-key"},
        )
        assert response.status_code == 403

    assert state["total_runs"] == 0


# ============================================================================
# Configuration Tests
# ============================================================================

def test_config_validation_collects_every_error():
    with pytest.raises(ConfigurationError) as exc_info:
        GCConfig(
            environment=Environment(account="1234", region="nowhere"),
            bucket="Invalid_Bucket",
            in_isolation_for=-1,
            max_concurrent_ops=0,
        )

    errors = exc_info.value.details["errors"]
    assert len(errors) == 5


def test_config_requires_bucket_only_for_objects():
    environment = Environment(account=ACCOUNT, region=REGION)

    with pytest.raises(ConfigurationError):
        GCConfig(environment=environment, store_kind=StoreKind.OBJECTS)

    config = GCConfig(environment=environment, store_kind=StoreKind.IMAGES)
    assert config.bucket is None
    assert config.dry_run is True


@pytest.mark.parametrize(
    "value,kind",
    [
        ("objects", StoreKind.OBJECTS),
        ("s3", StoreKind.OBJECTS),
        ("ECR", StoreKind.IMAGES),
        ("all", StoreKind.BOTH),
        ("both", StoreKind.BOTH),
    ],
)
def test_store_kind_names(value, kind):
    assert StoreKind(value) is kind


def test_builder_fluent_api(temp_dir: Path):
    from assetgc.builder import (
        build_from_steps,
        enable_vault,
        execute_mode,
        images_only,
        isolate_for_days,
        run_daily_at,
        with_environment,
    )

    config = build_from_steps(
        lambda c: with_environment(c, ACCOUNT, "eu-west-1"),
        images_only,
        lambda c: isolate_for_days(c, 14),
        lambda c: enable_vault(c, str(temp_dir)),
        lambda c: run_daily_at(c, "02:30"),
        execute_mode,
    )

    assert config.environment.name == f"aws://{ACCOUNT}/eu-west-1"
    assert config.store_kind is StoreKind.IMAGES
    assert config.in_isolation_for == 14
    assert config.vault_path == temp_dir
    assert config.schedule_cron == "02:30"
    assert config.dry_run is False

    with pytest.raises(ValueError):
        run_daily_at({}, "25:00")


def test_create_config_defaults_to_dry_run():
    from assetgc.builder import create_config

    config = create_config(ACCOUNT, bucket=BUCKET, store_kind="s3")

    assert config.dry_run is True
    assert config.store_kind is StoreKind.OBJECTS
    assert config.in_isolation_for == 1

    with pytest.raises(ConfigurationError):
        create_config("", bucket=BUCKET)


def test_create_config_from_env(monkeypatch, temp_dir: Path):
    from assetgc.env import aggressive_cleanup, create_config_from_env, safe_defaults

    monkeypatch.setenv("AWS_ACCOUNT_ID", ACCOUNT)
    monkeypatch.setenv("AWS_REGION", "eu-central-1")
    monkeypatch.setenv("ASSETGC_TYPE", "ecr")
    monkeypatch.delenv("ASSETGC_BUCKET", raising=False)
    monkeypatch.setenv("ASSETGC_DRY_RUN", "false")
    monkeypatch.setenv("ASSETGC_IN_ISOLATION_FOR", "2")
    monkeypatch.setenv("ASSETGC_VAULT_PATH", str(temp_dir))

    config = create_config_from_env()

    assert config.environment.region == "eu-central-1"
    assert config.store_kind is StoreKind.IMAGES
    assert config.dry_run is False
    assert config.in_isolation_for == 2

    safe = safe_defaults(config)
    assert safe.dry_run is True
    assert safe.in_isolation_for == 7

    assert aggressive_cleanup(safe).dry_run is False


def test_create_config_from_env_explains_bad_values(monkeypatch):
    from assetgc.env import create_config_from_env

    monkeypatch.delenv("AWS_ACCOUNT_ID", raising=False)
    with pytest.raises(ConfigurationError, match="AWS_ACCOUNT_ID"):
        create_config_from_env()

    monkeypatch.setenv("AWS_ACCOUNT_ID", ACCOUNT)
    monkeypatch.setenv("ASSETGC_TYPE", "both")
    monkeypatch.delenv("ASSETGC_BUCKET", raising=False)
    with pytest.raises(ConfigurationError, match="ASSETGC_BUCKET"):
        create_config_from_env()

    monkeypatch.setenv("ASSETGC_TYPE", "tapes")
    with pytest.raises(ConfigurationError, match="ASSETGC_TYPE"):
        create_config_from_env()
