# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with Asset GC Integration.

This example mounts the asset collector's admin endpoints on a FastAPI
application and runs the collector once a day.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    AWS_ACCOUNT_ID: Account owning the deployment assets
    AWS_REGION: Region of the environment (default: us-east-1)
    ASSETGC_BUCKET: Staging bucket holding file assets
    ASSETGC_EXECUTE_MODE: 'true' to actually tombstone and delete
    ASSETGC_ADMIN_API_KEY: API key for admin endpoints
"""

import os
from pathlib import Path

from fastapi import FastAPI

from assetgc.builder import (
    build_config,
    create_empty_config,
    enable_vault,
    execute_mode,
    isolate_for_days,
    run_daily_at,
    with_bucket,
    with_environment,
)
from assetgc.integrations.fastapi import assetgc_lifespan


def create_assetgc_config():
    """
    Create the collector configuration from environment variables.

    This uses the functional builder pattern for clean, composable configuration.
    """
    account = os.getenv("AWS_ACCOUNT_ID", "123456789012")
    region = os.getenv("AWS_REGION", "us-east-1")
    bucket = os.getenv("ASSETGC_BUCKET", f"cdk-hnb659fds-assets-{account}-{region}")
    vault_path = Path(os.getenv("ASSETGC_VAULT_PATH", "/var/lib/assetgc_vault"))

    config = create_empty_config()
    config = with_environment(config, account, region)
    config = with_bucket(config, bucket)

    # Keep isolated assets for a week before deleting them
    config = isolate_for_days(config, 7)

    config = enable_vault(config, vault_path)

    # Schedule daily run at 2:30 AM UTC
    config = run_daily_at(config, "02:30")

    # IMPORTANT: Only enable execute mode explicitly in production
    # Default is dry-run for safety
    if os.getenv("ASSETGC_EXECUTE_MODE", "false").lower() == "true":
        config = execute_mode(config)

    return build_config(config)


assetgc_config = create_assetgc_config()

app = FastAPI(
    title="Deployment Asset Collector",
    description="Example application demonstrating deployment asset garbage collection",
    version="1.0.0",
    lifespan=lambda app: assetgc_lifespan(app, assetgc_config),
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Deployment asset collector",
        "docs": "/docs",
        "assetgc_admin": "/admin/assetgc/health",
    }


# ============================================================================
# Asset GC Admin Endpoints (registered by assetgc_lifespan)
# ============================================================================
#
# GET  /admin/assetgc/health          - Vault and CloudFormation health
# GET  /admin/assetgc/status          - Current collector status
# GET  /admin/assetgc/metrics         - Collector metrics
# GET  /admin/assetgc/config          - Configuration
# POST /admin/assetgc/run             - Trigger a run (?dry_run=true to force dry-run)
# GET  /admin/assetgc/operations      - List runs
# GET  /admin/assetgc/operations/{id} - One run with its tombstones and deletions
# GET  /admin/assetgc/vault-stats     - Vault statistics
#
# All admin endpoints require: Authorization: Bearer <ASSETGC_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
