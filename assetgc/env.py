# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and safety profiles.

These helpers are small, convenient wrappers around create_config() and
GCConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made safety profiles
"""

from __future__ import annotations

import os
from pathlib import Path

from assetgc.builder import create_config
from assetgc.config import GCConfig, StoreKind
from assetgc.errors import (
    explain_invalid_dry_run_env,
    explain_invalid_in_isolation_for_env,
    explain_invalid_store_kind_env,
    explain_missing_account_env,
    explain_missing_bucket_env,
)
from assetgc.exceptions import ConfigurationError

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _parse_store_kind(value: str | None) -> StoreKind:
    if not value:
        return StoreKind.BOTH
    try:
        return StoreKind(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_store_kind_env(value)) from exc


def _parse_dry_run(value: str | None) -> bool:
    if not value:
        return True
    lower = value.strip().lower()
    if lower in _TRUE:
        return True
    if lower in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_dry_run_env(value))


def _parse_in_isolation_for(value: str | None) -> int:
    if not value:
        return 1
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_in_isolation_for_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_in_isolation_for_env(value))
    return days


def create_config_from_env() -> GCConfig:
    """
    Create a GCConfig from environment variables.

    Required:
        - AWS_ACCOUNT_ID: Account owning the assets
        - ASSETGC_BUCKET: Staging bucket (unless ASSETGC_TYPE=images)

    Optional environment variables:
        - AWS_REGION: AWS region (default: us-east-1)
        - ASSETGC_TYPE: 'objects' | 'images' | 'both' (default: both)
        - ASSETGC_DRY_RUN: 'true' | 'false' (default: true)
        - ASSETGC_IN_ISOLATION_FOR: Grace period in days (default: 1)
        - ASSETGC_VAULT_PATH: Path to the vault directory (default: ./assetgc_vault)
        - ASSETGC_SCHEDULE_CRON: Daily schedule in HH:MM (UTC)
    """

    account = os.getenv("AWS_ACCOUNT_ID")
    if not account:
        raise ConfigurationError(explain_missing_account_env())

    store_kind = _parse_store_kind(os.getenv("ASSETGC_TYPE"))
    bucket = os.getenv("ASSETGC_BUCKET")
    if store_kind.includes_objects and not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    region = os.getenv("AWS_REGION", "us-east-1")
    dry_run = _parse_dry_run(os.getenv("ASSETGC_DRY_RUN"))
    in_isolation_for = _parse_in_isolation_for(os.getenv("ASSETGC_IN_ISOLATION_FOR"))
    vault_path_env = os.getenv("ASSETGC_VAULT_PATH")
    vault_path = Path(vault_path_env) if vault_path_env else Path("./assetgc_vault")
    schedule_cron = os.getenv("ASSETGC_SCHEDULE_CRON")

    return create_config(
        account,
        region=region,
        bucket=bucket,
        store_kind=store_kind,
        dry_run=dry_run,
        in_isolation_for=in_isolation_for,
        vault_path=vault_path,
        schedule_cron=schedule_cron,
    )


# ============================================================================
# Profiles
# ============================================================================

def safe_defaults(config: GCConfig) -> GCConfig:
    """
    Apply conservative, safety-first defaults.

    - Always dry-run
    - Grace period of at least 7 days
    """

    return config.with_updates(
        dry_run=True,
        in_isolation_for=max(config.in_isolation_for, 7),
    )


def aggressive_cleanup(config: GCConfig) -> GCConfig:
    """
    Apply a more aggressive cleanup profile.

    - Execute mode (actual tombstoning and deletion)
    - One-day grace period
    """

    return config.with_updates(
        dry_run=False,
        in_isolation_for=1,
    )
