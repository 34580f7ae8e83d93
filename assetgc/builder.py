# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Builder - Functional builder pattern for configuration.

This module provides pure functions for building GCConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from assetgc.config import Environment, GCConfig, StoreKind


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "account": "",
        "region": "us-east-1",
        "bucket": None,
        "store_kind": StoreKind.BOTH,
        "dry_run": True,
        "in_isolation_for": 1,
        "vault_path": Path("./assetgc_vault"),
        "max_concurrent_ops": 4,
        "list_batch_size": 1000,
        "run_lock_ttl_minutes": 360,
        "schedule_cron": None,
    }


def with_environment(config: ConfigDict, account: str, region: str) -> ConfigDict:
    """
    Set the resolved account and region to collect.

    Args:
        config: Current configuration dictionary
        account: Twelve-digit AWS account id
        region: AWS region (e.g., 'us-east-1')

    Returns:
        New configuration dictionary with environment set
    """
    return {**config, "account": account, "region": region}


def with_bucket(config: ConfigDict, bucket_name: str) -> ConfigDict:
    """
    Set the staging bucket holding file assets.

    Args:
        config: Current configuration dictionary
        bucket_name: Resolved staging bucket name

    Returns:
        New configuration dictionary with bucket set
    """
    return {**config, "bucket": bucket_name}


def objects_only(config: ConfigDict) -> ConfigDict:
    """Collect only file assets in the staging bucket."""
    return {**config, "store_kind": StoreKind.OBJECTS}


def images_only(config: ConfigDict) -> ConfigDict:
    """Collect only container image assets."""
    return {**config, "store_kind": StoreKind.IMAGES}


def all_stores(config: ConfigDict) -> ConfigDict:
    """Collect both file and image assets (the default)."""
    return {**config, "store_kind": StoreKind.BOTH}


def dry_run_mode(config: ConfigDict) -> ConfigDict:
    """
    Report isolated assets without tagging or deleting anything.

    This is the default mode. Use this explicitly for clarity.
    """
    return {**config, "dry_run": True}


def execute_mode(config: ConfigDict) -> ConfigDict:
    """
    Tombstone isolated assets and delete them after the grace period.

    WARNING: This enables actual deletion of assets!

    Args:
        config: Current configuration dictionary

    Returns:
        New configuration dictionary with execute mode
    """
    import sys

    print(
        "\u26a0\ufe0f  WARNING: Execute mode will be enabled. Deletions will occur.",
        file=sys.stderr,
    )
    return {**config, "dry_run": False}


def isolate_for_days(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the grace period in days.

    Isolated assets are deleted only once their tombstone is this old.

    Args:
        config: Current configuration dictionary
        days: Grace period in days

    Returns:
        New configuration dictionary with grace period set
    """
    if days < 0:
        raise ValueError(f"in_isolation_for must be >= 0, got {days}")
    return {**config, "in_isolation_for": days}


def enable_vault(config: ConfigDict, vault_path: Path | str) -> ConfigDict:
    """
    Configure the audit vault directory.

    Args:
        config: Current configuration dictionary
        vault_path: Path to the vault directory

    Returns:
        New configuration dictionary with vault path set
    """
    path = Path(vault_path) if isinstance(vault_path, str) else vault_path
    return {**config, "vault_path": path}


def run_daily_at(config: ConfigDict, time: str) -> ConfigDict:
    """
    Set the daily schedule time (UTC).

    Args:
        config: Current configuration dictionary
        time: Time in HH:MM format (e.g., '02:30' for 2:30 AM UTC)

    Returns:
        New configuration dictionary with schedule set
    """
    parts = time.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time format: {time}, expected HH:MM")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time format: {time}, expected HH:MM")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time: {time}")

    return {**config, "schedule_cron": time}


def with_max_concurrent_ops(config: ConfigDict, max_ops: int) -> ConfigDict:
    """
    Set how many repositories are collected concurrently.

    Args:
        config: Current configuration dictionary
        max_ops: Maximum concurrent repositories

    Returns:
        New configuration dictionary with max_concurrent_ops set
    """
    if max_ops < 1:
        raise ValueError(f"max_concurrent_ops must be >= 1, got {max_ops}")
    return {**config, "max_concurrent_ops": max_ops}


def build_config(config_dict: ConfigDict) -> GCConfig:
    """
    Validate and build an immutable GCConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable GCConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("account"):
        from assetgc.exceptions import ConfigurationError

        raise ConfigurationError("account is required")

    values = dict(config_dict)
    environment = Environment(account=values.pop("account"), region=values.pop("region"))
    return GCConfig(environment=environment, **values)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_environment(c, "123456789012", "eu-west-1"),
            images_only,
            execute_mode,
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> GCConfig:
    """
    Build config by applying a sequence of builder functions.

    Args:
        *steps: Builder functions to apply in sequence

    Returns:
        Validated, immutable GCConfig instance
    """
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    account: str,
    *,
    region: str = "us-east-1",
    bucket: str | None = None,
    store_kind: str | StoreKind = StoreKind.BOTH,
    dry_run: bool = True,
    in_isolation_for: int = 1,
    vault_path: str | Path | None = None,
    schedule_cron: str | None = None,
    **kwargs: Any,
) -> GCConfig:
    """
    Create collector configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        account: AWS account id (required)
        region: AWS region (default: "us-east-1")
        bucket: Staging bucket name (required unless store_kind is "images")
        store_kind: "objects", "images" or "both" (default: "both")
        dry_run: Report only, never tag or delete (default: True)
        in_isolation_for: Grace period in days (default: 1)
        vault_path: Path to vault directory (default: "./assetgc_vault")
        schedule_cron: Daily schedule in HH:MM format (optional, e.g., "02:30")
        **kwargs: Additional configuration options

    Returns:
        Validated, immutable GCConfig instance

    Example:
        config = create_config(
            "123456789012",
            region="eu-west-1",
            bucket="cdk-hnb659fds-assets-123456789012-eu-west-1",
            dry_run=False,
            in_isolation_for=7,
        )
    """
    config_dict = with_environment(create_empty_config(), account, region)

    if bucket:
        config_dict = with_bucket(config_dict, bucket)

    kind = StoreKind(store_kind.lower()) if isinstance(store_kind, str) else store_kind
    if kind is StoreKind.OBJECTS:
        config_dict = objects_only(config_dict)
    elif kind is StoreKind.IMAGES:
        config_dict = images_only(config_dict)
    else:
        config_dict = all_stores(config_dict)

    if in_isolation_for is not None:
        config_dict = isolate_for_days(config_dict, in_isolation_for)

    if vault_path:
        config_dict = enable_vault(config_dict, vault_path)

    if schedule_cron:
        config_dict = run_daily_at(config_dict, schedule_cron)

    config_dict = dry_run_mode(config_dict) if dry_run else execute_mode(config_dict)

    for key, value in kwargs.items():
        config_dict[key] = value

    return build_config(config_dict)
