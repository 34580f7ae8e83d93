# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification during a collection run.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List
import re


class StoreKind(str, Enum):
    """Which artifact stores a run collects."""

    OBJECTS = "objects"  # File assets in the staging bucket
    IMAGES = "images"  # Container image assets in managed repositories
    BOTH = "both"

    @classmethod
    def _missing_(cls, value):
        # Names used by the deploy tooling's own gc command
        aliases = {"s3": cls.OBJECTS, "ecr": cls.IMAGES, "all": cls.BOTH}
        if isinstance(value, str):
            return aliases.get(value.lower())
        return None

    @property
    def includes_objects(self) -> bool:
        return self in (StoreKind.OBJECTS, StoreKind.BOTH)

    @property
    def includes_images(self) -> bool:
        return self in (StoreKind.IMAGES, StoreKind.BOTH)


# Tag key (objects) and tag prefix (images) of the tombstone marker
ISOLATED_TAG = "awscdk.isolated"

# Convention tag identifying repositories that hold deployment image assets
ASSET_REPOSITORY_TAG_KEY = "awscdk:asset"
ASSET_REPOSITORY_TAG_VALUE = "true"


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


def _validate_account(account: str) -> bool:
    """AWS account ids are twelve digits."""
    return bool(re.match(r"^\d{12}$", account or ""))


def _validate_region(region: str) -> bool:
    return bool(re.match(r"^[a-z]{2}(-[a-z]+)+-\d+$", region or ""))


def _validate_cron_time(time_str: str) -> bool:
    """Validate HH:MM time format."""
    if not time_str:
        return False
    try:
        parts = time_str.split(":")
        if len(parts) != 2:
            return False
        hour, minute = int(parts[0]), int(parts[1])
        return 0 <= hour <= 23 and 0 <= minute <= 59
    except (ValueError, AttributeError):
        return False


@dataclass(frozen=True)
class Environment:
    """A resolved deployment environment: one account in one region."""

    account: str
    region: str = "us-east-1"

    @property
    def name(self) -> str:
        return f"aws://{self.account}/{self.region}"


@dataclass(frozen=True)
class GCConfig:
    """
    Immutable configuration for asset garbage collection.

    One config targets one environment: a single staging bucket and the
    image repositories carrying the asset convention tag.
    """

    # Required: the resolved account/region to collect
    environment: Environment

    # Staging bucket holding file assets (required when objects are collected)
    bucket: str | None = None

    # Which stores to collect
    store_kind: StoreKind = StoreKind.BOTH

    # Report only, never tag or delete (default: True for safety)
    dry_run: bool = True

    # Days an artifact must stay tombstoned before it is deleted
    in_isolation_for: int = 1

    # Tombstone marker: tag key on objects, tag prefix on images
    isolated_tag: str = ISOLATED_TAG

    # Repository tag identifying managed image repositories
    repository_tag_key: str = ASSET_REPOSITORY_TAG_KEY
    repository_tag_value: str = ASSET_REPOSITORY_TAG_VALUE

    # Path to the audit vault directory
    vault_path: Path = field(default_factory=lambda: Path("./assetgc_vault"))

    # Maximum repositories processed concurrently
    max_concurrent_ops: int = 4

    # Page size for object listing
    list_batch_size: int = 1000

    # Minutes after which an unreleased run lock counts as stale
    run_lock_ttl_minutes: int = 360

    # Schedule time in HH:MM format (UTC)
    schedule_cron: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not isinstance(self.environment, Environment):
            errors.append(f"environment must be an Environment, got {self.environment!r}")
        else:
            if not _validate_account(self.environment.account):
                errors.append(f"Invalid account id: {self.environment.account}")
            if not _validate_region(self.environment.region):
                errors.append(f"Invalid region: {self.environment.region}")

        if not isinstance(self.store_kind, StoreKind):
            errors.append(f"Invalid store_kind: {self.store_kind!r}")
        elif self.store_kind.includes_objects:
            if not self.bucket:
                errors.append("bucket is required when collecting objects")
            elif not _validate_bucket_name(self.bucket):
                errors.append(f"Invalid bucket name: {self.bucket}")

        if self.in_isolation_for < 0:
            errors.append(f"in_isolation_for must be >= 0, got {self.in_isolation_for}")

        if not self.isolated_tag:
            errors.append("isolated_tag must not be empty")

        if self.max_concurrent_ops < 1:
            errors.append(f"max_concurrent_ops must be >= 1, got {self.max_concurrent_ops}")

        if not 1 <= self.list_batch_size <= 1000:
            errors.append(f"list_batch_size must be 1-1000, got {self.list_batch_size}")

        if self.run_lock_ttl_minutes < 1:
            errors.append(
                f"run_lock_ttl_minutes must be >= 1, got {self.run_lock_ttl_minutes}"
            )

        if self.schedule_cron and not _validate_cron_time(self.schedule_cron):
            errors.append(f"Invalid schedule_cron format: {self.schedule_cron}, expected HH:MM")

        if errors:
            from assetgc.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "GCConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new validated instance.
        """
        return replace(self, **kwargs)
