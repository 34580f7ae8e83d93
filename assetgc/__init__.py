# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC - Garbage collector for deployment assets.

Finds file assets (staging bucket objects) and image assets (managed ECR
repository images) that no deployed CloudFormation template refers to
any more, tombstones them, and deletes them once they have stayed
unreferenced for a grace period. Package name: assetgc.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from assetgc.builder import create_config
from assetgc.config import Environment, GCConfig, StoreKind

# Core functions
from assetgc.core import (
    collect_garbage,
    initialize_gc_state,
    run_gc_cycle,
    get_metrics,
    shutdown_gc_state,
)
from assetgc.report import ReclaimReport, StoreReport

# Environment-based configuration and profiles (additional helpers)
from assetgc.env import (
    create_config_from_env,
    safe_defaults,
    aggressive_cleanup,
)

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_config",
    "create_config_from_env",
    "safe_defaults",
    "aggressive_cleanup",
    "Environment",
    "GCConfig",
    "StoreKind",
    # Core orchestration functions
    "collect_garbage",
    "initialize_gc_state",
    "run_gc_cycle",
    "get_metrics",
    "shutdown_gc_state",
    # Reports
    "ReclaimReport",
    "StoreReport",
]
