# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Vault - Audit trail of collection runs and the per-environment run lock.
"""

from assetgc.vault.sqlite_vault import (
    ACTION_DELETED,
    ACTION_TOMBSTONED,
    init_vault_db,
    record_operation,
    complete_operation,
    record_actions,
    get_operation,
    list_operations,
    get_actions_by_operation,
    get_vault_stats,
    ActionRecord,
    OperationRecord,
)

from assetgc.vault.lock import (
    acquire_run_lock,
    release_run_lock,
    run_lock,
)

__all__ = [
    # Vault functions
    "init_vault_db",
    "record_operation",
    "complete_operation",
    "record_actions",
    "get_operation",
    "list_operations",
    "get_actions_by_operation",
    "get_vault_stats",
    # Types and constants
    "ActionRecord",
    "OperationRecord",
    "ACTION_DELETED",
    "ACTION_TOMBSTONED",
    # Run lock
    "acquire_run_lock",
    "release_run_lock",
    "run_lock",
]
