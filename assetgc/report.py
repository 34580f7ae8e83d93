# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Reports - Results of a collection run.

A run produces one StoreReport per store it touched (the staging bucket,
then each managed repository) and one ReclaimReport aggregating them.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List


@dataclass
class StoreReport:
    """Outcome of collecting one bucket or one repository."""

    store: str
    kind: str  # 'objects' or 'images'
    scanned: int = 0
    isolated: List[str] = field(default_factory=list)  # classified isolated
    tombstoned: List[str] = field(default_factory=list)  # newly tombstoned
    deleted: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)  # tombstoned, grace period running
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class ReclaimReport:
    """Result of a complete collection run."""

    operation_id: str  # ULID
    environment: str
    store_kind: str
    dry_run: bool
    in_isolation_for: int
    started_at: datetime
    stacks_scanned: int = 0
    stores: List[StoreReport] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def isolated_count(self) -> int:
        return sum(len(s.isolated) for s in self.stores)

    @property
    def tombstoned_count(self) -> int:
        return sum(len(s.tombstoned) for s in self.stores)

    @property
    def deleted_count(self) -> int:
        return sum(len(s.deleted) for s in self.stores)

    @property
    def all_errors(self) -> List[str]:
        errors = list(self.errors)
        for store in self.stores:
            errors.extend(f"{store.store}: {e}" for e in store.errors)
        return errors

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["isolated_count"] = self.isolated_count
        data["tombstoned_count"] = self.tombstoned_count
        data["deleted_count"] = self.deleted_count
        return data

    def stats(self) -> Dict[str, Any]:
        """Compact counters recorded in the vault."""
        return {
            "store_kind": self.store_kind,
            "dry_run": self.dry_run,
            "stacks": self.stacks_scanned,
            "stores": len(self.stores),
            "scanned": sum(s.scanned for s in self.stores),
            "isolated": self.isolated_count,
            "tombstoned": self.tombstoned_count,
            "deleted": self.deleted_count,
            "errors": len(self.all_errors),
        }
