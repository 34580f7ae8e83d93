# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Exceptions - Custom exceptions for the assetgc package.
"""


class AssetGCError(Exception):
    """Base exception for all assetgc errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(AssetGCError):
    """Raised when configuration is invalid."""

    pass


class InventoryError(AssetGCError):
    """
    Raised when the template inventory cannot be collected completely.

    A partial corpus would mark live artifacts as isolated, so this aborts
    the whole run before any store is touched.
    """

    pass


class ScanError(AssetGCError):
    """Raised when an artifact store cannot be listed."""

    pass


class VaultError(AssetGCError):
    """Raised when vault operations fail."""

    pass


class RunLockError(AssetGCError):
    """Raised when another collector run holds the environment lock."""

    pass
