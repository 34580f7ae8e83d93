# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for assetgc.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_bucket_env() -> str:
    """
    Explain that the asset bucket environment variable is missing.
    """

    return (
        "Asset bucket is not configured. "
        "Set the ASSETGC_BUCKET environment variable or pass bucket=... to create_config(), "
        "or use ASSETGC_TYPE=images to collect container images only."
    )


def explain_missing_account_env() -> str:
    """
    Explain that the account id is missing.
    """

    return (
        "AWS account is not configured. "
        "Set the AWS_ACCOUNT_ID environment variable or pass account=... to create_config()."
    )


def explain_invalid_in_isolation_for_env(value: str | None) -> str:
    """
    Explain that ASSETGC_IN_ISOLATION_FOR is invalid.
    """

    return (
        f"Invalid ASSETGC_IN_ISOLATION_FOR value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_store_kind_env(value: str | None) -> str:
    """
    Explain that ASSETGC_TYPE is invalid.
    """

    return (
        f"Invalid ASSETGC_TYPE value: {value!r}. "
        "Expected one of: 'objects', 'images', or 'both'."
    )


def explain_invalid_dry_run_env(value: str | None) -> str:
    """
    Explain that ASSETGC_DRY_RUN is invalid.
    """

    return (
        f"Invalid ASSETGC_DRY_RUN value: {value!r}. "
        "Expected 'true' or 'false'."
    )
