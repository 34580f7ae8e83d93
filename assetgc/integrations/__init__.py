# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin plugin.
"""

from assetgc.integrations.fastapi import (
    assetgc_lifespan,
    register_assetgc_routes,
    verify_api_key,
)

__all__ = [
    "assetgc_lifespan",
    "register_assetgc_routes",
    "verify_api_key",
]
