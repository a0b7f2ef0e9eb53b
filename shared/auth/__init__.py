# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Authentication middleware and utilities.
"""

from .unkey_middleware import UnkeyAuthMiddleware, dev_owner_id

__all__ = ["UnkeyAuthMiddleware", "dev_owner_id"]
