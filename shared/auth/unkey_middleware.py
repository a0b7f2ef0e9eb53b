# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Unkey Authentication Middleware.

Requires an `Authorization: Bearer <key>` header on all non-public requests.

When UNKEY_ROOT_KEY is set, the presented key is verified against Unkey and
the key's identity becomes the request owner. In local/dev without Unkey
configured, the middleware only enforces the presence of the header and
derives the owner from a hash of the key, so each key sees its own data.

The owner is exposed to route handlers as `request.state.owner_id`.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Callable

import httpx
from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

UNKEY_VERIFY_URL = "https://api.unkey.com/v2/keys.verifyKey"

# Routes that never require a key (health checks, provider webhooks)
PUBLIC_PATHS = ("/health",)
PUBLIC_PREFIXES = ("/webhooks/",)


def dev_owner_id(token: str) -> str:
    """Stable owner id for a key when Unkey verification is disabled."""
    return "dev-" + hashlib.sha256(token.encode("utf-8")).hexdigest()[:24]


class UnkeyAuthMiddleware:
    """ASGI middleware that enforces Unkey-style API keys globally."""

    def __init__(self, app: Callable, unkey_root_key: str | None = None) -> None:
        self.app = app
        self.unkey_root_key = unkey_root_key or os.getenv("UNKEY_ROOT_KEY")

    async def _reject(self, scope, receive, send, status: int, content: dict) -> None:  # type: ignore[no-untyped-def]
        response = JSONResponse(status_code=status, content=content)
        await response(scope, receive, send)

    async def _verify_with_unkey(self, token: str) -> str | None:
        """
        Verify a key with Unkey.

        Returns:
            Owner id for a valid key, None for an invalid one

        Raises:
            httpx.HTTPError: If Unkey could not be reached
        """
        headers = {
            "Authorization": f"Bearer {self.unkey_root_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.post(UNKEY_VERIFY_URL, json={"key": token}, headers=headers)
        if resp.status_code >= 400:
            logger.warning(f"⚠️ Unkey verification returned {resp.status_code}")
            return None

        data = resp.json().get("data", {})
        if not data.get("valid"):
            return None
        identity = data.get("identity") or {}
        return identity.get("externalId") or data.get("keyId") or dev_owner_id(token)

    async def __call__(self, scope, receive, send):  # type: ignore[no-untyped-def]
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)

        path = request.url.path
        if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
            await self.app(scope, receive, send)
            return

        auth_header = request.headers.get("authorization", "").strip()
        if not auth_header or not auth_header.lower().startswith("bearer "):
            await self._reject(
                scope,
                receive,
                send,
                401,
                {
                    "detail": (
                        "Authorization header required. Use 'Authorization: Bearer <your_api_key>'."
                    )
                },
            )
            return

        token = auth_header[7:].strip()
        if not token:
            await self._reject(
                scope, receive, send, 401, {"detail": "Empty Bearer token provided."}
            )
            return

        if self.unkey_root_key:
            try:
                owner_id = await self._verify_with_unkey(token)
            except Exception as e:
                # Fail closed if verification was intended but errored
                logger.error(f"❌ Unkey verification error: {e}")
                await self._reject(
                    scope,
                    receive,
                    send,
                    401,
                    {"detail": "Could not verify API key at this time."},
                )
                return
            if owner_id is None:
                await self._reject(scope, receive, send, 401, {"detail": "Invalid API key."})
                return
        else:
            owner_id = dev_owner_id(token)

        # Shared with the Request objects route handlers see
        request.state.owner_id = owner_id
        await self.app(scope, receive, send)
