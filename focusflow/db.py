# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Session State Store and Focus Group Store.

Two backends share one interface:
- Supabase (PostgreSQL) for deployments, one row per document with a few
  unencrypted columns for querying and the full document as JSON
- In-memory for local development and tests

**Security:**
Sensitive fields (participant emails, the full transcript) are encrypted at
rest using field-level encryption before they reach Supabase. Operational
fields (IDs, statuses, timestamps) stay unencrypted for querying. The
encryption key is stored in the ENCRYPTION_KEY environment variable.

**Checkpoint atomicity:**
Every `save` writes the whole document in a single upsert keyed by id, so a
checkpoint is either fully visible or not at all, and repeating an identical
save leaves exactly one row.
"""

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from supabase import Client, create_client

from focusflow.errors import NotFoundError, PersistenceFailure
from focusflow.models import (
    UNFINISHED_SESSION_STATUSES,
    FocusGroup,
    FocusGroupSession,
    utc_now,
)

logger = logging.getLogger(__name__)

# Fields that should be encrypted (sensitive data), wherever they appear in a document
ENCRYPTED_FIELDS = {
    "email",
    "participant_email",
    "full_transcript",
}

SESSIONS_TABLE = "focus_group_sessions"
FOCUS_GROUPS_TABLE = "focus_groups"


# ============================================================================
# Field encryption
# ============================================================================


def derive_fernet_key(encryption_key: str) -> bytes:
    """
    Derive a Fernet key from the configured encryption key.

    Raises:
        ValueError: If the key is missing or shorter than 32 characters
    """
    if not encryption_key:
        raise ValueError(
            "ENCRYPTION_KEY environment variable is required for field encryption. "
            "Set it in your .env file with a strong random key (at least 32 characters)."
        )
    if len(encryption_key) < 32:
        raise ValueError(
            f"ENCRYPTION_KEY must be at least 32 characters long. "
            f"Current length: {len(encryption_key)}."
        )

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"focusflow_salt_2025",
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(encryption_key.encode()))


def encrypt_field(fernet: Fernet, value: str | None) -> str | None:
    """Encrypt a sensitive string; empty values are stored as None."""
    if not value or value.strip() == "":
        return None
    encrypted = fernet.encrypt(value.encode())
    return base64.urlsafe_b64encode(encrypted).decode()


def decrypt_field(fernet: Fernet, value: str | None) -> str | None:
    """Decrypt a value produced by encrypt_field."""
    if not value or value.strip() == "":
        return None
    encrypted_bytes = base64.urlsafe_b64decode(value.encode())
    return fernet.decrypt(encrypted_bytes).decode()


def _transform_sensitive(data: Any, transform) -> Any:
    """Apply transform to every sensitive string field, descending into dicts and lists."""
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if key in ENCRYPTED_FIELDS and isinstance(value, str):
                result[key] = transform(value)
            else:
                result[key] = _transform_sensitive(value, transform)
        return result
    if isinstance(data, list):
        return [_transform_sensitive(item, transform) for item in data]
    return data


def encrypt_sensitive_data(fernet: Fernet, data: Dict[str, Any]) -> Dict[str, Any]:
    # Empty strings stay empty so they round-trip as "" rather than None
    return _transform_sensitive(data, lambda v: encrypt_field(fernet, v) if v else v)


def decrypt_sensitive_data(fernet: Fernet, data: Dict[str, Any]) -> Dict[str, Any]:
    def _decrypt(value: str) -> str | None:
        if not value:
            return value
        try:
            return decrypt_field(fernet, value)
        except (InvalidToken, ValueError):
            # Rows written before encryption was enabled
            logger.debug("Field appears to be unencrypted, skipping decryption")
            return value

    return _transform_sensitive(data, _decrypt)


def get_supabase_client(supabase_url: str | None, supabase_key: str | None) -> Client:
    """
    Create a Supabase client for database operations.

    Raises:
        ValueError: If the URL or service role key is missing
    """
    if not supabase_url or not supabase_key:
        raise ValueError(
            "Supabase not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY "
            "(or SUPABASE_SECRET_KEY) environment variables to use Supabase database."
        )
    client = create_client(supabase_url, supabase_key)
    logger.debug("✅ Supabase client created successfully")
    return client


# ============================================================================
# Store interfaces
# ============================================================================


class SessionStore(ABC):
    """Durable record of bot runs (FocusGroupSession documents)."""

    async def create(self, focus_group_id: str) -> FocusGroupSession:
        """Create and persist a fresh session (status=waiting, bot_status=idle)."""
        session = FocusGroupSession(focus_group_id=focus_group_id)
        await self.save(session)
        return session

    @abstractmethod
    async def save(self, session: FocusGroupSession) -> None:
        """
        Persist the whole session document.

        Raises:
            PersistenceFailure: If the write did not succeed
        """

    @abstractmethod
    async def get(self, session_id: str) -> FocusGroupSession:
        """Raises NotFoundError if the session does not exist."""

    @abstractmethod
    async def find_latest_for_focus_group(self, focus_group_id: str) -> FocusGroupSession:
        """Most recently created session for a focus group (NotFoundError if none)."""

    @abstractmethod
    async def list_unfinished(self) -> list[FocusGroupSession]:
        """Sessions still waiting or in progress."""


class FocusGroupStore(ABC):
    """Storage for scheduled focus groups."""

    @abstractmethod
    async def save(self, focus_group: FocusGroup) -> None:
        """Raises PersistenceFailure if the write did not succeed."""

    @abstractmethod
    async def get(self, focus_group_id: str) -> FocusGroup:
        """Raises NotFoundError if the focus group does not exist."""

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[FocusGroup]:
        """Focus groups owned by a user, newest scheduled time first."""


# ============================================================================
# In-memory backend
# ============================================================================


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Saved documents are deep copies, so later in-memory mutations by the
    orchestrator never leak into a checkpoint until the next save.
    """

    def __init__(self):
        self._sessions: Dict[str, FocusGroupSession] = {}
        self._lock = asyncio.Lock()

    async def save(self, session: FocusGroupSession) -> None:
        async with self._lock:
            session.updated_at = utc_now()
            self._sessions[session.id] = session.model_copy(deep=True)

    async def get(self, session_id: str) -> FocusGroupSession:
        stored = self._sessions.get(session_id)
        if stored is None:
            raise NotFoundError(f"Session {session_id} not found")
        return stored.model_copy(deep=True)

    async def find_latest_for_focus_group(self, focus_group_id: str) -> FocusGroupSession:
        candidates = [
            s for s in self._sessions.values() if s.focus_group_id == focus_group_id
        ]
        if not candidates:
            raise NotFoundError(f"No session found for focus group {focus_group_id}")
        latest = max(candidates, key=lambda s: s.created_at)
        return latest.model_copy(deep=True)

    async def list_unfinished(self) -> list[FocusGroupSession]:
        return [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.status in UNFINISHED_SESSION_STATUSES
        ]


class InMemoryFocusGroupStore(FocusGroupStore):
    def __init__(self):
        self._focus_groups: Dict[str, FocusGroup] = {}

    async def save(self, focus_group: FocusGroup) -> None:
        focus_group.updated_at = utc_now()
        self._focus_groups[focus_group.id] = focus_group.model_copy(deep=True)

    async def get(self, focus_group_id: str) -> FocusGroup:
        stored = self._focus_groups.get(focus_group_id)
        if stored is None:
            raise NotFoundError(f"Focus group {focus_group_id} not found")
        return stored.model_copy(deep=True)

    async def list_for_owner(self, owner_id: str) -> list[FocusGroup]:
        owned = [
            fg.model_copy(deep=True)
            for fg in self._focus_groups.values()
            if fg.owner_id == owner_id
        ]
        return sorted(owned, key=lambda fg: fg.scheduled_at, reverse=True)


# ============================================================================
# Supabase backend
# ============================================================================


class _SupabaseTable:
    """
    Shared plumbing for Supabase-backed stores.

    **Simple Explanation:**
    The Supabase Python client is synchronous, so every call runs in a worker
    thread to keep the bot's event loop responsive.
    """

    table_name = ""

    def __init__(self, client: Client, encryption_key: str):
        self.client = client
        self.fernet = Fernet(derive_fernet_key(encryption_key))

    def _encode(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return encrypt_sensitive_data(self.fernet, document)

    def _decode(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return decrypt_sensitive_data(self.fernet, document)

    async def _upsert(self, row: Dict[str, Any]) -> None:
        def _write():
            self.client.table(self.table_name).upsert(row, on_conflict="id").execute()

        try:
            await asyncio.to_thread(_write)
        except Exception as e:
            logger.error(
                f"❌ Error saving row {row.get('id')} to {self.table_name}: {e}",
                exc_info=True,
            )
            raise PersistenceFailure(
                f"Failed to save {self.table_name} row {row.get('id')}: {e}"
            ) from e

    async def _select(self, build_query) -> list[Dict[str, Any]]:
        def _read():
            query = self.client.table(self.table_name).select("document")
            return build_query(query).execute()

        try:
            result = await asyncio.to_thread(_read)
        except Exception as e:
            logger.error(f"❌ Error reading from {self.table_name}: {e}", exc_info=True)
            raise PersistenceFailure(f"Failed to read {self.table_name}: {e}") from e
        return [self._decode(row["document"]) for row in (result.data or [])]


class SupabaseSessionStore(_SupabaseTable, SessionStore):
    table_name = SESSIONS_TABLE

    async def save(self, session: FocusGroupSession) -> None:
        session.updated_at = utc_now()
        document = self._encode(session.model_dump(mode="json"))
        row = {
            "id": session.id,
            "focus_group_id": session.focus_group_id,
            "status": session.status,
            "bot_status": session.bot_status,
            "created_at": document["created_at"],
            "updated_at": document["updated_at"],
            "document": document,
        }
        await self._upsert(row)
        logger.debug(
            f"✅ Session checkpoint saved: session_id={session.id}, status={session.status}"
        )

    async def get(self, session_id: str) -> FocusGroupSession:
        rows = await self._select(lambda q: q.eq("id", session_id).limit(1))
        if not rows:
            raise NotFoundError(f"Session {session_id} not found")
        return FocusGroupSession.model_validate(rows[0])

    async def find_latest_for_focus_group(self, focus_group_id: str) -> FocusGroupSession:
        rows = await self._select(
            lambda q: q.eq("focus_group_id", focus_group_id)
            .order("created_at", desc=True)
            .limit(1)
        )
        if not rows:
            raise NotFoundError(f"No session found for focus group {focus_group_id}")
        return FocusGroupSession.model_validate(rows[0])

    async def list_unfinished(self) -> list[FocusGroupSession]:
        rows = await self._select(
            lambda q: q.in_("status", list(UNFINISHED_SESSION_STATUSES))
        )
        return [FocusGroupSession.model_validate(row) for row in rows]


class SupabaseFocusGroupStore(_SupabaseTable, FocusGroupStore):
    table_name = FOCUS_GROUPS_TABLE

    async def save(self, focus_group: FocusGroup) -> None:
        focus_group.updated_at = utc_now()
        document = self._encode(focus_group.model_dump(mode="json"))
        row = {
            "id": focus_group.id,
            "owner_id": focus_group.owner_id,
            "status": focus_group.status,
            "scheduled_at": document["scheduled_at"],
            "updated_at": document["updated_at"],
            "document": document,
        }
        await self._upsert(row)

    async def get(self, focus_group_id: str) -> FocusGroup:
        rows = await self._select(lambda q: q.eq("id", focus_group_id).limit(1))
        if not rows:
            raise NotFoundError(f"Focus group {focus_group_id} not found")
        return FocusGroup.model_validate(rows[0])

    async def list_for_owner(self, owner_id: str) -> list[FocusGroup]:
        rows = await self._select(
            lambda q: q.eq("owner_id", owner_id).order("scheduled_at", desc=True)
        )
        return [FocusGroup.model_validate(row) for row in rows]


def build_stores(
    backend: str,
    supabase_url: Optional[str] = None,
    supabase_key: Optional[str] = None,
    encryption_key: Optional[str] = None,
) -> tuple[FocusGroupStore, SessionStore]:
    """
    Create the focus group and session stores for the configured backend.

    Raises:
        ValueError: If the Supabase backend is selected but not configured
    """
    if backend == "supabase":
        client = get_supabase_client(supabase_url, supabase_key)
        logger.info("✅ Using Supabase for focus group and session storage")
        return (
            SupabaseFocusGroupStore(client, encryption_key or ""),
            SupabaseSessionStore(client, encryption_key or ""),
        )

    logger.warning(
        "⚠️ Using in-memory storage - sessions will not survive a restart. "
        "Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY to persist them."
    )
    return InMemoryFocusGroupStore(), InMemorySessionStore()
