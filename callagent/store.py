"""Session store — where call sessions live between turns.

``SessionStore`` is the interface the conversation core consumes; any
backend (database table, key-value service, ...) implements it. Two
implementations ship here:

  InMemorySessionStore  process-local dict, for tests and single-node dev
  JsonFileSessionStore  one JSON document per session under a directory

Every update is conditional on the version the caller read, so two writers
racing on the same session cannot silently overwrite each other.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from callagent.errors import ConcurrentUpdateError, PersistenceFailure, SessionNotFound
from callagent.models.session import CallSession

log = logging.getLogger("callagent.store")

# Fields a turn is allowed to rewrite. Identity and questionnaire are fixed
# at creation.
MUTABLE_FIELDS = frozenset({
    "current_step",
    "collected_data",
    "interruption_count",
    "conversation_history",
    "pending_correction",
})

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def is_valid_session_id(value: str) -> bool:
    return bool(_SESSION_ID_PATTERN.match(value))


def _apply_changes(session: CallSession, changes: dict[str, Any]) -> CallSession:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session fields: {sorted(unknown)}")
    return session.with_changes(
        **changes,
        version=session.version + 1,
        updated_at=datetime.now(timezone.utc),
    )


class SessionStore(ABC):
    """Abstract session persistence backend."""

    @abstractmethod
    async def create(self, session: CallSession) -> CallSession:
        """Persist a brand-new session and return it as stored."""

    @abstractmethod
    async def get(self, session_id: str) -> CallSession:
        """Load a session.

        Raises:
            SessionNotFound: no session with this id exists.
        """

    @abstractmethod
    async def update(
        self, session_id: str, changes: dict[str, Any], expected_version: int,
    ) -> CallSession:
        """Apply ``changes`` if the stored version still equals ``expected_version``.

        Sets ``updated_at`` and bumps ``version`` on success.

        Raises:
            SessionNotFound: the session vanished.
            ConcurrentUpdateError: someone else wrote first.
            PersistenceFailure: the backend could not record the write.
        """

    async def exists(self, session_id: str) -> bool:
        try:
            await self.get(session_id)
        except SessionNotFound:
            return False
        return True


class InMemorySessionStore(SessionStore):
    """Dict-backed store. Hands out copies so callers can't mutate stored state."""

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    async def create(self, session: CallSession) -> CallSession:
        if session.session_id in self._sessions:
            raise PersistenceFailure(f"Session {session.session_id} already exists")
        self._sessions[session.session_id] = session.model_copy(deep=True)
        return session.model_copy(deep=True)

    async def get(self, session_id: str) -> CallSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session.model_copy(deep=True)

    async def update(
        self, session_id: str, changes: dict[str, Any], expected_version: int,
    ) -> CallSession:
        current = self._sessions.get(session_id)
        if current is None:
            raise SessionNotFound(session_id)
        if current.version != expected_version:
            raise ConcurrentUpdateError(session_id, expected_version, current.version)
        updated = _apply_changes(current, changes)
        self._sessions[session_id] = updated
        return updated.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._sessions)


class JsonFileSessionStore(SessionStore):
    """One ``<session_id>.json`` document per session.

    Writes go to a temp file and are renamed into place so a crash never
    leaves a half-written session behind. Version checks are done inside a
    per-store lock, which is enough for a single server process.
    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._lock = asyncio.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise SessionNotFound(session_id)
        return self._dir / f"{session_id}.json"

    def _read(self, path: Path) -> CallSession:
        return CallSession.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, session: CallSession) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(session.model_dump(mode="json")) + "\n", encoding="utf-8",
        )
        os.replace(tmp, path)

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def create(self, session: CallSession) -> CallSession:
        path = self._path(session.session_id)
        async with self._lock:
            if path.exists():
                raise PersistenceFailure(f"Session {session.session_id} already exists")
            try:
                await self._run(self._write, path, session)
            except OSError as e:
                log.error("Failed to create session %s: %s", session.session_id, e)
                raise PersistenceFailure(f"Could not store session: {e}") from e
        return session

    async def get(self, session_id: str) -> CallSession:
        path = self._path(session_id)
        try:
            return await self._run(self._read, path)
        except FileNotFoundError:
            raise SessionNotFound(session_id) from None
        except (OSError, ValidationError, ValueError) as e:
            log.error("Failed to load session %s: %s", session_id, e)
            raise PersistenceFailure(f"Could not load session: {e}") from e

    async def update(
        self, session_id: str, changes: dict[str, Any], expected_version: int,
    ) -> CallSession:
        path = self._path(session_id)
        async with self._lock:
            current = await self.get(session_id)
            if current.version != expected_version:
                raise ConcurrentUpdateError(session_id, expected_version, current.version)
            updated = _apply_changes(current, changes)
            try:
                await self._run(self._write, path, updated)
            except OSError as e:
                log.error("Failed to write session %s: %s", session_id, e)
                raise PersistenceFailure(f"Could not store session: {e}") from e
        return updated


def build_store(kind: str, session_dir: str | Path) -> SessionStore:
    """Instantiate the store named by ``SESSION_STORE``."""
    if kind == "file":
        log.info("Using JSON file session store at %s", session_dir)
        return JsonFileSessionStore(session_dir)
    if kind == "memory":
        return InMemorySessionStore()
    raise ValueError(f"Unknown session store: {kind!r}")
