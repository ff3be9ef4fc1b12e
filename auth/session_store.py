from __future__ import annotations

import asyncio
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from auth.errors import StoreError
from auth.models import PendingAuth, Token

SCHEMA_VERSION = 1


class SessionStore(ABC):
    """Holds the single pending login attempt and the current token.

    Each method is atomic on its own. Callers that need to read, check and
    then write (the callback handler, the token guard) hold ``lock`` for the
    duration of that sequence and must not await network calls while holding it.
    """

    def __init__(self) -> None:
        self.lock = asyncio.Lock()

    @abstractmethod
    async def get_pending(self) -> PendingAuth | None:
        raise NotImplementedError

    @abstractmethod
    async def set_pending(self, pending: PendingAuth) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear_pending(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def get_token(self) -> Token | None:
        raise NotImplementedError

    @abstractmethod
    async def set_token(self, token: Token) -> None:
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        super().__init__()
        self._pending: PendingAuth | None = None
        self._token: Token | None = None

    async def get_pending(self) -> PendingAuth | None:
        return self._pending

    async def set_pending(self, pending: PendingAuth) -> None:
        self._pending = pending

    async def clear_pending(self) -> None:
        self._pending = None

    async def get_token(self) -> Token | None:
        return self._token

    async def set_token(self, token: Token) -> None:
        self._token = token


class FileSessionStore(SessionStore):
    def __init__(self, path: str | Path = ".session.json") -> None:
        super().__init__()
        self._path = Path(path)
        self._io_lock = threading.Lock()

    async def get_pending(self) -> PendingAuth | None:
        record = self._read_all().get("pending_auth")
        if record is None:
            return None
        return PendingAuth.from_record(record)

    async def set_pending(self, pending: PendingAuth) -> None:
        self._update("pending_auth", pending.to_record())

    async def clear_pending(self) -> None:
        self._update("pending_auth", None)

    async def get_token(self) -> Token | None:
        record = self._read_all().get("token")
        if record is None:
            return None
        return Token.from_record(record)

    async def set_token(self, token: Token) -> None:
        self._update("token", token.to_record())

    def _update(self, slot: str, value: dict | None) -> None:
        with self._io_lock:
            payload = self._read_unlocked()
            payload[slot] = value
            self._write_unlocked(payload)

    def _read_all(self) -> dict:
        with self._io_lock:
            return self._read_unlocked()

    def _read_unlocked(self) -> dict:
        if not self._path.exists():
            return {"version": SCHEMA_VERSION, "pending_auth": None, "token": None}

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except OSError as error:
            raise StoreError(f"Could not read session store {self._path}: {error}") from error
        except json.JSONDecodeError as error:
            raise StoreError(f"Session store {self._path} is not valid JSON.") from error

        if not isinstance(raw, dict):
            raise StoreError("Session store file is invalid; expected top-level JSON object.")
        version = raw.get("version")
        if version != SCHEMA_VERSION:
            raise StoreError(f"Unsupported session store version: {version!r}")
        return raw

    def _write_unlocked(self, payload: dict) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self._path.name}.",
                suffix=".tmp",
                dir=self._path.parent,
            )
        except OSError as error:
            raise StoreError(f"Could not write session store {self._path}: {error}") from error

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self._path)
        except OSError as error:
            raise StoreError(f"Could not write session store {self._path}: {error}") from error
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
