from __future__ import annotations

import time
from dataclasses import dataclass

from auth.errors import StoreError


@dataclass
class PendingAuth:
    csrf_state: str
    pkce_verifier: str
    created_at: float

    def is_stale(self, ttl_seconds: float, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current - self.created_at > ttl_seconds

    def to_record(self) -> dict:
        return {
            "csrf_state": self.csrf_state,
            "pkce_verifier": self.pkce_verifier,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: object) -> "PendingAuth":
        if not isinstance(record, dict):
            raise StoreError("pending_auth record must be a JSON object.")
        csrf_state = record.get("csrf_state")
        pkce_verifier = record.get("pkce_verifier")
        created_at = record.get("created_at")
        if not isinstance(csrf_state, str) or not csrf_state:
            raise StoreError("pending_auth record missing csrf_state.")
        if not isinstance(pkce_verifier, str) or not pkce_verifier:
            raise StoreError("pending_auth record missing pkce_verifier.")
        if not isinstance(created_at, (int, float)):
            raise StoreError("pending_auth record missing created_at.")
        return cls(csrf_state=csrf_state, pkce_verifier=pkce_verifier, created_at=float(created_at))


@dataclass
class Token:
    access_token: str
    refresh_token: str | None
    expires_at: float
    scope: str = ""

    def is_expired(self, margin_seconds: float = 0, *, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + margin_seconds >= self.expires_at

    def to_record(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
        }

    @classmethod
    def from_record(cls, record: object) -> "Token":
        if not isinstance(record, dict):
            raise StoreError("token record must be a JSON object.")
        access_token = record.get("access_token")
        refresh_token = record.get("refresh_token")
        expires_at = record.get("expires_at")
        scope = record.get("scope", "")
        if not isinstance(access_token, str) or not access_token:
            raise StoreError("token record missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise StoreError("token record refresh_token must be a string.")
        if not isinstance(expires_at, (int, float)):
            raise StoreError("token record missing expires_at.")
        if not isinstance(scope, str):
            raise StoreError("token record scope must be a string.")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_at=float(expires_at),
            scope=scope,
        )

