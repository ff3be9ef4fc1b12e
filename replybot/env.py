from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from .constants import (
    DEFAULT_HANDLE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_SCOPES,
    DEFAULT_SESSION_PATH,
    LOGGER,
)

REQUIRED_ENV = (
    "X_OAUTH2_CLIENT_ID",
    "X_OAUTH2_CLIENT_SECRET",
    "X_BEARER_TOKEN",
)


@dataclass
class Settings:
    client_id: str
    client_secret: str
    bearer_token: str
    public_url: str
    handle: str
    host: str
    port: int
    session_path: str
    scopes: list[str]
    api_base_url: str
    api_timeout: float
    api_max_retries: int

    @property
    def callback_url(self) -> str:
        return f"{self.public_url}/callback"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    public_url = os.getenv("BOT_PUBLIC_URL", "").strip()
    if public_url:
        try:
            TypeAdapter(AnyHttpUrl).validate_python(public_url)
        except ValidationError as error:
            raise RuntimeError(
                "BOT_PUBLIC_URL must be a valid http(s) URL (for example: "
                "https://bot.example.com)."
            ) from error

    scopes = os.getenv("X_OAUTH2_SCOPES", DEFAULT_SCOPES).split()
    if "offline.access" not in scopes:
        LOGGER.warning(
            "X_OAUTH2_SCOPES is missing offline.access; refresh tokens will not be issued."
        )
        raise RuntimeError("X_OAUTH2_SCOPES must include offline.access.")


def load_settings() -> Settings:
    validate_env()

    host = os.getenv("BOT_HOST", DEFAULT_HOST).strip() or DEFAULT_HOST
    port = _get_env_int("BOT_PORT", DEFAULT_PORT)
    public_url = os.getenv("BOT_PUBLIC_URL", "").strip() or f"http://{host}:{port}"
    handle = os.getenv("BOT_HANDLE", DEFAULT_HANDLE).strip().lstrip("@") or DEFAULT_HANDLE

    return Settings(
        client_id=os.getenv("X_OAUTH2_CLIENT_ID", "").strip(),
        client_secret=os.getenv("X_OAUTH2_CLIENT_SECRET", "").strip(),
        bearer_token=os.getenv("X_BEARER_TOKEN", "").strip(),
        public_url=public_url.rstrip("/"),
        handle=handle,
        host=host,
        port=port,
        session_path=os.getenv("BOT_SESSION_PATH", DEFAULT_SESSION_PATH),
        scopes=os.getenv("X_OAUTH2_SCOPES", DEFAULT_SCOPES).split(),
        api_base_url=os.getenv("X_API_BASE_URL", "https://api.x.com"),
        api_timeout=_get_env_float("X_API_TIMEOUT", 30),
        api_max_retries=_get_env_int("X_API_MAX_RETRIES", 2),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("BOT_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
