from __future__ import annotations

import logging

LOGGER = logging.getLogger("replybot")
APP_VERSION = "0.1.0"

DEFAULT_HANDLE = "statmuse_bot"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_SESSION_PATH = ".session.json"
DEFAULT_SCOPES = "tweet.read tweet.write users.read offline.access"

TOKEN_REFRESH_MARGIN_SECONDS = 60
PENDING_AUTH_TTL_SECONDS = 600
