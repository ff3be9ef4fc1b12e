from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable

from auth.errors import AuthError, PlatformError
from auth.token_guard import TokenGuard

from .lookup import AnswerLookupError
from .models import Answer, Mention
from .platform import PlatformClient

LOGGER = logging.getLogger("replybot.pipeline")

MENTION_PATTERN = re.compile(r"\.?@\w{1,15}")
MAX_REPLY_LENGTH = 280


def sanitize_mention_text(raw_text: str) -> str:
    return MENTION_PATTERN.sub("", raw_text).strip()


def fit_reply(text: str, limit: int = MAX_REPLY_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class ReplyPipeline:
    """Turns one mention into at most one reply.

    Nothing is retried. Lookup, auth and platform failures are logged here and
    ``handle`` returns ``None``, so one bad mention never stops the stream. A
    session store failure propagates: running without durable state is fatal.
    """

    def __init__(
        self,
        *,
        platform: PlatformClient,
        token_guard: TokenGuard,
        lookup: Callable[[str], Awaitable[Answer]],
    ) -> None:
        self._platform = platform
        self._token_guard = token_guard
        self._lookup = lookup

    async def handle(self, mention: Mention) -> str | None:
        query = sanitize_mention_text(mention.raw_text)
        if not query:
            LOGGER.warning("Mention %s has no question after removing handles", mention.id)
            return None

        try:
            answer = await self._lookup(query)
        except AnswerLookupError as error:
            LOGGER.error("Lookup failed for mention %s (%r): %s", mention.id, query, error)
            return None

        text = fit_reply(answer.text)
        try:
            posted_id = await self._token_guard.with_valid_token(
                lambda token: self._platform.post_reply(token, mention.id, text)
            )
        except AuthError as error:
            LOGGER.error("No usable token for mention %s: %s", mention.id, error)
            return None
        except PlatformError as error:
            LOGGER.error("Failed to reply to mention %s: %s", mention.id, error)
            return None

        LOGGER.info("Replied to mention %s with post %s", mention.id, posted_id)
        return posted_id
