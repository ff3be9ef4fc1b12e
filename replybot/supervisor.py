from __future__ import annotations

import logging

from auth.errors import PlatformError

from .models import StreamRule
from .pipeline import ReplyPipeline
from .platform import PlatformClient

LOGGER = logging.getLogger("replybot.supervisor")


def mention_rule(handle: str) -> StreamRule:
    handle = handle.lstrip("@")
    return StreamRule(
        value=f"@{handle} -is:retweet -from:{handle}",
        tag=f"mentions {handle}",
    )


class StreamSupervisor:
    def __init__(
        self,
        *,
        platform: PlatformClient,
        pipeline: ReplyPipeline,
        handle: str,
    ) -> None:
        self._platform = platform
        self._pipeline = pipeline
        self.rule = mention_rule(handle)
        self.handled = 0

    async def register_filter(self) -> None:
        await self._platform.register_stream_filter(self.rule)
        LOGGER.info("Registered stream rule %r", self.rule.value)

    async def run(self) -> None:
        """Process mentions one at a time until the stream ends.

        Error elements are logged and skipped. Failing to connect, or the
        stream closing, raises ``PlatformError``; there is no reconnect.
        """
        async for item in self._platform.open_stream():
            if isinstance(item, PlatformError):
                LOGGER.error("Skipping stream element: %s", item)
                continue
            await self._pipeline.handle(item)
            self.handled += 1
        raise PlatformError("Mention stream closed.")

    async def start(self) -> None:
        await self.register_filter()
        await self.run()
