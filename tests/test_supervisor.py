import pytest

from auth.errors import PlatformError
from auth.session_store import MemorySessionStore
from auth.token_guard import TokenGuard
from replybot.models import Answer, Mention
from replybot.pipeline import ReplyPipeline
from replybot.supervisor import StreamSupervisor, mention_rule
from tests.helpers import FakeLookup, FakePlatform, make_token


async def _build(stream_items, answers):
    store = MemorySessionStore()
    await store.set_token(make_token())
    platform = FakePlatform(stream_items=stream_items)
    lookup = FakeLookup(answers)
    pipeline = ReplyPipeline(
        platform=platform,
        token_guard=TokenGuard(store, platform.refresh),
        lookup=lookup,
    )
    supervisor = StreamSupervisor(platform=platform, pipeline=pipeline, handle="statmuse_bot")
    return supervisor, platform, lookup


def test_mention_rule_excludes_retweets_and_self() -> None:
    rule = mention_rule("@statmuse_bot")

    assert rule.value == "@statmuse_bot -is:retweet -from:statmuse_bot"
    assert rule.tag == "mentions statmuse_bot"


@pytest.mark.asyncio
async def test_register_filter_registers_rule_once() -> None:
    supervisor, platform, _ = await _build([], {})

    await supervisor.register_filter()

    assert platform.rules == [mention_rule("statmuse_bot")]


@pytest.mark.asyncio
async def test_lookup_failure_does_not_stop_the_stream() -> None:
    supervisor, platform, lookup = await _build(
        [
            Mention(id="1", raw_text="@statmuse_bot unknown question"),
            Mention(id="2", raw_text="@statmuse_bot lakers points"),
        ],
        {"lakers points": Answer(text="112")},
    )

    with pytest.raises(PlatformError, match="closed"):
        await supervisor.run()

    assert lookup.queries == ["unknown question", "lakers points"]
    assert platform.posts == [("x-access-token", "2", "112")]
    assert supervisor.handled == 2


@pytest.mark.asyncio
async def test_error_elements_are_skipped() -> None:
    supervisor, platform, _ = await _build(
        [
            PlatformError("Malformed stream element"),
            Mention(id="3", raw_text="@statmuse_bot lakers points"),
        ],
        {"lakers points": Answer(text="112")},
    )

    with pytest.raises(PlatformError):
        await supervisor.run()

    assert platform.posts == [("x-access-token", "3", "112")]
    assert supervisor.handled == 1


@pytest.mark.asyncio
async def test_start_registers_filter_before_streaming() -> None:
    supervisor, platform, _ = await _build([], {})

    with pytest.raises(PlatformError):
        await supervisor.start()

    assert len(platform.rules) == 1


class _RejectingPlatform(FakePlatform):
    async def register_stream_filter(self, rule) -> None:
        raise PlatformError("Rule rejected", status_code=403)

    async def open_stream(self):
        raise AssertionError("stream must not be opened")
        yield


@pytest.mark.asyncio
async def test_registration_failure_is_fatal() -> None:
    platform = _RejectingPlatform()
    store = MemorySessionStore()
    pipeline = ReplyPipeline(
        platform=platform,
        token_guard=TokenGuard(store, platform.refresh),
        lookup=FakeLookup({}),
    )
    supervisor = StreamSupervisor(platform=platform, pipeline=pipeline, handle="statmuse_bot")

    with pytest.raises(PlatformError, match="Rule rejected") as excinfo:
        await supervisor.start()

    assert excinfo.value.status_code == 403
    assert supervisor.handled == 0
