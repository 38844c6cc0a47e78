import datetime
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from arbiter.bot import message_listener
from arbiter.datatypes.detection_datatypes import DetectionKind, DetectionOutcome, DetectionResult
from arbiter.jobs.job_datatypes import JobType
from arbiter.jobs.workers import ReplyResult
from arbiter.services.detection_service import DetectionHandles


class FakeTextChannel:
    def __init__(self, channel_id=10):
        self.id = channel_id
        self.fetch_message = AsyncMock()

    @asynccontextmanager
    async def typing(self):
        yield


class FakeMessage:
    def __init__(self, *, content="", author=None, guild=None, channel=None, message_id=100, mentions=None):
        self.id = message_id
        self.content = content
        self.author = author or SimpleNamespace(id=1, bot=False, display_name="Alice")
        self.guild = guild if guild is not None else SimpleNamespace(id=20)
        self.channel = channel or FakeTextChannel()
        self.created_at = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)
        self.mentions = mentions or []
        self.reference = None
        self.reply = AsyncMock(return_value=SimpleNamespace(id=555, author=SimpleNamespace(id=999)))


class FakeHandle:
    def __init__(self, result):
        self.result = result

    async def wait(self, timeout=None):
        return self.result


@pytest.fixture(autouse=True)
def patch_discord_types(monkeypatch):
    monkeypatch.setattr(message_listener.discord, "TextChannel", FakeTextChannel, raising=False)
    monkeypatch.setattr(message_listener, "jump_view", lambda url: None)


@pytest.fixture
def bot_user():
    return SimpleNamespace(id=999)


def make_cog(bot_user, outcome=DetectionOutcome(), reply_result=None):
    handles = DetectionHandles("cid", contradiction=FakeHandle(None))
    context = SimpleNamespace(
        history=SimpleNamespace(save_message=AsyncMock(return_value=1)),
        detection=SimpleNamespace(
            submit=AsyncMock(return_value=handles),
            wait_for_results=AsyncMock(return_value=outcome),
        ),
        jobs=SimpleNamespace(submit=MagicMock(return_value=FakeHandle(reply_result))),
    )
    cog = message_listener.MessageListenerCog(SimpleNamespace(user=bot_user), context)
    return cog, context


def test_to_record_maps_discord_fields():
    record = message_listener.to_record(FakeMessage(content="The earth is flat"))

    assert record.id == "100"
    assert record.author_id == "1"
    assert record.channel_id == "10"
    assert record.scope_id == "20"
    assert record.author_name == "Alice"
    assert record.deep_link() == "https://discord.com/channels/20/10/100"


def test_should_process_filters_bots_dms_and_empty(bot_user):
    cog, _ = make_cog(bot_user)

    assert cog._should_process(FakeMessage(content="The earth is flat"))
    assert not cog._should_process(FakeMessage(content="   "))
    assert not cog._should_process(FakeMessage(content="hi", author=SimpleNamespace(id=2, bot=True)))
    assert not cog._should_process(FakeMessage(content="hi", channel=SimpleNamespace(id=3)))


@pytest.mark.asyncio
async def test_on_message_stores_detects_and_alerts(bot_user):
    finding = DetectionResult(
        kind=DetectionKind.MISINFORMATION, verdict="yes", reason="It is round.", evidence_url="https://nasa.gov"
    )
    cog, context = make_cog(bot_user, outcome=DetectionOutcome(misinformation=finding))
    message = FakeMessage(content="The earth is flat")

    await cog.on_message(message)

    context.history.save_message.assert_awaited_once()
    context.detection.submit.assert_awaited_once()
    text = message.reply.await_args.args[0]
    assert text.startswith("**MISINFORMATION DETECTED**")


@pytest.mark.asyncio
async def test_on_message_without_findings_stays_quiet(bot_user):
    cog, _ = make_cog(bot_user)
    message = FakeMessage(content="The earth is round")

    await cog.on_message(message)

    message.reply.assert_not_awaited()


@pytest.mark.asyncio
async def test_mention_gets_interactive_reply_and_is_stored(bot_user):
    reply = ReplyResult("The earth is round.", ["https://nasa.gov/earth"], "fake-model")
    cog, context = make_cog(bot_user, reply_result=reply)
    message = FakeMessage(content="Is the earth flat?", mentions=[bot_user])

    await cog.on_message(message)

    job_type, payload = context.jobs.submit.call_args.args[:2]
    assert job_type is JobType.USER_REPLY
    assert payload["bot_user_id"] == "999"
    text = message.reply.await_args.args[0]
    assert text.startswith("The earth is round.")
    assert "<https://nasa.gov/earth>" in text
    stored = context.history.save_message.await_args_list[-1].args[0]
    assert stored.is_bot and stored.id == "555"


@pytest.mark.asyncio
async def test_failed_interactive_reply_uses_fallback(bot_user):
    cog, _ = make_cog(bot_user, reply_result=None)
    message = FakeMessage(content="Is the earth flat?", mentions=[bot_user])

    await cog.on_message(message)

    message.reply.assert_awaited_once_with(message_listener.FALLBACK_REPLY)


@pytest.mark.asyncio
async def test_store_failure_does_not_block_detection(bot_user):
    cog, context = make_cog(bot_user)
    context.history.save_message.side_effect = RuntimeError("disk full")

    await cog.on_message(FakeMessage(content="The earth is flat"))

    context.detection.submit.assert_awaited_once()
