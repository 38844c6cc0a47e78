"""Tests for the history service: cache-backed reads and summarization pruning."""

import asyncio

import pytest

from arbiter.cache.history_cache import MessageHistoryCache
from arbiter.configuration.app_configuration import StorageSettings
from arbiter.datatypes.message_datatypes import ChannelSummary, MessageFilter, MessageRecord
from arbiter.services.history_service import FAILED_SUMMARY, HistoryService, worth_summarizing


def make_service(store, summarizer=None, **settings):
    return HistoryService(store, MessageHistoryCache(), StorageSettings(**settings), summarizer)


@pytest.mark.asyncio
async def test_save_then_read_user_history_from_cache(store, make_record):
    service = make_service(store)
    first = make_record("The earth is flat")
    second = make_record("The moon landing happened")
    await service.save_message(first)
    await service.save_message(second)

    history = await service.fetch_user_history("u1", "c1", "g1", limit=1, exclude_message_id=second.id)

    assert history == [first]
    await service.shutdown()


@pytest.mark.asyncio
async def test_cache_miss_falls_through_to_store(store, make_record):
    for i in range(3):
        await store.insert(make_record(f"stored claim {i}", minutes=i))
    service = make_service(store)

    history = await service.fetch_user_history("u1", "c1", "g1", limit=2)

    assert [m.content for m in history] == ["stored claim 2", "stored claim 1"]
    assert [m.content for m in await service.fetch_user_history("u1", "c1", "g1", limit=2)] == [
        "stored claim 2",
        "stored claim 1",
    ]


@pytest.mark.asyncio
async def test_channel_history_is_oldest_first_with_summaries_leading(store, make_record):
    summary = ChannelSummary(
        channel_id="c1",
        scope_id="g1",
        summary="Earlier they argued about tides.",
        start_at=make_record("x", minutes=0).created_at,
        end_at=make_record("x", minutes=1).created_at,
    )
    await store.insert_summary(summary)
    for i in range(3):
        await store.insert(make_record(f"message {i}", minutes=10 + i))
    service = make_service(store)

    items = await service.fetch_channel_history("c1", "g1", limit=2)

    assert isinstance(items[0], ChannelSummary)
    assert [m.content for m in items[1:] if isinstance(m, MessageRecord)] == ["message 1", "message 2"]


@pytest.mark.asyncio
async def test_pruning_replaces_oldest_block_with_summary(store, make_record):
    prompts = []

    async def summarizer(prompt):
        prompts.append(prompt)
        return "  Alice made claims about the earth.  "

    service = make_service(store, summarizer, max_context_messages_per_channel=4, summary_block_size=3)
    for i in range(4):
        await service.save_message(make_record(f"The earth claim number {i}", minutes=i), prune=False)
    await service.save_message(make_record("The earth claim number 4", minutes=4))
    await service.drain()

    channel = MessageFilter.for_channel("c1", "g1")
    assert await store.count(channel) == 2
    summaries = await store.recent_summaries("c1", "g1")
    assert [s.summary for s in summaries] == ["Alice made claims about the earth."]
    assert summaries[0].users == ["Alice"]
    assert len(prompts) == 1


@pytest.mark.asyncio
async def test_failed_summary_uses_placeholder(store, make_record):
    async def broken(prompt):
        raise RuntimeError("model unavailable")

    service = make_service(store, broken, max_context_messages_per_channel=2, summary_block_size=2)
    for i in range(3):
        await store.insert(make_record(f"Vaccines claim number {i}", minutes=i))

    summary = await service.prune_channel("c1", "g1")

    assert summary.summary == FAILED_SUMMARY
    assert await store.count(MessageFilter.for_channel("c1", "g1")) == 1


@pytest.mark.asyncio
async def test_trivial_block_is_left_alone(store, make_record):
    service = make_service(store, max_context_messages_per_channel=2, summary_block_size=3)
    for i, text in enumerate(["lol", "ok", "haha"]):
        await store.insert(make_record(text, minutes=i))

    assert await service.prune_channel("c1", "g1") is None
    assert await store.count(MessageFilter.for_channel("c1", "g1")) == 3


@pytest.mark.asyncio
async def test_under_limit_is_not_pruned(store, make_record):
    service = make_service(store)
    await store.insert(make_record("The earth is flat"))

    assert await service.prune_channel("c1", "g1") is None


def test_worth_summarizing(make_record):
    substantive = make_record("The earth is flat")
    trivial = make_record("lol")

    assert worth_summarizing([substantive, trivial], 0.7)
    assert not worth_summarizing([trivial, trivial], 0.7)
    assert not worth_summarizing([trivial, trivial, trivial, substantive], 0.7)
    assert not worth_summarizing([], 0.7)


def count_store_reads(monkeypatch, store):
    reads = []
    find_recent = store.find_recent

    async def counted(*args, **kwargs):
        reads.append(args)
        return await find_recent(*args, **kwargs)

    monkeypatch.setattr(store, "find_recent", counted)
    return reads


@pytest.mark.asyncio
async def test_message_saved_during_refill_stays_visible(store, make_record, monkeypatch):
    service = make_service(store)
    first = make_record("The earth is flat")
    await store.insert(first)
    snapshot_taken = asyncio.Event()
    release = asyncio.Event()
    find_recent = store.find_recent

    async def slow_read(*args, **kwargs):
        records = await find_recent(*args, **kwargs)
        snapshot_taken.set()
        await release.wait()
        return records

    monkeypatch.setattr(store, "find_recent", slow_read)

    pending = asyncio.create_task(service.fetch_user_history("u1", "c1", "g1", limit=1))
    await snapshot_taken.wait()
    second = make_record("The earth is round")
    await service.save_message(second, prune=False)
    release.set()
    await pending

    history = await service.fetch_user_history("u1", "c1", "g1", limit=1)

    assert [m.id for m in history] == [second.id]


@pytest.mark.asyncio
async def test_repeat_detection_reads_are_served_from_cache(store, make_record, monkeypatch):
    service = HistoryService(store, MessageHistoryCache(user_history_length=60), StorageSettings())
    for i in range(3):
        await service.save_message(make_record(f"Vaccines claim number {i}", minutes=i), prune=False)
    reads = count_store_reads(monkeypatch, store)

    current = make_record("Vaccines claim number 3", minutes=3)
    await service.save_message(current, prune=False)
    assert len(await service.fetch_user_messages_for_detection(current, 50)) == 3

    later = make_record("Vaccines claim number 4", minutes=4)
    await service.save_message(later, prune=False)
    prior = await service.fetch_user_messages_for_detection(later, 50)

    assert [m.content for m in prior] == [f"Vaccines claim number {i}" for i in (3, 2, 1, 0)]
    assert len(reads) == 1
