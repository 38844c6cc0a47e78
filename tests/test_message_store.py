"""Tests for the SQLite message store."""

from datetime import timedelta

import pytest

from arbiter.core.errors import BreakerOpen
from arbiter.database.message_store import MessageStore
from arbiter.datatypes.message_datatypes import ChannelSummary, MessageFilter
from arbiter.repositories.message_repo import record_ids
from arbiter.resilience.circuit_breaker import BreakerState, CircuitBreaker
from conftest import BASE_TIME


@pytest.mark.asyncio
async def test_insert_and_find_recent_newest_first(store, make_record):
    records = [make_record(f"claim {i}", minutes=i) for i in range(3)]
    for record in records:
        assert await store.insert(record) > 0

    found = await store.find_recent(MessageFilter.for_channel("c1", "g1"), 10)

    assert [m.content for m in found] == ["claim 2", "claim 1", "claim 0"]
    assert all(m.row_id is not None for m in found)
    assert found[0].created_at == records[2].created_at
    assert found[0].author_name == "Alice"


@pytest.mark.asyncio
async def test_filters_by_author_and_excludes_current(store, make_record):
    await store.insert(make_record("mine", minutes=1))
    await store.insert(make_record("theirs", author_id="u2", minutes=2))
    current = make_record("current", minutes=3)
    await store.insert(current)

    found = await store.find_recent(MessageFilter.for_author(current), 10)

    assert [m.content for m in found] == ["mine"]


@pytest.mark.asyncio
async def test_channels_and_scopes_are_separate(store, make_record):
    await store.insert(make_record("here"))
    await store.insert(make_record("other channel", channel_id="c2"))
    await store.insert(make_record("other guild", scope_id="g2"))

    assert await store.count(MessageFilter.for_channel("c1", "g1")) == 1


@pytest.mark.asyncio
async def test_find_oldest_and_replace_with_summary(store, make_record):
    for i in range(5):
        await store.insert(make_record(f"message {i}", minutes=i))
    channel = MessageFilter.for_channel("c1", "g1")

    oldest = await store.find_oldest(channel, 3)
    assert [m.content for m in oldest] == ["message 0", "message 1", "message 2"]

    summary = ChannelSummary(
        channel_id="c1",
        scope_id="g1",
        summary="Alice counted to two.",
        start_at=oldest[0].created_at,
        end_at=oldest[-1].created_at,
        users=["Alice"],
    )
    assert await store.replace_with_summary(summary, record_ids(oldest)) == 3
    assert await store.count(channel) == 2

    summaries = await store.recent_summaries("c1", "g1")
    assert [s.summary for s in summaries] == ["Alice counted to two."]
    assert summaries[0].users == ["Alice"]
    assert summaries[0].start_at == oldest[0].created_at


@pytest.mark.asyncio
async def test_purge_older_than(store, make_record):
    await store.insert(make_record("ancient", minutes=0))
    await store.insert(make_record("fresh", minutes=60 * 24 * 40))

    removed = await store.purge_older_than(30, now=BASE_TIME + timedelta(days=45))

    assert removed == 1
    remaining = await store.find_recent(MessageFilter.for_channel("c1", "g1"), 10)
    assert [m.content for m in remaining] == ["fresh"]


@pytest.mark.asyncio
async def test_unreachable_store_opens_breaker(make_record):
    breaker = CircuitBreaker("store", failure_threshold=2)
    unopened = MessageStore(breaker=breaker)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await unopened.insert(make_record("lost"))

    assert breaker.state is BreakerState.OPEN
    with pytest.raises(BreakerOpen):
        await unopened.count(MessageFilter.for_channel("c1", "g1"))
