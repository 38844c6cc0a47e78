"""
Pytest configuration and shared fixtures for Arbiter tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add src directory to path so imports work without an editable install
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

os.environ.setdefault("ARBITER_LOGS_DIR", str(Path(__file__).parent.parent / "logs"))

from arbiter.database.message_store import MessageStore  # noqa: E402
from arbiter.datatypes.message_datatypes import MessageRecord  # noqa: E402
from fakes import FakeClock  # noqa: E402

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_record() -> Callable[..., MessageRecord]:
    """Factory for records; ``minutes`` orders them in time."""
    counter = {"n": 0}

    def factory(
        content: str,
        *,
        author_id: str = "u1",
        channel_id: str = "c1",
        scope_id: str = "g1",
        minutes: Optional[int] = None,
        message_id: Optional[str] = None,
        author_name: str = "Alice",
        is_bot: bool = False,
    ) -> MessageRecord:
        counter["n"] += 1
        offset = counter["n"] if minutes is None else minutes
        return MessageRecord(
            id=message_id or f"m{counter['n']}",
            author_id=author_id,
            channel_id=channel_id,
            scope_id=scope_id,
            content=content,
            created_at=BASE_TIME + timedelta(minutes=offset),
            is_bot=is_bot,
            author_name=author_name,
        )

    return factory


@pytest.fixture
async def store(tmp_path: Path):
    """A MessageStore on a throwaway SQLite file."""
    message_store = MessageStore()
    await message_store.initialize(tmp_path / "arbiter.db")
    yield message_store
    await message_store.shutdown()
