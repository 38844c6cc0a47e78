"""
Message records and store filters.

A :class:`MessageRecord` is the immutable, platform-neutral form of a chat
message once it has been accepted for storage. Records are append-only:
nothing in the pipeline edits one after it is created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


DISCORD_MESSAGE_LINK = "https://discord.com/channels/{scope_id}/{channel_id}/{message_id}"


@dataclass(frozen=True, slots=True)
class MessageRecord:
    """A stored chat message.

    Attributes:
        id: Platform message id (a Discord snowflake as a string).
        author_id: Author's platform id.
        channel_id: Channel the message was posted in.
        scope_id: Guild (server) id; together with ``channel_id`` it forms the history scope.
        content: Raw message text.
        created_at: UTC creation time.
        is_bot: True for messages written by a bot account.
        author_name: Display name at the time the message was stored.
        row_id: Store-assigned primary key, ``None`` until inserted.
    """

    id: str
    author_id: str
    channel_id: str
    scope_id: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_bot: bool = False
    author_name: str = ""
    row_id: Optional[int] = None

    @property
    def user_scope_key(self) -> tuple[str, str, str]:
        return (self.author_id, self.channel_id, self.scope_id)

    @property
    def channel_scope_key(self) -> tuple[str, str]:
        return (self.channel_id, self.scope_id)

    def deep_link(self) -> str:
        """Return a jump link to this message, or an empty string when ids are missing."""
        if not (self.id and self.channel_id and self.scope_id):
            return ""
        return DISCORD_MESSAGE_LINK.format(
            scope_id=self.scope_id, channel_id=self.channel_id, message_id=self.id
        )


@dataclass(frozen=True, slots=True)
class ChannelSummary:
    """Condensed log replacing a pruned block of channel messages."""

    channel_id: str
    scope_id: str
    summary: str
    start_at: datetime
    end_at: datetime
    users: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class MessageFilter:
    """Selection criteria for store queries.

    ``author_id`` narrows a channel query to a single author.
    ``exclude_message_id`` drops the message currently under inspection.
    """

    channel_id: str
    scope_id: str
    author_id: Optional[str] = None
    exclude_message_id: Optional[str] = None

    @classmethod
    def for_author(cls, record: MessageRecord, *, exclude_current: bool = True) -> "MessageFilter":
        return cls(
            channel_id=record.channel_id,
            scope_id=record.scope_id,
            author_id=record.author_id,
            exclude_message_id=record.id if exclude_current else None,
        )

    @classmethod
    def for_channel(cls, channel_id: str, scope_id: str) -> "MessageFilter":
        return cls(channel_id=channel_id, scope_id=scope_id)
