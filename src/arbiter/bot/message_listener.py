"""Message listener Cog for Arbiter.

Stores every guild text message, queues detection for it and replies with
an alert when something is found. Messages that mention the bot, or reply
to one of its messages, get an interactive reply instead of a bare alert.
"""

from __future__ import annotations

import datetime
from typing import Optional

import discord
from discord.ext import commands

from arbiter.bot.formatting import format_detection_alert, format_sources, truncate_message
from arbiter.datatypes.detection_datatypes import DetectionOutcome
from arbiter.datatypes.message_datatypes import MessageRecord
from arbiter.jobs.job_datatypes import JobType
from arbiter.jobs.workers import ReplyResult
from arbiter.pipeline.context import PipelineContext
from arbiter.resilience.concurrency_gate import PriorityClass
from arbiter.util.logger import correlated, generate_correlation_id, get_logger

logger = get_logger("message_listener_cog")

REPLY_TIMEOUT_SECONDS = 90.0
FALLBACK_REPLY = "Nobody will help you."


def to_record(message: discord.Message, content: Optional[str] = None) -> MessageRecord:
    """Convert a guild ``discord.Message`` into a :class:`MessageRecord`."""
    author = message.author
    return MessageRecord(
        id=str(message.id),
        author_id=str(author.id),
        channel_id=str(message.channel.id),
        scope_id=str(message.guild.id) if message.guild else "",
        content=message.content if content is None else content,
        created_at=message.created_at.astimezone(datetime.timezone.utc),
        is_bot=bool(author.bot),
        author_name=getattr(author, "display_name", None) or str(author),
    )


def jump_view(url: str) -> Optional[discord.ui.View]:
    if not url:
        return None
    view = discord.ui.View()
    view.add_item(discord.ui.Button(label="Jump to message", style=discord.ButtonStyle.link, url=url))
    return view


class MessageListenerCog(commands.Cog):
    """Cog responsible for storing messages and surfacing detection results."""

    def __init__(self, discord_bot_instance: discord.Bot, context: PipelineContext) -> None:
        self.bot = discord_bot_instance
        self.context = context
        logger.info("Message listener cog loaded")

    def _should_process(self, message: discord.Message) -> bool:
        if message.guild is None or message.author.bot:
            return False
        if not isinstance(message.channel, discord.TextChannel):
            return False
        return bool(message.content and message.content.strip())

    async def _is_reply_to_bot(self, message: discord.Message, log) -> bool:
        reference = message.reference
        if reference is None or reference.message_id is None or self.bot.user is None:
            return False
        try:
            replied = reference.resolved
            if not isinstance(replied, discord.Message):
                replied = await message.channel.fetch_message(reference.message_id)
        except discord.DiscordException as exc:
            log.warning("Failed to fetch replied-to message: %s", exc)
            return False
        return replied.author.id == self.bot.user.id

    async def _store_bot_reply(self, sent: discord.Message, source: MessageRecord, text: str) -> None:
        record = MessageRecord(
            id=str(sent.id),
            author_id=str(sent.author.id),
            channel_id=source.channel_id,
            scope_id=source.scope_id,
            content=text,
            is_bot=True,
            author_name="Arbiter",
        )
        try:
            await self.context.history.save_message(record)
        except Exception as exc:
            logger.warning("Failed to store bot reply: %s", exc)

    async def _send_alert(self, message: discord.Message, outcome: DetectionOutcome) -> None:
        text = format_detection_alert(outcome, message.content)
        if text is None:
            return
        url = outcome.contradiction.evidence_url if outcome.contradiction else ""
        view = jump_view(url)
        if view is not None:
            await message.reply(text, view=view)
        else:
            await message.reply(text)

    async def _send_interactive_reply(
        self, message: discord.Message, record: MessageRecord, outcome: DetectionOutcome, correlation_id: str, log
    ) -> None:
        handle = self.context.jobs.submit(
            JobType.USER_REPLY,
            {
                "record": record,
                "bot_user_id": str(self.bot.user.id) if self.bot.user else None,
                "outcome": outcome if outcome.has_findings else None,
            },
            PriorityClass.USER_REPLY,
            correlation_id,
        )
        async with message.channel.typing():
            result = await handle.wait(REPLY_TIMEOUT_SECONDS)

        if not isinstance(result, ReplyResult):
            log.warning("Interactive reply failed or timed out")
            await message.reply(FALLBACK_REPLY)
            return

        text = truncate_message(result.text + format_sources(result.sources))
        sent = await message.reply(text)
        await self._store_bot_reply(sent, record, result.text)

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message) -> None:
        """
        Handle new messages: store in history, run detection, then reply.

        Detection failures are silent; only the interactive reply has a
        visible fallback message.
        """
        if not self._should_process(message):
            return

        correlation_id = generate_correlation_id()
        log = correlated(logger, correlation_id, "message")
        log.debug("Received message from %s: %s", message.author, message.content[:80])

        record = to_record(message)
        try:
            await self.context.history.save_message(record)
        except Exception as exc:
            log.warning("Failed to save message: %s", exc)

        is_mentioned = self.bot.user is not None and self.bot.user in message.mentions
        user_facing = is_mentioned or await self._is_reply_to_bot(message, log)

        handles = await self.context.detection.submit(record, correlation_id)
        outcome = DetectionOutcome()
        if not handles.empty:
            outcome = await self.context.detection.wait_for_results(handles)

        try:
            if user_facing:
                await self._send_interactive_reply(message, record, outcome, correlation_id, log)
            elif outcome.has_findings:
                await self._send_alert(message, outcome)
        except discord.DiscordException as exc:
            log.error("Failed to send reply: %s", exc)


def setup(discord_bot_instance: discord.Bot, context: PipelineContext) -> None:
    """Register the message listener cog."""
    discord_bot_instance.add_cog(MessageListenerCog(discord_bot_instance, context))
