"""Interactive console for inspecting and stopping the running bot."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import discord
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.patch_stdout import patch_stdout
from prompt_toolkit.shortcuts import PromptSession

from arbiter.pipeline.context import PipelineContext
from arbiter.util.logger import get_logger

BOX_WIDTH = 45

logger = get_logger("console")

CommandHandler = Callable[["ConsoleControl", list[str]], Awaitable[None]]


def box_title(title: str) -> list[str]:
    inner_width = BOX_WIDTH - 2
    pad_left = (inner_width - len(title)) // 2
    pad_right = inner_width - len(title) - pad_left
    return [
        f"╔{'═' * inner_width}╗",
        f"║{' ' * pad_left}{title}{' ' * pad_right}║",
        f"╚{'═' * inner_width}╝",
    ]


@dataclass
class Command:
    """Definition of a console command."""
    name: str
    handler: CommandHandler
    aliases: list[str]
    description: str

    def matches(self, input_cmd: str) -> bool:
        return input_cmd == self.name or input_cmd in self.aliases


def console_print(message: str, style: str = "") -> None:
    """Render text via prompt_toolkit without breaking the active prompt."""
    print_formatted_text(FormattedText([(style, message)]) if style else message)


class ConsoleControl:
    """Console-side handle on the bot and the pipeline."""

    def __init__(self, context: PipelineContext) -> None:
        self.context = context
        self.shutdown_event = asyncio.Event()
        self._bot: discord.Bot | None = None

    def set_bot(self, bot: discord.Bot | None) -> None:
        self._bot = bot

    @property
    def bot(self) -> discord.Bot | None:
        return self._bot

    def request_shutdown(self) -> None:
        self.shutdown_event.set()

    def is_shutdown_requested(self) -> bool:
        return self.shutdown_event.is_set()


async def close_bot_instance(bot: discord.Bot | None, *, log_close: bool = False) -> None:
    """Close the Discord bot instance if it is active."""
    if bot is None or bot.is_closed():
        return
    try:
        await bot.close()
        if log_close:
            logger.info("Discord bot connection closed.")
    except Exception as exc:
        logger.exception("Error while closing Discord bot: %s", exc)


def render_status(status: dict) -> list[str]:
    """Flatten :meth:`PipelineContext.status` into console lines."""
    lines = ["  Breakers:"]
    for name, breaker in status["breakers"].items():
        lines.append(f"    {name:<12} {breaker['state']:<10} failures={breaker['failures']}")
    lines.append("  Gate:")
    for name, lane in status["gate"].items():
        lines.append(
            f"    {name:<14} active={lane['active']}/{lane['concurrency']} "
            f"waiting={lane['waiting']}/{lane['max_queue_depth']}"
        )
    lines.append("  Caches:")
    for name, size in status["caches"].items():
        lines.append(f"    {name:<12} {size}")
    lines.append("  Queues:")
    for name, counts in status["queues"].items():
        lines.append("    {:<14} ".format(name) + " ".join(f"{k}={v}" for k, v in counts.items()))
    return lines


# ==================== Command Handlers ====================

async def cmd_help(control: ConsoleControl, args: list[str]) -> None:
    for line in box_title("Console Commands Reference"):
        console_print(line, "ansigreen")
    for cmd in COMMANDS:
        aliases_str = f" (aliases: {', '.join(cmd.aliases)})" if cmd.aliases else ""
        console_print(f"\n  {cmd.name}{aliases_str}", "ansicyan")
        console_print(f"    {cmd.description}")
    console_print("")


async def cmd_status(control: ConsoleControl, args: list[str]) -> None:
    """Display connection state and pipeline health."""
    for line in box_title("Arbiter Status"):
        console_print(line, "ansiblue")

    if control.bot:
        bot_status = "Connected" if not control.bot.is_closed() else "Disconnected"
        console_print(f"  Bot:        {bot_status}")
        console_print(f"  Guilds:     {len(control.bot.guilds)}")
    else:
        console_print("  Bot:        Not initialized")

    for line in render_status(control.context.status()):
        console_print(line)
    console_print("")


async def cmd_clear_caches(control: ConsoleControl, args: list[str]) -> None:
    control.context.clear_caches()
    console_print("All caches cleared.", "ansigreen")


async def cmd_reset_breakers(control: ConsoleControl, args: list[str]) -> None:
    names = args or list(control.context.breakers)
    for name in names:
        breaker = control.context.breakers.get(name)
        if breaker is None:
            console_print(f"Unknown breaker '{name}'.", "ansired")
            continue
        breaker.reset()
        console_print(f"Breaker '{name}' reset.", "ansigreen")


async def cmd_shutdown(control: ConsoleControl, args: list[str]) -> None:
    console_print("Shutdown requested.", "ansiyellow")
    control.request_shutdown()
    await close_bot_instance(control.bot)


COMMANDS: list[Command] = [
    Command("help", cmd_help, ["h", "?"], "Show this help message"),
    Command("status", cmd_status, ["stat", "info"], "Show breakers, gate occupancy, cache sizes and queue counts"),
    Command("caches", cmd_clear_caches, ["clear-caches"], "Clear the history, analysis and validation caches"),
    Command("breakers", cmd_reset_breakers, ["reset"], "Reset all breakers, or the named ones"),
    Command("shutdown", cmd_shutdown, ["stop", "quit", "exit"], "Gracefully shut down the bot"),
]


async def handle_console_command(command: str, control: ConsoleControl) -> None:
    """Interpret and execute a single console command line."""
    if not command.strip():
        return

    parts = command.strip().split()
    cmd_name = parts[0].lower()
    for cmd in COMMANDS:
        if cmd.matches(cmd_name):
            try:
                await cmd.handler(control, parts[1:])
            except Exception as exc:
                logger.exception("Error executing command '%s': %s", cmd_name, exc)
                console_print(f"Error executing command: {exc}", "ansired")
            return

    console_print(f"Unknown command '{cmd_name}'. Type 'help' for available commands.", "ansired")


async def run_console(control: ConsoleControl) -> None:
    """Run the interactive console until shutdown is requested."""
    session = PromptSession("> ")
    for line in box_title("Arbiter Interactive Console"):
        console_print(line, "ansigreen")
    console_print("Type 'help' for available commands or 'exit' to quit.\n", "ansibrightblack")

    with patch_stdout():
        while not control.is_shutdown_requested():
            try:
                line = await session.prompt_async()
                if line.strip():
                    await handle_console_command(line, control)
            except (EOFError, KeyboardInterrupt):
                console_print("\nShutdown requested by user.", "ansiyellow")
                control.request_shutdown()
                await close_bot_instance(control.bot)
                break


@asynccontextmanager
async def console_session(control: ConsoleControl) -> AsyncIterator[ConsoleControl]:
    """Run the console alongside the bot, cleaning up automatically."""
    console_task = asyncio.create_task(run_console(control))
    try:
        yield control
    finally:
        control.request_shutdown()
        console_task.cancel()
        try:
            await console_task
        except asyncio.CancelledError:
            pass
