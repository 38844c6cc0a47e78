"""
Arbiter Discord Bot
===================

A Discord bot that watches debate channels for self-contradiction and
critical misinformation, and answers users who mention it.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. ARBITER_HOME environment variable, if set.
    2. If running in a frozen/compiled context, the executable's directory.
    3. Otherwise the repository root (two levels above this package).
    """
    if env_home := os.getenv("ARBITER_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio  # noqa: E402

import discord  # noqa: E402
from dotenv import load_dotenv  # noqa: E402

from arbiter.bot import message_listener  # noqa: E402
from arbiter.configuration.app_configuration import AppConfig  # noqa: E402
from arbiter.core.errors import ConfigurationError  # noqa: E402
from arbiter.pipeline.context import PipelineContext  # noqa: E402
from arbiter.ui.console import ConsoleControl, close_bot_instance, console_session  # noqa: E402
from arbiter.util.logger import get_logger, handle_exception  # noqa: E402

logger = get_logger("main")


def load_environment() -> str:
    """Load ``.env`` and return the Discord bot token.

    Raises:
        SystemExit: If ``DISCORD_BOT_TOKEN`` is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    return intents


def create_bot(context: PipelineContext) -> discord.Bot:
    """Instantiate the Discord bot and register the cogs."""
    bot = discord.Bot(intents=build_intents())
    message_listener.setup(bot, context)
    logger.info("All cogs loaded successfully.")
    return bot


async def start_bot(bot: discord.Bot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot | None, context: PipelineContext) -> None:
    """Close the Discord connection, then the pipeline."""
    await close_bot_instance(bot, log_close=True)
    await context.shutdown()
    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Validate configuration, start the pipeline and run the bot; returns an exit code."""
    token = load_environment()

    config = AppConfig()
    try:
        config.validate()
    except ConfigurationError as exc:
        logger.critical("Configuration error: %s", exc)
        return 1

    context = PipelineContext.from_config(config)
    try:
        await context.start()
    except Exception as exc:
        logger.critical("Failed to initialize the detection pipeline: %s", exc)
        await context.shutdown()
        return 1

    try:
        bot = create_bot(context)
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await context.shutdown()
        return 1

    control = ConsoleControl(context)
    control.set_bot(bot)
    exit_code = 0
    try:
        async with console_session(control):
            try:
                await start_bot(bot, token)
            except Exception as exc:
                logger.critical("Discord bot runtime error: %s", exc)
                exit_code = 1
    finally:
        control.set_bot(None)
        await shutdown_runtime(bot, context)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Arbiter…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
