"""Discord reminder bot entry point."""

from __future__ import annotations

import sys
import time

import structlog

# Login errors are fatal; anything else restarts the client
from discord.errors import LoginFailure, PrivilegedIntentsRequired

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()


def main():
    from shared.config import get_settings
    from comms.discord_bot.bot import ReminderDiscordBot

    settings = get_settings()

    if not settings.discord_token:
        logger.error("discord_token_not_set")
        sys.exit(1)

    logger.info("starting_discord_bot_loop")

    while True:
        try:
            bot = ReminderDiscordBot(settings)

            logger.info("connecting_to_discord")
            bot.run(settings.discord_token)

        except LoginFailure:
            logger.error("invalid_discord_token_terminating")
            sys.exit(1)

        except PrivilegedIntentsRequired:
            logger.error("privileged_intents_missing_terminating")
            sys.exit(1)

        except Exception as e:
            logger.error("bot_crashed_restarting", error=str(e))
            time.sleep(5)

        except KeyboardInterrupt:
            logger.info("bot_stopped_by_user")
            break


if __name__ == "__main__":
    main()
