"""
75 Hard Tracker — Entry Point.

Single entry point: `python main.py` starts the Telegram bot.
"""

import logging

from hard75.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from hard75.bot.telegram_bot import main

if __name__ == "__main__":
    main()
