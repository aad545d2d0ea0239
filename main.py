"""
TaskFlow Notifier — Entry Point.

`python main.py` starts the Telegram bot, which hosts the scheduled jobs.
`python main.py <job>` runs one job now (reminders, recurring, daily_digest),
prints its JSON result and exits non-zero if it failed.
"""

import asyncio
import json
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from taskflow.bot.telegram_bot import main
from taskflow.config import settings
from taskflow.core.jobs import JOB_NAMES


async def run_job_once(name: str) -> dict:
    """Run a single job without the bot. WhatsApp goes via the hosted API."""
    from telegram import Bot

    from taskflow.adapters.channel_factory import create_job_runner

    if not settings.TELEGRAM_BOT_TOKEN:
        return await create_job_runner(session=None, bot=None).run(name)

    async with Bot(settings.TELEGRAM_BOT_TOKEN) as bot:
        runner = create_job_runner(session=None, bot=bot)
        return await runner.run(name)


if __name__ == "__main__":
    if len(sys.argv) > 1:
        job = sys.argv[1]
        if job not in JOB_NAMES:
            sys.exit(f"Unknown job '{job}'. Choose one of: {', '.join(JOB_NAMES)}")
        result = asyncio.run(run_job_once(job))
        print(json.dumps(result))
        sys.exit(0 if result.get("success") else 1)
    main()
