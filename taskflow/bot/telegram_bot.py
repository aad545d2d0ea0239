"""
TaskFlow Notifier — Telegram Bot and process bootstrap.

The bot is the long-running host of the notification engine: its job queue
fires the reminder loop every minute and the recurrence expander and daily
digest once a day, and its post_init/post_shutdown hooks own the WhatsApp
session lifecycle.

User commands mirror the TaskFlow bot: /start links a pending Telegram
integration, /tasks lists today's open tasks, /help explains the rest.
Operators manage the WhatsApp pairing with /whatsapp (admin only).
"""

from __future__ import annotations

import base64
import logging
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

from taskflow.adapters.telegram_sender import escape_html
from taskflow.config import settings
from taskflow.core.clock import day_bounds, utcnow
from taskflow.core.jobs import DAILY_DIGEST, RECURRING, REMINDERS
from taskflow.data.models import Priority, Provider

if TYPE_CHECKING:
    from taskflow.core.jobs import JobRunner
    from taskflow.integrations.whatsapp_session import WhatsAppSession

logger = logging.getLogger(__name__)

WHATSAPP_TEST_MESSAGE = (
    "👋 Hello from TaskFlow!\n\n"
    "This is a test message to confirm your WhatsApp integration is working correctly.\n\n"
    "✅ Connection successful!"
)


# ---------------------------------------------------------------------------
# Security: admin-only decorator
# ---------------------------------------------------------------------------


def admin_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Silently ignore session-management commands from non-admins."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ADMIN_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized admin command from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# User commands
# ---------------------------------------------------------------------------


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/start [ref] — show the chat id; link a pending integration if ref given."""
    chat_id = str(update.effective_chat.id)
    first_name = update.effective_user.first_name if update.effective_user else "there"

    await update.message.reply_text(
        f"👋 Welcome to TaskFlow Bot, {first_name}!\n\n"
        f"Your Chat ID is: `{chat_id}`\n\n"
        "To receive task notifications, copy this ID and paste it in the "
        "TaskFlow app settings.\n\n"
        "📋 Available commands:\n"
        "/start - Show this welcome message\n"
        "/tasks - View your tasks for today\n"
        "/help - Get help",
        parse_mode=ParseMode.MARKDOWN,
    )

    if not context.args:
        return

    runner: JobRunner = context.bot_data["runner"]
    try:
        linked = runner.integration_db.activate_pending(
            Provider.TELEGRAM, context.args[0], chat_id,
        )
    except Exception as exc:
        logger.error("Error auto-linking Telegram chat %s: %s", chat_id, exc)
        return

    if linked is not None:
        await update.message.reply_text(
            "✅ Your account has been connected successfully!\n\n"
            "You will now receive task notifications here."
        )


async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/tasks — today's open tasks for the linked account."""
    chat_id = str(update.effective_chat.id)
    runner: JobRunner = context.bot_data["runner"]

    integration = runner.integration_db.find_active_by_external_id(Provider.TELEGRAM, chat_id)
    if integration is None:
        await update.message.reply_text(
            "⚠️ Your Telegram is not connected to TaskFlow.\n\n"
            "Please connect it in the TaskFlow app settings first."
        )
        return

    day_start, day_end = day_bounds(utcnow(), ZoneInfo(settings.TIMEZONE))
    tasks = runner.task_db.list_open_tasks_due(integration.user_id, day_start, day_end)

    if not tasks:
        await update.message.reply_text(
            "🎉 You have no tasks for today!\n\n"
            "Enjoy your free time or add new tasks in the TaskFlow app."
        )
        return

    lines = ["📋 <b>Your Tasks for Today</b>", ""]
    for index, task in enumerate(tasks, start=1):
        glyph = {Priority.HIGH: "🔴", Priority.MEDIUM: "🟡"}.get(task.priority, "⚪")
        lines.append(f"{index}. {glyph} {escape_html(task.title)}")
    lines += ["", f"<i>Total: {len(tasks)} task(s)</i>"]
    await update.message.reply_text("\n".join(lines), parse_mode=ParseMode.HTML)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(
        "📖 <b>TaskFlow Bot Help</b>\n\n"
        "<b>Commands:</b>\n"
        "/start - Welcome message and Chat ID\n"
        "/tasks - View your tasks for today\n"
        "/help - This help message\n\n"
        "<b>Notifications:</b>\n"
        "You will automatically receive notifications for:\n"
        "• Task reminders\n"
        "• Your daily task summary",
        parse_mode=ParseMode.HTML,
    )


# ---------------------------------------------------------------------------
# Operator commands: WhatsApp session
# ---------------------------------------------------------------------------


@admin_only
async def cmd_whatsapp(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/whatsapp [status|connect|qr|logout|test <phone>]"""
    session: WhatsAppSession = context.bot_data["session"]
    args = context.args or []
    action = args[0].lower() if args else "status"

    if action == "status":
        await update.message.reply_text(f"WhatsApp session: {session.status().value}")

    elif action == "connect":
        try:
            await session.initialize()
        except Exception as exc:
            await update.message.reply_text(f"❌ Failed to start WhatsApp session: {exc}")
            return
        await update.message.reply_text(
            f"WhatsApp session: {session.status().value}\n"
            "Use /whatsapp qr to fetch the pairing code once it is ready."
        )

    elif action == "qr":
        qr = session.current_qr()
        if not qr:
            await update.message.reply_text(
                f"No pairing code pending (session is {session.status().value})."
            )
            return
        png = base64.b64decode(qr.split(",", 1)[1])
        await update.message.reply_photo(
            photo=png, caption="Scan with WhatsApp → Linked devices",
        )

    elif action == "logout":
        await session.logout()
        await update.message.reply_text("WhatsApp session logged out.")

    elif action == "test":
        if len(args) < 2:
            await update.message.reply_text("Usage: /whatsapp test <phone number>")
            return
        runner: JobRunner = context.bot_data["runner"]
        sender = runner.senders[Provider.WHATSAPP]
        if not sender.is_configured():
            await update.message.reply_text(
                "WhatsApp is not configured (no paired session, no hosted API)."
            )
            return
        ok = await sender.send_message(args[1], WHATSAPP_TEST_MESSAGE)
        await update.message.reply_text(
            "✅ Test message sent!" if ok else "❌ Test message failed (check server logs)."
        )

    else:
        await update.message.reply_text(
            "Usage: /whatsapp [status|connect|qr|logout|test <phone>]"
        )


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    await app.bot_data["session"].start()


async def _post_shutdown(app: Application) -> None:
    await app.bot_data["session"].stop()


def build_app(
    session: WhatsAppSession | None = None,
    runner: JobRunner | None = None,
) -> Application:
    """Build the Telegram Application with handlers and scheduled jobs.

    Args:
        session: WhatsApp session. Defaults to one backed by the configured bridge.
        runner: Job runner. Defaults to SQLite stores at DATABASE_PATH.
    """
    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if session is None:
        from taskflow.adapters.channel_factory import create_whatsapp_session
        session = create_whatsapp_session()

    if runner is None:
        from taskflow.adapters.channel_factory import create_job_runner
        runner = create_job_runner(session, app.bot)

    app.bot_data["session"] = session
    app.bot_data["runner"] = runner

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("whatsapp", cmd_whatsapp))

    _setup_jobs(app, runner)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_jobs(app: Application, runner: JobRunner) -> None:
    """Register the reminder loop and the two daily jobs."""
    tz = ZoneInfo(settings.TIMEZONE)

    async def _reminders_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await runner.run(REMINDERS)

    async def _recurring_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await runner.run(RECURRING)

    async def _digest_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await runner.run(DAILY_DIGEST)

    app.job_queue.run_repeating(
        _reminders_callback,
        interval=settings.REMINDER_INTERVAL_SECONDS,
        first=5,
        name="reminder_dispatch",
    )
    app.job_queue.run_daily(
        _recurring_callback,
        time=dt_time(hour=settings.RECURRENCE_HOUR, minute=0, tzinfo=tz),
        name="recurring_generator",
    )
    app.job_queue.run_daily(
        _digest_callback,
        time=dt_time(hour=settings.DAILY_DIGEST_HOUR, minute=0, tzinfo=tz),
        name="daily_digest",
    )

    logger.info(
        "Jobs scheduled: reminders every %ds, recurring at %02d:00, digest at %02d:00 %s",
        settings.REMINDER_INTERVAL_SECONDS,
        settings.RECURRENCE_HOUR,
        settings.DAILY_DIGEST_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.TELEGRAM_BOT_TOKEN:
        raise SystemExit("ERROR: TELEGRAM_BOT_TOKEN is missing or not set in .env")

    logger.info("Starting TaskFlow notifier...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
