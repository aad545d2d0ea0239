"""Tests for taskflow.bot.telegram_bot — command handlers and job wiring.

Stores are real SQLite files; the WhatsApp session and senders are mocked.
"""

from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from taskflow.bot.telegram_bot import (
    WHATSAPP_TEST_MESSAGE,
    build_app,
    cmd_help,
    cmd_start,
    cmd_tasks,
    cmd_whatsapp,
)
from taskflow.core.clock import utcnow
from taskflow.data.models import Priority, Provider, TaskStatus
from taskflow.integrations.whatsapp_session import SessionState


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(user_id=12345, chat_id=4242, first_name="Dana"):
    update = MagicMock()
    update.effective_user.id = user_id
    update.effective_user.first_name = first_name
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    update.message.reply_photo = AsyncMock()
    return update


def _make_context(args=None, session=None, runner=None):
    context = MagicMock()
    context.args = args or []
    context.bot_data = {"session": session or MagicMock(), "runner": runner or MagicMock()}
    return context


def _runner(task_db, integration_db, whatsapp=None):
    runner = MagicMock()
    runner.task_db = task_db
    runner.integration_db = integration_db
    runner.senders = {Provider.WHATSAPP: whatsapp or MagicMock()}
    return runner


def _session(state=SessionState.DISCONNECTED, qr=""):
    session = MagicMock()
    session.status.return_value = state
    session.current_qr.return_value = qr
    session.initialize = AsyncMock()
    session.logout = AsyncMock()
    return session


def _replies(update):
    return [c[0][0] for c in update.message.reply_text.call_args_list]


# ---------------------------------------------------------------------------
# /start
# ---------------------------------------------------------------------------


class TestCmdStart:
    @pytest.mark.asyncio
    async def test_shows_chat_id(self, task_db, integration_db):
        update = _make_update()
        await cmd_start(update, _make_context(runner=_runner(task_db, integration_db)))
        assert "`4242`" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_links_pending_integration(self, task_db, integration_db):
        integration_db.connect(7, Provider.TELEGRAM, "link-abc", active=False)
        update = _make_update()
        context = _make_context(args=["link-abc"], runner=_runner(task_db, integration_db))

        await cmd_start(update, context)

        assert integration_db.get_active(7, Provider.TELEGRAM).external_id == "4242"
        assert "connected successfully" in _replies(update)[1]

    @pytest.mark.asyncio
    async def test_unknown_reference_only_welcomes(self, task_db, integration_db):
        update = _make_update()
        context = _make_context(args=["nope"], runner=_runner(task_db, integration_db))

        await cmd_start(update, context)

        assert len(_replies(update)) == 1


# ---------------------------------------------------------------------------
# /tasks and /help
# ---------------------------------------------------------------------------


class TestCmdTasks:
    @pytest.mark.asyncio
    async def test_not_connected(self, task_db, integration_db):
        update = _make_update()
        await cmd_tasks(update, _make_context(runner=_runner(task_db, integration_db)))
        assert "not connected" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_no_tasks_today(self, task_db, integration_db):
        integration_db.connect(7, Provider.TELEGRAM, "4242")
        update = _make_update()
        await cmd_tasks(update, _make_context(runner=_runner(task_db, integration_db)))
        assert "no tasks for today" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_lists_open_tasks(self, task_db, integration_db):
        integration_db.connect(7, Provider.TELEGRAM, "4242")
        now = utcnow().replace(hour=12, minute=0, second=0, microsecond=0)
        task_db.add_task(created_by=7, title="Fix <sink>", priority=Priority.HIGH, due_date=now)
        task_db.add_task(created_by=7, title="Done", due_date=now, status=TaskStatus.COMPLETED)
        task_db.add_task(created_by=7, title="Next week", due_date=now + timedelta(days=7))
        update = _make_update()

        await cmd_tasks(update, _make_context(runner=_runner(task_db, integration_db)))

        text = _replies(update)[0]
        assert "1. 🔴 Fix &lt;sink&gt;" in text
        assert "Done" not in text
        assert "Next week" not in text
        assert "Total: 1 task(s)" in text


class TestCmdHelp:
    @pytest.mark.asyncio
    async def test_lists_commands(self):
        update = _make_update()
        await cmd_help(update, _make_context())
        text = _replies(update)[0]
        assert "/tasks" in text
        assert "/start" in text


# ---------------------------------------------------------------------------
# /whatsapp (admin only)
# ---------------------------------------------------------------------------


class TestCmdWhatsapp:
    @pytest.mark.asyncio
    async def test_non_admin_is_ignored(self):
        session = _session()
        update = _make_update(user_id=99999)

        await cmd_whatsapp(update, _make_context(args=["connect"], session=session))

        session.initialize.assert_not_called()
        update.message.reply_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_status_is_default(self):
        update = _make_update()
        await cmd_whatsapp(update, _make_context(session=_session(SessionState.QR_READY)))
        assert _replies(update) == ["WhatsApp session: QR_READY"]

    @pytest.mark.asyncio
    async def test_connect(self):
        session = _session(SessionState.INITIALIZING)
        update = _make_update()

        await cmd_whatsapp(update, _make_context(args=["connect"], session=session))

        session.initialize.assert_awaited_once()
        assert "INITIALIZING" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_connect_failure_reported(self):
        session = _session()
        session.initialize = AsyncMock(side_effect=RuntimeError("bridge unreachable"))
        update = _make_update()

        await cmd_whatsapp(update, _make_context(args=["connect"], session=session))

        assert "bridge unreachable" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_qr_sends_photo(self):
        session = _session(SessionState.QR_READY, qr="data:image/png;base64,aGVsbG8=")
        update = _make_update()

        await cmd_whatsapp(update, _make_context(args=["qr"], session=session))

        assert update.message.reply_photo.call_args.kwargs["photo"] == b"hello"

    @pytest.mark.asyncio
    async def test_qr_when_none_pending(self):
        update = _make_update()
        await cmd_whatsapp(update, _make_context(args=["qr"], session=_session(SessionState.CONNECTED)))
        update.message.reply_photo.assert_not_called()
        assert "No pairing code pending" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_logout(self):
        session = _session(SessionState.CONNECTED)
        update = _make_update()

        await cmd_whatsapp(update, _make_context(args=["logout"], session=session))

        session.logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_test_message(self, task_db, integration_db):
        whatsapp = MagicMock()
        whatsapp.is_configured.return_value = True
        whatsapp.send_message = AsyncMock(return_value=True)
        update = _make_update()
        context = _make_context(
            args=["test", "+15551234567"],
            runner=_runner(task_db, integration_db, whatsapp),
        )

        await cmd_whatsapp(update, context)

        whatsapp.send_message.assert_awaited_once_with("+15551234567", WHATSAPP_TEST_MESSAGE)
        assert "Test message sent" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_test_message_unconfigured(self, task_db, integration_db):
        whatsapp = MagicMock()
        whatsapp.is_configured.return_value = False
        whatsapp.send_message = AsyncMock()
        update = _make_update()
        context = _make_context(
            args=["test", "+15551234567"],
            runner=_runner(task_db, integration_db, whatsapp),
        )

        await cmd_whatsapp(update, context)

        whatsapp.send_message.assert_not_called()
        assert "not configured" in _replies(update)[0]

    @pytest.mark.asyncio
    async def test_unknown_action_shows_usage(self):
        update = _make_update()
        await cmd_whatsapp(update, _make_context(args=["reboot"], session=_session()))
        assert _replies(update)[0].startswith("Usage:")


# ---------------------------------------------------------------------------
# build_app
# ---------------------------------------------------------------------------


class TestBuildApp:
    def test_registers_handlers_and_jobs(self):
        session, runner = MagicMock(), MagicMock()

        app = build_app(session=session, runner=runner)

        assert app.bot_data["session"] is session
        assert app.bot_data["runner"] is runner
        commands = {c for h in app.handlers[0] for c in h.commands}
        assert commands == {"start", "tasks", "help", "whatsapp"}
        job_names = {job.name for job in app.job_queue.jobs()}
        assert job_names == {"reminder_dispatch", "recurring_generator", "daily_digest"}

    @pytest.mark.asyncio
    async def test_job_callbacks_run_named_jobs(self):
        runner = MagicMock()
        runner.run = AsyncMock(return_value={"success": True})

        with patch("taskflow.bot.telegram_bot.ApplicationBuilder") as mock_builder:
            app = MagicMock()
            app.handlers = {0: []}
            app.bot_data = {}
            mock_builder.return_value.token.return_value.post_init.return_value \
                .post_shutdown.return_value.build.return_value = app
            build_app(session=MagicMock(), runner=runner)

        repeating = app.job_queue.run_repeating.call_args
        assert repeating.kwargs["interval"] == 60
        await repeating.args[0](MagicMock())
        daily = [c.args[0] for c in app.job_queue.run_daily.call_args_list]
        for callback in daily:
            await callback(MagicMock())

        assert [c.args[0] for c in runner.run.call_args_list] == [
            "reminders", "recurring", "daily_digest",
        ]
