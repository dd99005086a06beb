"""Tests for hard75.bot.telegram_bot — Telegram handlers over SyncService.

Handlers run against a real SyncService backed by the in-memory FakeApi;
Telegram objects are mocked.
"""

import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock

from telegram.ext import CommandHandler

from fakes import validation_error
from hard75.bot.telegram_bot import (
    build_app,
    cmd_addtask,
    cmd_begin,
    cmd_export,
    cmd_start,
    cmd_status,
    cmd_today,
    daily_check,
    format_sync_status,
    handle_import,
    notice_for_result,
    render_day,
    send_notice,
    sync_announcer,
    _handle_deletetask_callback,
    _handle_toggle_callback,
)
from hard75.core.errors import classify, HttpErrorSource
from hard75.core.sync_service import MutationStatus, StorageResult
from hard75.data.models import CustomTask, DayProgress, SyncStatus, TaskCompletion

TODAY = date.today().isoformat()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(text="", user_id=12345, first_name="Sam"):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.effective_user.first_name = first_name
    update.message.reply_text = AsyncMock()
    update.message.reply_document = AsyncMock()
    return update


def _make_context(service, args=None):
    context = MagicMock()
    context.bot_data = {"service": service}
    context.args = args or []
    context.job_queue = MagicMock()
    return context


def _make_callback(data, user_id=12345):
    update = MagicMock()
    update.callback_query.data = data
    update.callback_query.from_user.id = user_id
    update.callback_query.answer = AsyncMock()
    update.callback_query.edit_message_text = AsyncMock()
    return update


def _reply_text(update):
    return update.message.reply_text.call_args.args[0]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class TestRenderDay:
    def test_marks_completed_tasks(self):
        tasks = [CustomTask(id="a", task_text="Walk"), CustomTask(id="b", task_text="Read", order_index=1)]
        day = DayProgress(
            date="2024-01-05", day_number=5,
            completions={"a": TaskCompletion(task_id="a", date="2024-01-05", completed=True)},
            completed_count=1, total_tasks=2,
        )
        text, keyboard = render_day(day, tasks)

        assert text.startswith("Day 5/75 (2024-01-05)")
        assert "1/2 done" in text
        buttons = [row[0] for row in keyboard.inline_keyboard]
        assert buttons[0].text == "✅ Walk"
        assert buttons[1].text == "⬜ Read"
        assert buttons[0].callback_data == "toggle:2024-01-05:a"

    def test_perfect_day(self):
        day = DayProgress(date="2024-01-05", completed_count=1, total_tasks=1, all_completed=True)
        text, _ = render_day(day, [CustomTask(id="a", task_text="Walk")])
        assert "Perfect day" in text

    def test_empty_list_hints_at_setup(self):
        text, keyboard = render_day(DayProgress(date="2024-01-05"), [])
        assert "/begin" in text
        assert keyboard.inline_keyboard == ()


class TestNotices:
    def test_queued_result_gets_offline_notice(self):
        result = StorageResult(success=True, status=MutationStatus.PENDING_SYNC)
        assert "offline" in notice_for_result(result, "Added").text

    def test_success(self):
        notice = notice_for_result(StorageResult(success=True, status=MutationStatus.APPLIED_REMOTE), "Added")
        assert (notice.text, notice.level) == ("Added", "success")

    def test_error_uses_user_message(self):
        result = StorageResult(success=False, error=classify(HttpErrorSource(400, "bad")))
        assert notice_for_result(result, "Added").text == "Please check your input and try again."

    @pytest.mark.asyncio
    async def test_auto_dismiss_is_scheduled(self):
        message = MagicMock()
        message.reply_text = AsyncMock(return_value=MagicMock(chat_id=1, message_id=99))
        context = MagicMock()

        await send_notice(message, notice_for_result(StorageResult(success=True), "Done"), context)

        context.job_queue.run_once.assert_called_once()
        assert context.job_queue.run_once.call_args.args[1] == 3
        assert context.job_queue.run_once.call_args.kwargs["data"] == (1, 99)

    def test_sync_status_text(self):
        text = format_sync_status(SyncStatus(is_online=False, pending_changes=2))
        assert "offline" in text
        assert "Pending changes: 2" in text
        assert "never" in text


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_strangers_are_ignored(self, service, fake_api):
        update = _make_update(user_id=999)
        await cmd_start(update, _make_context(service))
        update.message.reply_text.assert_not_called()
        assert fake_api.calls == []

    @pytest.mark.asyncio
    async def test_stranger_button_taps_are_ignored(self, service, fake_api):
        update = _make_callback("toggle:2024-01-05:a", user_id=999)
        await _handle_toggle_callback(update, _make_context(service))
        assert fake_api.calls == []


class TestStart:
    @pytest.mark.asyncio
    async def test_creates_profile_on_first_contact(self, service, fake_api):
        update = _make_update(first_name="Dana")
        await cmd_start(update, _make_context(service))

        assert fake_api.profile["name"] == "Dana"
        assert "Welcome, Dana" in _reply_text(update)
        assert "/begin" in _reply_text(update)

    @pytest.mark.asyncio
    async def test_reports_current_day(self, service):
        await service.create_user_profile("Sam")
        await service.create_challenge(TODAY)
        update = _make_update()
        await cmd_start(update, _make_context(service))
        assert "day 1 of 75" in _reply_text(update)


class TestBegin:
    @pytest.mark.asyncio
    async def test_starts_challenge_and_seeds_tasks(self, service, fake_api):
        update = _make_update()
        await cmd_begin(update, _make_context(service, args=["2024-01-01"]))

        assert fake_api.challenges[0]["start_date"] == "2024-01-01"
        assert len(fake_api.tasks) == 6
        assert "2024-03-15" in _reply_text(update)

    @pytest.mark.asyncio
    async def test_keeps_existing_tasks(self, service, fake_api):
        await service.create_task("My own rule")
        await cmd_begin(_make_update(), _make_context(service))
        assert [t["task_text"] for t in fake_api.tasks] == ["My own rule"]

    @pytest.mark.asyncio
    async def test_bad_date(self, service, fake_api):
        update = _make_update()
        await cmd_begin(update, _make_context(service, args=["soon"]))
        assert "Usage" in _reply_text(update)
        assert fake_api.calls == []


class TestToday:
    @pytest.mark.asyncio
    async def test_lists_tasks_with_buttons(self, service):
        await service.create_task("Walk")
        update = _make_update()
        await cmd_today(update, _make_context(service))

        text = _reply_text(update)
        assert "0/1 done" in text
        keyboard = update.message.reply_text.call_args.kwargs["reply_markup"]
        assert keyboard.inline_keyboard[0][0].text == "⬜ Walk"


class TestToggle:
    @pytest.mark.asyncio
    async def test_tap_flips_completion(self, service, fake_api):
        task = (await service.create_task("Walk")).data
        update = _make_callback(f"toggle:{TODAY}:{task.id}")

        await _handle_toggle_callback(update, _make_context(service))
        assert fake_api.completions[(task.id, TODAY)]["completed"] is True
        assert "1/1 done" in update.callback_query.edit_message_text.call_args.args[0]

        await _handle_toggle_callback(update, _make_context(service))
        assert fake_api.completions[(task.id, TODAY)]["completed"] is False

    @pytest.mark.asyncio
    async def test_rejected_toggle_alerts(self, service, fake_api):
        task = (await service.create_task("Walk")).data
        fake_api.fail("complete_task", validation_error())
        update = _make_callback(f"toggle:{TODAY}:{task.id}")

        await _handle_toggle_callback(update, _make_context(service))

        assert update.callback_query.answer.call_args.kwargs["show_alert"] is True
        update.callback_query.edit_message_text.assert_not_called()


class TestTaskCommands:
    @pytest.mark.asyncio
    async def test_addtask_usage(self, service):
        update = _make_update()
        await cmd_addtask(update, _make_context(service))
        assert "Usage" in _reply_text(update)

    @pytest.mark.asyncio
    async def test_addtask(self, service, fake_api):
        update = _make_update()
        await cmd_addtask(update, _make_context(service, args=["Cold", "shower"]))
        assert fake_api.tasks[0]["task_text"] == "Cold shower"
        assert _reply_text(update) == "Added: Cold shower"

    @pytest.mark.asyncio
    async def test_delete_callback(self, service, fake_api):
        task = (await service.create_task("Walk")).data
        update = _make_callback(f"deltask:{task.id}")
        await _handle_deletetask_callback(update, _make_context(service))

        assert fake_api.tasks == []
        assert "deleted" in update.callback_query.edit_message_text.call_args.args[0]


class TestDataCommands:
    @pytest.mark.asyncio
    async def test_status(self, service):
        update = _make_update()
        await cmd_status(update, _make_context(service))
        assert "online" in _reply_text(update)

    @pytest.mark.asyncio
    async def test_export_sends_json_document(self, service):
        update = _make_update()
        await cmd_export(update, _make_context(service))
        kwargs = update.message.reply_document.call_args.kwargs
        assert kwargs["filename"].endswith(".json")
        assert b'"version": 1' in kwargs["document"].getvalue()

    @pytest.mark.asyncio
    async def test_import_rejects_garbage(self, service):
        update = _make_update()
        tg_file = MagicMock()
        tg_file.download_as_bytearray = AsyncMock(return_value=bytearray(b"nope"))
        update.message.document.get_file = AsyncMock(return_value=tg_file)

        await handle_import(update, _make_context(service))
        assert "doesn't look like" in _reply_text(update)


# ---------------------------------------------------------------------------
# Background jobs
# ---------------------------------------------------------------------------


class TestDailyCheck:
    @pytest.mark.asyncio
    async def test_reminds_about_open_tasks(self, service):
        await service.create_challenge(TODAY)
        await service.create_task("Walk")
        notifier = AsyncMock()

        await daily_check(service, notifier)

        notifier.broadcast.assert_awaited_once()
        assert "1 of 1 tasks" in notifier.broadcast.call_args.args[0]

    @pytest.mark.asyncio
    async def test_quiet_without_challenge(self, service):
        notifier = AsyncMock()
        await daily_check(service, notifier)
        notifier.broadcast.assert_not_called()


class TestSyncAnnouncer:
    def test_announces_only_when_queue_empties(self):
        app = MagicMock()
        notifier = MagicMock()
        on_status = sync_announcer(app, notifier, pending=2)

        on_status(SyncStatus(is_online=True, pending_changes=1))
        app.create_task.assert_not_called()

        on_status(SyncStatus(is_online=True, pending_changes=0))
        app.create_task.assert_called_once()

        on_status(SyncStatus(is_online=True, pending_changes=0))
        app.create_task.assert_called_once()


class TestBuildApp:
    def test_registers_commands(self, service):
        app = build_app(service=service, notifier=AsyncMock())
        commands = {
            cmd
            for handler in app.handlers[0]
            if isinstance(handler, CommandHandler)
            for cmd in handler.commands
        }
        assert {"start", "begin", "today", "addtask", "deletetask", "stats", "sync", "export"} <= commands
        assert app.bot_data["service"] is service
