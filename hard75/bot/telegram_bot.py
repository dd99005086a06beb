"""
75 Hard Tracker — Telegram Bot.

Thin front-end over SyncService: every handler calls the service, then
renders the result (or the notice for its error). No business logic lives
here.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import io
import logging
from datetime import date
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Message, Update
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from hard75.config import settings
from hard75.core import progress
from hard75.core.errors import Notice, notice_for, success_notice
from hard75.core.sync_service import MutationStatus
from hard75.data.models import CHALLENGE_DURATION

if TYPE_CHECKING:
    from hard75.core.sync_service import StorageResult, SyncService
    from hard75.data.models import CustomTask, DayProgress, SyncStatus
    from hard75.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_OFFLINE_NOTICE = Notice("Saved offline - it will sync when you're back online.", "warning", 5)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores updates from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _service(context: ContextTypes.DEFAULT_TYPE) -> SyncService:
    return context.bot_data["service"]


def notice_for_result(result: StorageResult, success_text: str) -> Notice:
    """Pick the notice a mutation result should produce."""
    if result.status is MutationStatus.PENDING_SYNC:
        return _OFFLINE_NOTICE
    if result.success:
        return success_notice(success_text)
    if result.error is not None:
        return notice_for(result.error)
    return Notice("Something went wrong. Please try again.", "error", 5)


async def _dismiss_message(context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id, message_id = context.job.data
    try:
        await context.bot.delete_message(chat_id=chat_id, message_id=message_id)
    except TelegramError as exc:
        logger.debug("Could not dismiss message %s: %s", message_id, exc)


async def send_notice(
    message: Message, notice: Notice, context: ContextTypes.DEFAULT_TYPE,
) -> None:
    """Reply with a notice; self-deleting when it has an auto-dismiss time."""
    text = notice.text
    if notice.offer_reload:
        text += "\n\nSend /start to reload."
    sent = await message.reply_text(text)
    if notice.auto_dismiss_seconds and context.job_queue is not None:
        context.job_queue.run_once(
            _dismiss_message,
            notice.auto_dismiss_seconds,
            data=(sent.chat_id, sent.message_id),
            name=f"dismiss:{sent.message_id}",
        )


def render_day(day: DayProgress, tasks: list[CustomTask]) -> tuple[str, InlineKeyboardMarkup]:
    """Checklist text plus one toggle button per task."""
    if day.day_number:
        header = f"Day {day.day_number}/{CHALLENGE_DURATION} ({day.date})"
    else:
        header = f"Tasks for {day.date}"
    lines = [header, f"{day.completed_count}/{day.total_tasks} done"]
    if day.all_completed:
        lines.append("🎉 Perfect day!")
    elif not tasks:
        lines.append("No tasks yet. Use /begin or /addtask.")

    keyboard = []
    for task in tasks:
        completion = day.completions.get(task.id)
        mark = "✅" if completion and completion.completed else "⬜"
        keyboard.append([
            InlineKeyboardButton(
                f"{mark} {task.task_text}", callback_data=f"toggle:{day.date}:{task.id}",
            )
        ])
    return "\n".join(lines), InlineKeyboardMarkup(keyboard)


def format_sync_status(status: SyncStatus) -> str:
    last = status.last_sync.strftime("%Y-%m-%d %H:%M") if status.last_sync else "never"
    return (
        f"Connection: {'online' if status.is_online else 'offline'}\n"
        f"Pending changes: {status.pending_changes}\n"
        f"Last sync: {last}"
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — make sure a profile exists, then greet."""
    service = _service(context)

    profile = await service.get_user_profile()
    if not profile.success:
        name = update.effective_user.first_name or "Challenger"
        profile = await service.create_user_profile(name=name)
        if not profile.success and profile.status is not MutationStatus.PENDING_SYNC:
            await send_notice(update.message, notice_for_result(profile, ""), context)
            return

    name = profile.data.name if profile.success else update.effective_user.first_name
    active = await service.get_active_challenge()
    if active.success and active.data is not None:
        day = progress.current_day(active.data.start_date)
        status_line = f"You're on day {day} of {CHALLENGE_DURATION}. Use /today to check in."
    else:
        status_line = "No active challenge. Use /begin to start day 1."

    await update.message.reply_text(
        f"Welcome, {name}!\n\n{status_line}\n\nType /help for the full command list."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "Available commands:\n"
        "/begin [YYYY-MM-DD] — Start a 75-day challenge\n"
        "/today — Today's checklist\n"
        "/addtask <text> — Add a daily task\n"
        "/deletetask — Remove a task\n"
        "/stats — Streaks and completion rates\n"
        "/restart — Start over from day 1\n"
        "/sync — Sync offline changes now\n"
        "/status — Connection and sync status\n"
        "/export — Download your data as JSON (send it back to import)\n"
        "/clearcache — Forget cached data on this device\n"
        "/help — Show this message"
    )


@authorized_only
async def cmd_begin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /begin [date] — start a challenge and seed the default tasks."""
    service = _service(context)

    start_date = date.today().isoformat()
    if context.args:
        try:
            start_date = progress.to_iso(progress.parse_date(context.args[0]))
        except ValueError:
            await update.message.reply_text("Usage: /begin [YYYY-MM-DD]")
            return

    result = await service.create_challenge(start_date)
    if not result.success:
        await send_notice(update.message, notice_for_result(result, ""), context)
        return

    tasks = await service.get_tasks()
    if not tasks.success or not tasks.data:
        seeded = await service.initialize_default_tasks()
        if not seeded.success:
            await send_notice(update.message, notice_for_result(seeded, ""), context)

    end_date = progress.challenge_end_date(start_date)
    await update.message.reply_text(
        f"💪 Challenge started on {start_date}. Finish line: {end_date}.\n"
        "Use /today to check off your tasks."
    )


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — show today's checklist."""
    service = _service(context)

    tasks = await service.get_tasks()
    day = await service.get_task_completions()
    text, keyboard = render_day(day.data, tasks.data if tasks.success else [])
    if day.from_cache or tasks.from_cache:
        text += "\n(offline copy)"
    await update.message.reply_text(text, reply_markup=keyboard)


async def _handle_toggle_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle a checklist button tap: flip that task for that date."""
    query = update.callback_query

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        await query.answer()
        return

    service = _service(context)
    _, target_date, task_id = query.data.split(":", 2)

    current = await service.get_task_completions(target_date)
    completion = current.data.completions.get(task_id)
    done = bool(completion and completion.completed)

    result = await service.complete_task(task_id, not done, target_date)
    if result.status is MutationStatus.REJECTED:
        await query.answer(notice_for_result(result, "").text, show_alert=True)
        return
    await query.answer("Saved offline" if result.queued else None)

    tasks = await service.get_tasks()
    text, keyboard = render_day(result.data, tasks.data if tasks.success else [])
    try:
        await query.edit_message_text(text, reply_markup=keyboard)
    except TelegramError as exc:
        logger.debug("Checklist not re-rendered: %s", exc)


@authorized_only
async def cmd_addtask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addtask <text>."""
    text = " ".join(context.args or []).strip()
    if not text:
        await update.message.reply_text("Usage: /addtask <task text>")
        return

    result = await _service(context).create_task(text)
    await send_notice(update.message, notice_for_result(result, f"Added: {text}"), context)


@authorized_only
async def cmd_deletetask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deletetask — show tasks as buttons to pick from."""
    tasks = await _service(context).get_tasks()
    if not tasks.success:
        await send_notice(update.message, notice_for(tasks.error), context)
        return
    if not tasks.data:
        await update.message.reply_text("No tasks to delete.")
        return

    keyboard = [
        [InlineKeyboardButton(t.task_text, callback_data=f"deltask:{t.id}")]
        for t in tasks.data
    ]
    await update.message.reply_text(
        "Which task do you want to delete?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


async def _handle_deletetask_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle the inline button tap to delete a task."""
    query = update.callback_query
    await query.answer()

    user = query.from_user
    if user is None or user.id not in settings.ALLOWED_USER_IDS:
        return

    task_id = query.data.split(":", 1)[1]
    result = await _service(context).delete_task(task_id)
    notice = notice_for_result(result, "✅ Task deleted.")
    await query.edit_message_text(notice.text)


@authorized_only
async def cmd_restart(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /restart — begin a fresh challenge from today."""
    result = await _service(context).restart_challenge()
    await send_notice(
        update.message,
        notice_for_result(result, "🔁 Challenge restarted. Today is day 1."),
        context,
    )


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — streaks and completion rates."""
    result = await _service(context).get_stats()
    if not result.success:
        await send_notice(update.message, notice_for(result.error), context)
        return

    s = result.data
    lines = [
        f"Day {s.current_day}/{CHALLENGE_DURATION} ({s.challenge_progress}%), "
        f"{s.days_remaining} days to go",
        f"Current streak: {s.current_streak} | Longest: {s.longest_streak}",
        f"Perfect days: {s.perfect_days}/{s.total_days} ({s.completion_rate:.0f}%)",
        f"Tasks completed: {s.total_tasks_completed} "
        f"(avg {s.average_tasks_per_day:.1f}/day, last 7 days {s.weekly_average:.1f}/day)",
    ]
    for week in s.weeks:
        lines.append(
            f"Week {week.week}: {week.perfect_days}/{week.days_tracked} perfect ({week.completion_rate}%)"
        )
    await update.message.reply_text("\n".join(lines))


@authorized_only
async def cmd_sync(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sync — replay queued changes now."""
    service = _service(context)
    if not service.is_online:
        await service.refresh_connectivity()
    await service.force_sync()
    await update.message.reply_text(format_sync_status(service.get_sync_status()))


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — connection and queue state."""
    await update.message.reply_text(format_sync_status(_service(context).get_sync_status()))


@authorized_only
async def cmd_export(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /export — send the local data as a JSON document."""
    payload = _service(context).export_data().encode("utf-8")
    await update.message.reply_document(
        document=io.BytesIO(payload),
        filename=f"hard75-export-{date.today().isoformat()}.json",
    )


@authorized_only
async def handle_import(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle an uploaded .json export — load it into the local cache."""
    tg_file = await update.message.document.get_file()
    raw = await tg_file.download_as_bytearray()
    try:
        text = bytes(raw).decode("utf-8")
    except UnicodeDecodeError:
        text = ""

    if _service(context).import_data(text):
        await send_notice(update.message, success_notice("📥 Data imported."), context)
    else:
        await update.message.reply_text("That file doesn't look like a 75 Hard export.")


@authorized_only
async def cmd_clearcache(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /clearcache — drop cached data, keep unsynced changes."""
    _service(context).clear_cache()
    await send_notice(update.message, success_notice("Local cache cleared."), context)


# ---------------------------------------------------------------------------
# Background: daily reminder and sync announcements
# ---------------------------------------------------------------------------


async def daily_check(service: SyncService, notifier: NotificationPort) -> None:
    """Advance the stored day number and nudge about unfinished tasks."""
    refreshed = await service.refresh_current_day()
    if not refreshed.success or refreshed.data is None:
        return

    day = await service.get_task_completions()
    remaining = day.data.total_tasks - day.data.completed_count
    if day.data.total_tasks and remaining > 0:
        await notifier.broadcast(
            f"⏰ {remaining} of {day.data.total_tasks} tasks still open today. /today"
        )


def sync_announcer(
    app: Application, notifier: NotificationPort, pending: int = 0,
) -> Callable[[SyncStatus], None]:
    """Subscriber that tells users once the offline queue has drained."""
    state = {"pending": pending}

    def on_status(status: SyncStatus) -> None:
        was, state["pending"] = state["pending"], status.pending_changes
        if was and not status.pending_changes and status.is_online:
            app.create_task(notifier.broadcast("✅ All offline changes are synced."))

    return on_status


def _build_service() -> SyncService:
    from hard75.core.errors import ErrorHandler
    from hard75.core.sync_service import SyncService
    from hard75.data.cache import LocalCache
    from hard75.integrations.api_client import ApiClient

    errors = ErrorHandler(max_errors=settings.ERROR_HISTORY_LIMIT)
    return SyncService(ApiClient(error_handler=errors), LocalCache(), error_handler=errors)


def build_app(
    service: SyncService | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        service: Storage/sync façade. Defaults to one backed by the REST API
                 and the SQLite cache from settings.
        notifier: Notification port implementation. Defaults to TelegramNotifier.
    """
    if service is None:
        service = _build_service()

    async def _post_init(application: Application) -> None:
        await service.refresh_connectivity()
        service.start()

    async def _post_shutdown(application: Application) -> None:
        await service.stop()

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    if notifier is None:
        from hard75.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["service"] = service
    app.bot_data["notifier"] = notifier
    service.subscribe(
        sync_announcer(app, notifier, service.get_sync_status().pending_changes)
    )

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("begin", cmd_begin))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("addtask", cmd_addtask))
    app.add_handler(CommandHandler("deletetask", cmd_deletetask))
    app.add_handler(CommandHandler("restart", cmd_restart))
    app.add_handler(CommandHandler("stats", cmd_stats))
    app.add_handler(CommandHandler("sync", cmd_sync))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("export", cmd_export))
    app.add_handler(CommandHandler("clearcache", cmd_clearcache))
    app.add_handler(CallbackQueryHandler(_handle_toggle_callback, pattern=r"^toggle:"))
    app.add_handler(CallbackQueryHandler(_handle_deletetask_callback, pattern=r"^deltask:"))
    app.add_handler(MessageHandler(filters.Document.FileExtension("json"), handle_import))

    _setup_daily_check(app, service, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_daily_check(app: Application, service: SyncService, notifier: NotificationPort) -> None:
    """Register the evening reminder job."""
    tz = ZoneInfo(settings.TIMEZONE)
    reminder_time = dt_time(hour=settings.REMINDER_HOUR, minute=0, tzinfo=tz)

    async def _daily_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await daily_check(service, notifier)

    app.job_queue.run_daily(_daily_job_callback, time=reminder_time, name="daily_check")

    logger.info("Daily check scheduled at %02d:00 %s", settings.REMINDER_HOUR, settings.TIMEZONE)


def main() -> None:
    """Entry point: build the app and start polling."""
    logger.info("Starting 75 Hard tracker bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
