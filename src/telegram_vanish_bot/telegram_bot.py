import asyncio
import json
import logging
from typing import List, Optional, Tuple

from telegram import Message, Update
from telegram.constants import ChatType
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes, MessageHandler, filters

from telegram_vanish_bot.app_container import RetentionContainer, build_retention_container
from telegram_vanish_bot.config import SweepSettings
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore
from telegram_vanish_bot.util import redact

logger = logging.getLogger(__name__)

VANISH_SUBCOMMANDS = ("set", "off", "status", "sweep")
VANISH_USAGE = (
    "Usage:\n"
    "/vanish set <duration> - delete messages older than e.g. 6h, 1d, 30m, 60s\n"
    "/vanish off - disable auto-deletion\n"
    "/vanish status - show current settings\n"
    "/vanish sweep - sweep this channel now"
)
JOURNAL_HANDLER_GROUP = -1
SWEEP_BUSY_TEXT = "A sweep is already in progress, try again shortly."


def _parse_vanish_args(args: Optional[List[str]]) -> Tuple[str, str, str]:
    parts = [a.strip() for a in (args or []) if a and a.strip()]
    if not parts:
        return "", "", VANISH_USAGE
    sub = parts[0].lower()
    if sub not in VANISH_SUBCOMMANDS:
        return "", "", f"Unknown subcommand: {parts[0]}\n\n{VANISH_USAGE}"
    if sub == "set":
        if len(parts) < 2:
            return "", "", "Missing duration. Example: /vanish set 6h"
        return sub, parts[1], ""
    return sub, "", ""


def _container(context: ContextTypes.DEFAULT_TYPE) -> RetentionContainer:
    return context.bot_data["container"]


def _journal(container: RetentionContainer, message: Optional[Message]) -> None:
    if message is None:
        return
    channel_id = str(message.chat_id)
    if not container.service.is_tracked(channel_id):
        return
    container.store.record_message(channel_id, message.message_id, message.date)
    pinned = message.pinned_message
    if pinned is not None and getattr(pinned, "date", None) is not None:
        container.store.record_message(channel_id, pinned.message_id, pinned.date, pinned=True)


async def _reply(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str) -> None:
    sent = await update.effective_message.reply_text(text)
    try:
        _journal(_container(context), sent)
    except Exception as exc:
        logger.warning("failed to journal bot reply: %s", exc)


async def _sweep_and_report(update: Update, context: ContextTypes.DEFAULT_TYPE, channel_id: str) -> None:
    try:
        summary = await _container(context).service.run_sweep_now(guild_id=channel_id)
        if summary is None:
            await _reply(update, context, SWEEP_BUSY_TEXT)
            return
        await _reply(
            update,
            context,
            f"Sweep finished: {summary.total_deleted} deleted, {summary.total_errors} errors.",
        )
    except Exception as exc:
        logger.exception("Manual sweep error: %s", redact(str(exc)))


async def handle_journal(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        _journal(_container(context), update.effective_message)
    except Exception as exc:
        logger.exception("Journal handler error: %s", exc)


async def handle_vanish(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        chat = update.effective_chat
        if not update.effective_message or not chat:
            return
        if chat.type == ChatType.PRIVATE:
            await update.effective_message.reply_text("This command can only be used in a group.")
            return
        sub, value, err = _parse_vanish_args(context.args)
        if err:
            await _reply(update, context, err)
            return
        service = _container(context).service
        channel_id = str(chat.id)
        if sub == "set":
            try:
                await service.enable(channel_id, guild_id=channel_id, duration_text=value)
            except ValueError as exc:
                await _reply(update, context, str(exc))
                return
            await _reply(update, context, f"Messages in this channel will be automatically deleted after {value}")
        elif sub == "off":
            removed = await service.disable(channel_id)
            if removed:
                await _reply(update, context, "Auto-deletion has been disabled for this channel")
            else:
                await _reply(update, context, "Auto-deletion is not enabled for this channel")
        elif sub == "status":
            await _reply(update, context, service.describe(service.status(channel_id)))
        elif sub == "sweep":
            if service.scheduler.in_progress:
                await _reply(update, context, SWEEP_BUSY_TEXT)
                return
            active = context.bot_data.setdefault("active_sweeps", {})
            running = active.get(channel_id)
            if running is not None and not running.done():
                await _reply(update, context, SWEEP_BUSY_TEXT)
                return
            await _reply(update, context, "Sweep started for this channel.")
            task = asyncio.create_task(_sweep_and_report(update, context, channel_id))
            active[channel_id] = task
            task.add_done_callback(lambda _t: active.pop(channel_id, None))
    except Exception as exc:
        logger.exception("Vanish handler error: %s", exc)
        try:
            await update.effective_message.reply_text("An error occurred while processing your command.")
        except Exception:
            logger.debug("could not send error reply", exc_info=True)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Telegram error: %s", redact(str(context.error)))


async def _post_init(app: Application) -> None:
    container: RetentionContainer = app.bot_data["container"]
    await container.scheduler.start()


async def _post_shutdown(app: Application) -> None:
    container: RetentionContainer = app.bot_data["container"]
    await container.scheduler.stop()
    last = container.scheduler.last_summary
    if last is not None:
        logger.info("last sweep summary: %s", json.dumps(last.as_dict(), sort_keys=True))


def build_application(
    token: str,
    store: SqlitePolicyStore,
    settings: Optional[SweepSettings] = None,
) -> Application:
    app = (
        ApplicationBuilder()
        .token(token)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    app.bot_data["container"] = build_retention_container(bot=app.bot, store=store, settings=settings)

    app.add_handler(MessageHandler(filters.ALL, handle_journal), group=JOURNAL_HANDLER_GROUP)
    app.add_handler(CommandHandler("vanish", handle_vanish))
    app.add_error_handler(handle_error)
    return app
