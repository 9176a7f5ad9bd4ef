"""Telegram implementation of the channel gateway.

History comes from the local message journal; deletions, labels and chat
lookups go through ``telegram.Bot``. Every ``telegram.error`` is mapped onto
the retention error taxonomy so the sweep engine never sees platform types.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

from telegram import Bot
from telegram.error import BadRequest, ChatMigrated, Forbidden, RetryAfter, TelegramError

from telegram_vanish_bot.domain.contracts import ChannelInfo
from telegram_vanish_bot.domain.errors import (
    AgeWindowExceeded,
    GatewayError,
    MessageNotFound,
    PermissionDenied,
    RateLimited,
    UnknownChannel,
)
from telegram_vanish_bot.domain.retention import CandidateMessage
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore

logger = logging.getLogger(__name__)

BULK_DELETE_MAX_IDS = 100
DEFAULT_BULK_MAX_AGE_SEC = 48 * 3600
_UNCHANGED_LABEL_MARKERS = ("not modified",)
_RIGHTS_MARKERS = ("not enough rights", "have no rights", "need administrator rights", "chat_admin_required")

Clock = Callable[[], datetime]


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


def _retry_after_ms(exc: RetryAfter) -> int:
    value = exc.retry_after
    if isinstance(value, timedelta):
        return int(value.total_seconds() * 1000)
    return int(float(value or 0) * 1000)


def map_telegram_error(exc: TelegramError, *, channel_id: str, message_id: str = "") -> GatewayError:
    text = str(getattr(exc, "message", "") or exc)
    lowered = text.lower()
    if isinstance(exc, RetryAfter):
        return RateLimited(retry_after_ms=_retry_after_ms(exc), message=text)
    if isinstance(exc, ChatMigrated):
        return UnknownChannel(f"chat {channel_id} migrated to {exc.new_chat_id}")
    if isinstance(exc, Forbidden):
        return PermissionDenied(text)
    if isinstance(exc, BadRequest):
        if "chat not found" in lowered:
            return UnknownChannel(text)
        if message_id and "message" in lowered and "not found" in lowered:
            return MessageNotFound(text)
        if any(marker in lowered for marker in _RIGHTS_MARKERS):
            return PermissionDenied(text)
    return GatewayError(text)


def _chat_id(channel_id: str) -> int:
    try:
        return int(str(channel_id).strip())
    except ValueError as exc:
        raise UnknownChannel(f"not a Telegram chat id: {channel_id!r}") from exc


class TelegramChannelGateway:
    def __init__(
        self,
        bot: Bot,
        journal: SqlitePolicyStore,
        bulk_max_age_sec: int = DEFAULT_BULK_MAX_AGE_SEC,
        clock: Optional[Clock] = None,
    ) -> None:
        self._bot = bot
        self._journal = journal
        self._bulk_max_age_sec = max(1, int(bulk_max_age_sec))
        self._clock = clock or _utc_clock

    async def resolve_channel(self, channel_id: str) -> ChannelInfo:
        try:
            chat = await self._bot.get_chat(chat_id=_chat_id(channel_id))
        except TelegramError as exc:
            raise map_telegram_error(exc, channel_id=channel_id) from exc
        return ChannelInfo(
            channel_id=str(chat.id),
            title=str(chat.title or chat.username or chat.id),
            kind=str(chat.type),
        )

    async def fetch_messages_before(
        self,
        channel_id: str,
        cursor_id: Optional[str],
        limit: int,
    ) -> List[CandidateMessage]:
        before = int(cursor_id) if cursor_id else None
        return self._journal.list_messages_before(channel_id, before_id=before, limit=limit)

    async def bulk_delete(self, channel_id: str, ids: Sequence[str]) -> None:
        message_ids = [int(m) for m in ids]
        if not message_ids:
            return
        if len(message_ids) > BULK_DELETE_MAX_IDS:
            raise GatewayError(
                f"bulk delete takes at most {BULK_DELETE_MAX_IDS} ids, got {len(message_ids)}"
            )
        chat_id = _chat_id(channel_id)
        self._check_age_window(channel_id, message_ids)
        try:
            ok = await self._bot.delete_messages(chat_id=chat_id, message_ids=message_ids)
        except TelegramError as exc:
            raise map_telegram_error(exc, channel_id=channel_id) from exc
        if not ok:
            raise GatewayError(f"deleteMessages returned false for chat {channel_id}")
        self._journal.forget_messages(channel_id, message_ids)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        chat_id = _chat_id(channel_id)
        try:
            await self._bot.delete_message(chat_id=chat_id, message_id=int(message_id))
        except TelegramError as exc:
            mapped = map_telegram_error(exc, channel_id=channel_id, message_id=message_id)
            if isinstance(mapped, MessageNotFound):
                self._journal.forget_messages(channel_id, [int(message_id)])
            raise mapped from exc
        self._journal.forget_messages(channel_id, [int(message_id)])

    async def set_channel_label(self, channel_id: str, text: str) -> None:
        try:
            await self._bot.set_chat_description(chat_id=_chat_id(channel_id), description=text)
        except BadRequest as exc:
            if any(marker in str(exc).lower() for marker in _UNCHANGED_LABEL_MARKERS):
                return
            raise map_telegram_error(exc, channel_id=channel_id) from exc
        except TelegramError as exc:
            raise map_telegram_error(exc, channel_id=channel_id) from exc

    async def get_channel_label(self, channel_id: str) -> str:
        try:
            chat = await self._bot.get_chat(chat_id=_chat_id(channel_id))
        except TelegramError as exc:
            raise map_telegram_error(exc, channel_id=channel_id) from exc
        return str(chat.description or "")

    def _check_age_window(self, channel_id: str, message_ids: Sequence[int]) -> None:
        times = self._journal.get_message_times(channel_id, message_ids)
        cutoff = self._clock() - timedelta(seconds=self._bulk_max_age_sec)
        too_old = [m for m, created in times.items() if created is not None and created <= cutoff]
        if too_old:
            logger.debug(
                "bulk delete rejected chat=%s: %d message(s) older than %ss",
                channel_id,
                len(too_old),
                self._bulk_max_age_sec,
            )
            raise AgeWindowExceeded(
                f"{len(too_old)} message(s) older than the bulk delete window of {self._bulk_max_age_sec}s"
            )
