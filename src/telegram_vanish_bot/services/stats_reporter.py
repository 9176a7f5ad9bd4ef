import logging
import re
from typing import Optional

from telegram_vanish_bot.domain.contracts import ChannelGateway, PolicyStore
from telegram_vanish_bot.domain.errors import error_code_for
from telegram_vanish_bot.domain.retention import RetentionPolicy, StatsUpdate
from telegram_vanish_bot.util import format_duration

logger = logging.getLogger(__name__)

LABEL_PREFIX = "vanish:"
_LABEL_RE = re.compile(r"vanish: \S+?(?:, vanished [\d,]+ messages?)?(?=$|\s)")


def format_label(ttl_seconds: int, total_deleted: Optional[int] = None) -> str:
    label = f"{LABEL_PREFIX} {format_duration(ttl_seconds)}"
    if total_deleted is None:
        return label
    noun = "message" if total_deleted == 1 else "messages"
    return f"{label}, vanished {total_deleted:,} {noun}"


def strip_label(text: str) -> str:
    cleaned = _LABEL_RE.sub("", text or "")
    return re.sub(r"[ \t]{2,}", " ", cleaned).strip()


class StatsReporter:
    """Closes the loop after deletions: counter first, label best-effort."""

    def __init__(self, store: PolicyStore, gateway: ChannelGateway) -> None:
        self._store = store
        self._gateway = gateway

    def record(self, channel_id: str, deleted_count: int) -> Optional[StatsUpdate]:
        if deleted_count <= 0:
            return None
        try:
            update = self._store.increment_stats(channel_id, deleted_count)
        except Exception as exc:
            logger.error(
                "failed to update deletion stats channel=%s count=%d code=%s: %s",
                channel_id,
                deleted_count,
                error_code_for(exc),
                exc,
            )
            return None
        if update is not None:
            logger.info(
                "stats updated channel=%s total_deleted=%d",
                channel_id,
                update.messages_deleted,
            )
        return update

    async def refresh_label(self, policy: RetentionPolicy, total_deleted: int) -> bool:
        text = format_label(policy.ttl_seconds, total_deleted)
        try:
            await self._gateway.set_channel_label(policy.channel_id, text)
        except Exception as exc:
            logger.warning(
                "failed to update channel label channel=%s code=%s: %s",
                policy.channel_id,
                error_code_for(exc),
                exc,
            )
            return False
        logger.debug("channel label updated channel=%s label=%r", policy.channel_id, text)
        return True
