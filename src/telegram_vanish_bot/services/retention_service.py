"""Admin-facing facade used by the Telegram commands and the control center."""
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from telegram_vanish_bot.domain.errors import error_code_for
from telegram_vanish_bot.domain.retention import MAX_TTL_SECONDS, RetentionPolicy, SweepSummary
from telegram_vanish_bot.observability.structured_log import log_json
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore
from telegram_vanish_bot.services.stats_reporter import format_label, strip_label
from telegram_vanish_bot.services.sweep_scheduler import SweepScheduler
from telegram_vanish_bot.util import format_duration, format_relative, parse_duration

logger = logging.getLogger(__name__)

LabelReader = Callable[[str], Awaitable[str]]
LabelWriter = Callable[[str, str], Awaitable[None]]


class RetentionService:
    def __init__(
        self,
        store: SqlitePolicyStore,
        scheduler: SweepScheduler,
        label_reader: Optional[LabelReader] = None,
        label_writer: Optional[LabelWriter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._scheduler = scheduler
        self._label_reader = label_reader
        self._label_writer = label_writer
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def store(self) -> SqlitePolicyStore:
        return self._store

    @property
    def scheduler(self) -> SweepScheduler:
        return self._scheduler

    async def enable(self, channel_id: str, guild_id: str, duration_text: str) -> RetentionPolicy:
        seconds = parse_duration(duration_text)
        if not seconds:
            raise ValueError("Invalid duration format. Use something like: 6h, 1d, 30m, or 60s")
        if seconds > MAX_TTL_SECONDS:
            raise ValueError(f"Duration too long. The maximum is {format_duration(MAX_TTL_SECONDS)}")
        policy = self._store.set_policy(channel_id, guild_id, seconds)
        log_json(
            logger,
            "policy_updated",
            action="enable",
            channel_id=channel_id,
            guild_id=guild_id,
            ttl_seconds=seconds,
        )
        await self._write_label(channel_id, format_label(seconds))
        return policy

    async def disable(self, channel_id: str) -> bool:
        removed = self._store.remove_policy(channel_id)
        if not removed:
            return False
        log_json(logger, "policy_updated", action="disable", channel_id=channel_id)
        if self._label_reader is not None:
            try:
                current = await self._label_reader(channel_id)
            except Exception as exc:
                logger.warning(
                    "failed to read channel label channel=%s code=%s: %s",
                    channel_id,
                    error_code_for(exc),
                    exc,
                )
                return True
            await self._write_label(channel_id, strip_label(current))
        return True

    def status(self, channel_id: str) -> Optional[RetentionPolicy]:
        return self._store.get_policy(channel_id)

    def is_tracked(self, channel_id: str) -> bool:
        return self._store.get_policy(channel_id) is not None

    def list_policies(self, guild_id: Optional[str] = None) -> List[RetentionPolicy]:
        return self._store.list_active_policies(guild_id)

    def describe(self, policy: Optional[RetentionPolicy]) -> str:
        if policy is None:
            return "Auto-deletion is not enabled for this channel"
        last = format_relative(policy.last_deletion_at, self._clock())
        return (
            "Auto-deletion settings:\n"
            f"- Messages vanish after: {format_duration(policy.ttl_seconds)}\n"
            f"- Messages vanished: {policy.messages_deleted:,}\n"
            f"- Last deletion: {last}"
        )

    async def run_sweep_now(self, guild_id: Optional[str] = None) -> Optional[SweepSummary]:
        return await self._scheduler.tick(guild_id)

    async def _write_label(self, channel_id: str, text: str) -> None:
        if self._label_writer is None:
            return
        try:
            await self._label_writer(channel_id, text)
        except Exception as exc:
            logger.warning(
                "failed to update channel label channel=%s code=%s: %s",
                channel_id,
                error_code_for(exc),
                exc,
            )
