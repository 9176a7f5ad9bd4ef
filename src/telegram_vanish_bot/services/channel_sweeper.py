"""Per-channel sweep: page history newest-first and delete what has expired.

Each page is judged against a single ``now`` read from the injected clock.
Paging continues only while the oldest message of the last page is itself
expired; this is a local per-page decision and assumes message age grows
as the cursor moves back in time.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from telegram_vanish_bot.domain.contracts import ChannelGateway
from telegram_vanish_bot.domain.errors import PermissionDenied, UnknownChannel
from telegram_vanish_bot.domain.retention import (
    OUTCOME_ABORTED,
    OUTCOME_SKIPPED,
    CandidateMessage,
    RetentionPolicy,
    SweepRun,
)
from telegram_vanish_bot.observability.structured_log import log_json
from telegram_vanish_bot.services.deletion_executor import DeletionExecutor
from telegram_vanish_bot.services.stats_reporter import StatsReporter

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def select_candidates(page: List[CandidateMessage], now: datetime, ttl_seconds: int) -> List[CandidateMessage]:
    return [m for m in page if not m.pinned and m.is_expired(now, ttl_seconds)]


class ChannelSweeper:
    def __init__(
        self,
        gateway: ChannelGateway,
        executor: DeletionExecutor,
        reporter: StatsReporter,
        clock: Optional[Clock] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        self._gateway = gateway
        self._executor = executor
        self._reporter = reporter
        self._clock = clock or utc_now
        self._page_size = min(MAX_PAGE_SIZE, max(1, int(page_size)))

    @property
    def page_size(self) -> int:
        return self._page_size

    async def sweep(self, policy: RetentionPolicy) -> SweepRun:
        run = SweepRun(channel_id=policy.channel_id)
        t0 = time.monotonic()
        try:
            channel = await self._gateway.resolve_channel(policy.channel_id)
            logger.info(
                "sweeping channel %s (%s), ttl=%ss",
                channel.title,
                policy.channel_id,
                policy.ttl_seconds,
            )
            await self._page_through(policy, run)
        except UnknownChannel as exc:
            run.outcome = OUTCOME_SKIPPED
            run.error_code = exc.code
            run.continue_paging = False
            logger.info("channel %s no longer exists, skipping", policy.channel_id)
        except PermissionDenied as exc:
            run.outcome = OUTCOME_ABORTED
            run.error_code = exc.code
            run.error_count += 1
            run.continue_paging = False
            logger.error(
                "missing permissions in channel %s code=%s: %s",
                policy.channel_id,
                exc.code,
                exc,
            )

        if run.messages_deleted_total is not None and run.outcome != OUTCOME_SKIPPED:
            await self._reporter.refresh_label(policy, run.messages_deleted_total)

        log_json(
            logger,
            "channel_sweep",
            channel_id=policy.channel_id,
            outcome=run.outcome,
            error_code=run.error_code,
            processed=run.processed_count,
            deleted=run.deleted_count,
            errors=run.error_count,
            pages=run.pages_fetched,
            elapsed_ms=round((time.monotonic() - t0) * 1000, 2),
        )
        return run

    async def _page_through(self, policy: RetentionPolicy, run: SweepRun) -> None:
        ttl = policy.ttl_seconds
        while run.continue_paging:
            page = await self._gateway.fetch_messages_before(policy.channel_id, run.cursor, self._page_size)
            if not page:
                run.continue_paging = False
                break
            run.pages_fetched += 1
            run.processed_count += len(page)

            now = self._clock()
            candidates = select_candidates(page, now, ttl)
            if candidates:
                logger.info("found %d expired message(s) in channel %s", len(candidates), policy.channel_id)
                result = await self._executor.delete_batch(policy.channel_id, [m.id for m in candidates])
                run.deleted_count += result.deleted_count
                run.error_count += result.error_count
                if result.deleted_count > 0:
                    update = self._reporter.record(policy.channel_id, result.deleted_count)
                    if update is not None:
                        run.messages_deleted_total = update.messages_deleted
                if result.channel_gone:
                    raise UnknownChannel(f"channel {policy.channel_id} disappeared during the sweep")
                if result.fatal:
                    run.outcome = OUTCOME_ABORTED
                    run.error_code = PermissionDenied.code
                    run.continue_paging = False
                    break

            oldest = page[-1]
            run.cursor = oldest.id
            run.continue_paging = len(page) >= self._page_size and oldest.is_expired(now, ttl)
