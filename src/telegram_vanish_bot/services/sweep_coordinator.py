import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from telegram_vanish_bot.domain.contracts import PolicyStore
from telegram_vanish_bot.domain.errors import error_code_for
from telegram_vanish_bot.domain.retention import (
    OUTCOME_ABORTED,
    OUTCOME_DONE,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    RetentionPolicy,
    SweepRun,
    SweepSummary,
)
from telegram_vanish_bot.observability.structured_log import log_json
from telegram_vanish_bot.services.channel_sweeper import ChannelSweeper

logger = logging.getLogger(__name__)


class SweepCoordinator:
    """Runs one channel sweep per active policy and aggregates the results.

    Channels run one at a time unless ``max_parallel_channels`` is raised; a
    channel appears at most once per run, so no two sweeps touch the same
    channel's counter concurrently.
    """

    def __init__(
        self,
        store: PolicyStore,
        sweeper: ChannelSweeper,
        max_parallel_channels: int = 1,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._sweeper = sweeper
        self._max_parallel = max(1, int(max_parallel_channels))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run_once(self, guild_id: Optional[str] = None) -> SweepSummary:
        started_at = self._clock()
        t0 = time.monotonic()
        try:
            policies = self._store.list_active_policies(guild_id)
        except Exception as exc:
            logger.error("failed to list retention policies code=%s: %s", error_code_for(exc), exc)
            policies = []
        logger.info("checking %d channel(s) for expired messages", len(policies))

        if self._max_parallel == 1:
            runs = [await self._sweep_isolated(p) for p in policies]
        else:
            gate = asyncio.Semaphore(self._max_parallel)

            async def _bounded(policy: RetentionPolicy) -> SweepRun:
                async with gate:
                    return await self._sweep_isolated(policy)

            runs = list(await asyncio.gather(*(_bounded(p) for p in policies)))

        summary = _summarize(runs, started_at=started_at, elapsed_ms=(time.monotonic() - t0) * 1000)
        log_json(
            logger,
            "sweep_summary",
            channels=summary.channels_total,
            swept=summary.channels_swept,
            skipped=summary.channels_skipped,
            aborted=summary.channels_aborted,
            failed=summary.channels_failed,
            deleted=summary.total_deleted,
            errors=summary.total_errors,
            elapsed_ms=round(summary.elapsed_ms, 2),
        )
        return summary

    async def _sweep_isolated(self, policy: RetentionPolicy) -> SweepRun:
        try:
            return await self._sweeper.sweep(policy)
        except Exception as exc:
            code = error_code_for(exc)
            logger.exception("error processing channel %s code=%s", policy.channel_id, code)
            return SweepRun(
                channel_id=policy.channel_id,
                continue_paging=False,
                outcome=OUTCOME_FAILED,
                error_code=code,
                error_count=1,
            )


def _summarize(runs: List[SweepRun], started_at: datetime, elapsed_ms: float) -> SweepSummary:
    return SweepSummary(
        channels_total=len(runs),
        channels_swept=sum(1 for r in runs if r.outcome == OUTCOME_DONE),
        channels_skipped=sum(1 for r in runs if r.outcome == OUTCOME_SKIPPED),
        channels_aborted=sum(1 for r in runs if r.outcome == OUTCOME_ABORTED),
        channels_failed=sum(1 for r in runs if r.outcome == OUTCOME_FAILED),
        total_deleted=sum(r.deleted_count for r in runs),
        total_errors=sum(r.error_count for r in runs),
        started_at=started_at,
        elapsed_ms=elapsed_ms,
        runs=runs,
    )
