from __future__ import annotations

import asyncio
import logging
import os
import socket
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from telegram_vanish_bot.domain.contracts import SweepLease
from telegram_vanish_bot.domain.errors import error_code_for
from telegram_vanish_bot.domain.retention import SweepSummary
from telegram_vanish_bot.observability.structured_log import log_json

logger = logging.getLogger(__name__)

DEFAULT_LEASE_SEC = 900

RunFn = Callable[[Optional[str]], Awaitable[SweepSummary]]


def default_lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SweepScheduler:
    """Fires the sweep on a fixed interval, never more than one at a time.

    The in-flight flag is a single-permit ``asyncio.Lock``; a tick that finds
    it held is dropped, not queued. When a ``lease`` is given, the tick also
    has to win the store-wide sweep lease, which keeps a second process on
    the same database from sweeping concurrently.
    """

    def __init__(
        self,
        run_fn: RunFn,
        interval_sec: int = 60,
        lease: Optional[SweepLease] = None,
        lease_sec: int = DEFAULT_LEASE_SEC,
        owner: Optional[str] = None,
    ) -> None:
        self._run_fn = run_fn
        self._interval = max(1, int(interval_sec))
        self._lease = lease
        self._lease_sec = max(1, int(lease_sec))
        self._owner = owner or default_lease_owner()
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._ticks = 0
        self._skipped_ticks = 0
        self._failed_ticks = 0
        self._last_summary: Optional[SweepSummary] = None
        self._last_finished_at: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @property
    def last_summary(self) -> Optional[SweepSummary]:
        return self._last_summary

    @property
    def interval_sec(self) -> int:
        return self._interval

    @property
    def owner(self) -> str:
        return self._owner

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run_loop(), name="vanish-sweep-scheduler")
        logger.info("sweep scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        self._stopped.set()
        task = self._task
        if task is None:
            return
        # An in-flight sweep always runs to completion.
        async with self._lock:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("sweep scheduler stopped")

    async def tick(self, guild_id: Optional[str] = None) -> Optional[SweepSummary]:
        self._ticks += 1
        if self._lock.locked():
            self._skip("in_progress")
            return None
        async with self._lock:
            if not self._take_lease():
                return None
            renewer = asyncio.create_task(self._renew_lease()) if self._lease is not None else None
            try:
                summary = await self._run_fn(guild_id)
            except Exception:
                self._failed_ticks += 1
                logger.exception("sweep run failed")
                return None
            finally:
                if renewer is not None:
                    renewer.cancel()
                self._last_finished_at = datetime.now(timezone.utc)
                self._drop_lease()
            self._last_summary = summary
            return summary

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._task is not None and not self._task.done(),
            "in_progress": self.in_progress,
            "interval_sec": self._interval,
            "owner": self._owner,
            "ticks": self._ticks,
            "skipped_ticks": self._skipped_ticks,
            "failed_ticks": self._failed_ticks,
            "last_finished_at": self._last_finished_at.isoformat() if self._last_finished_at else None,
            "last_summary": self._last_summary.as_dict() if self._last_summary else None,
        }

    def _skip(self, reason: str) -> None:
        self._skipped_ticks += 1
        if reason == "in_progress":
            logger.info("previous sweep still in progress, skipping this run")
        else:
            logger.info("sweep lease held by another process, skipping this run")
        log_json(logger, "sweep_skipped", reason=reason, skipped_ticks=self._skipped_ticks)

    def _take_lease(self) -> bool:
        if self._lease is None:
            return True
        try:
            acquired = self._lease.acquire_sweep_lease(self._owner, self._lease_sec)
        except Exception as exc:
            self._failed_ticks += 1
            logger.error("cannot take sweep lease code=%s: %s", error_code_for(exc), exc)
            return False
        if not acquired:
            self._skip("lease_held")
        return acquired

    async def _renew_lease(self) -> None:
        while True:
            await asyncio.sleep(self._lease_sec / 3)
            try:
                if not self._lease.acquire_sweep_lease(self._owner, self._lease_sec):
                    logger.warning("sweep lease was taken over by another process")
            except Exception as exc:
                logger.warning("cannot renew sweep lease code=%s: %s", error_code_for(exc), exc)

    def _drop_lease(self) -> None:
        if self._lease is None:
            return
        try:
            self._lease.release_sweep_lease(self._owner)
        except Exception as exc:
            logger.warning("cannot release sweep lease code=%s: %s", error_code_for(exc), exc)

    async def _run_loop(self) -> None:
        while not self._stopped.is_set():
            await self.tick()
            await asyncio.sleep(self._interval)
