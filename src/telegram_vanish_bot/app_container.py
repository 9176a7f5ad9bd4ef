import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from telegram import Bot

from telegram_vanish_bot.config import SweepSettings
from telegram_vanish_bot.gateway.telegram_gateway import TelegramChannelGateway
from telegram_vanish_bot.persistence.sqlite_store import SqlitePolicyStore
from telegram_vanish_bot.services.backoff import DeletionBackoff, SleepFn
from telegram_vanish_bot.services.channel_sweeper import ChannelSweeper, utc_now
from telegram_vanish_bot.services.deletion_executor import DeletionExecutor
from telegram_vanish_bot.services.retention_service import RetentionService
from telegram_vanish_bot.services.stats_reporter import StatsReporter
from telegram_vanish_bot.services.sweep_coordinator import SweepCoordinator
from telegram_vanish_bot.services.sweep_scheduler import SweepScheduler

logger = logging.getLogger(__name__)


@dataclass
class RetentionContainer:
    store: SqlitePolicyStore
    gateway: TelegramChannelGateway
    coordinator: SweepCoordinator
    scheduler: SweepScheduler
    service: RetentionService


def build_store(state_db_path: Path) -> SqlitePolicyStore:
    logger.info("state_db_path=%s", str(Path(state_db_path).expanduser().resolve()))
    return SqlitePolicyStore(db_path=state_db_path)


def build_retention_container(
    bot: Bot,
    store: SqlitePolicyStore,
    settings: Optional[SweepSettings] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sleep: Optional[SleepFn] = None,
) -> RetentionContainer:
    cfg = settings or SweepSettings()
    now = clock or utc_now
    gateway = TelegramChannelGateway(
        bot=bot,
        journal=store,
        bulk_max_age_sec=cfg.bulk_delete_max_age_sec,
        clock=now,
    )
    backoff = DeletionBackoff(
        spacing_sec=cfg.delete_spacing_ms / 1000.0,
        rate_limit_pause_sec=float(cfg.rate_limit_pause_sec),
    )
    executor = DeletionExecutor(gateway=gateway, backoff=backoff, sleep=sleep)
    reporter = StatsReporter(store=store, gateway=gateway)
    sweeper = ChannelSweeper(
        gateway=gateway,
        executor=executor,
        reporter=reporter,
        clock=now,
        page_size=cfg.page_size,
    )
    coordinator = SweepCoordinator(
        store=store,
        sweeper=sweeper,
        max_parallel_channels=cfg.max_parallel_channels,
        clock=now,
    )
    scheduler = SweepScheduler(
        run_fn=coordinator.run_once,
        interval_sec=cfg.interval_sec,
        lease=store,
        lease_sec=cfg.lease_sec,
    )
    service = RetentionService(
        store=store,
        scheduler=scheduler,
        label_reader=gateway.get_channel_label,
        label_writer=gateway.set_channel_label,
        clock=now,
    )
    return RetentionContainer(
        store=store,
        gateway=gateway,
        coordinator=coordinator,
        scheduler=scheduler,
        service=service,
    )
