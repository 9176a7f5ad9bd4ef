"""Retention sweep engine: scheduler, coordinator, sweeper, executor, stats."""
from telegram_vanish_bot.services.backoff import DeletionBackoff
from telegram_vanish_bot.services.channel_sweeper import ChannelSweeper
from telegram_vanish_bot.services.deletion_executor import DeletionExecutor
from telegram_vanish_bot.services.stats_reporter import StatsReporter, format_label, strip_label
from telegram_vanish_bot.services.sweep_coordinator import SweepCoordinator
from telegram_vanish_bot.services.sweep_scheduler import SweepScheduler

__all__ = [
    "ChannelSweeper",
    "DeletionBackoff",
    "DeletionExecutor",
    "StatsReporter",
    "SweepCoordinator",
    "SweepScheduler",
    "format_label",
    "strip_label",
]
