import logging
from typing import Optional, Sequence

from telegram_vanish_bot.domain.contracts import ChannelGateway
from telegram_vanish_bot.domain.errors import (
    AgeWindowExceeded,
    MessageNotFound,
    PermissionDenied,
    RateLimited,
    UnknownChannel,
    error_code_for,
)
from telegram_vanish_bot.domain.retention import BatchResult
from telegram_vanish_bot.services.backoff import DeletionBackoff, SleepFn, default_sleep

logger = logging.getLogger(__name__)


class DeletionExecutor:
    """Deletes one batch of expired messages.

    Bulk delete first; only an age-window rejection switches to one-by-one
    deletion. Outcomes come back as counts, never as exceptions; a channel
    that vanishes mid-batch is flagged with ``channel_gone`` and keeps the
    deletions already made.
    """

    def __init__(
        self,
        gateway: ChannelGateway,
        backoff: Optional[DeletionBackoff] = None,
        sleep: Optional[SleepFn] = None,
    ) -> None:
        self._gateway = gateway
        self._backoff = backoff or DeletionBackoff()
        self._sleep = sleep or default_sleep

    async def delete_batch(self, channel_id: str, candidate_ids: Sequence[str]) -> BatchResult:
        ids = list(candidate_ids)
        if not ids:
            return BatchResult(deleted_count=0, error_count=0)
        try:
            await self._gateway.bulk_delete(channel_id, ids)
        except AgeWindowExceeded:
            logger.info(
                "messages too old for bulk delete channel=%s count=%d, deleting individually",
                channel_id,
                len(ids),
            )
            return await self._delete_individually(channel_id, ids)
        except PermissionDenied as exc:
            logger.error(
                "missing permission to delete messages channel=%s code=%s: %s",
                channel_id,
                exc.code,
                exc,
            )
            return BatchResult(deleted_count=0, error_count=1, fatal=True)
        except UnknownChannel:
            logger.info("channel %s disappeared before bulk delete", channel_id)
            return BatchResult(deleted_count=0, error_count=0, channel_gone=True)
        except Exception as exc:
            logger.error(
                "bulk delete failed channel=%s count=%d code=%s: %s",
                channel_id,
                len(ids),
                error_code_for(exc),
                exc,
            )
            return BatchResult(deleted_count=0, error_count=1)
        logger.info("bulk deleted %d message(s) channel=%s", len(ids), channel_id)
        return BatchResult(deleted_count=len(ids), error_count=0)

    async def _delete_individually(self, channel_id: str, ids: Sequence[str]) -> BatchResult:
        deleted = 0
        errors = 0
        paused = True
        for message_id in ids:
            if not paused:
                await self._sleep(self._backoff.spacing())
            paused = False
            try:
                await self._gateway.delete_message(channel_id, message_id)
                deleted += 1
                logger.debug("deleted message %s channel=%s", message_id, channel_id)
            except MessageNotFound:
                logger.debug("message %s already gone channel=%s, counting as deleted", message_id, channel_id)
                deleted += 1
            except RateLimited as exc:
                errors += 1
                pause = self._backoff.pause_for(exc)
                logger.warning(
                    "rate limited deleting message %s channel=%s, pausing %.1fs",
                    message_id,
                    channel_id,
                    pause,
                )
                await self._sleep(pause)
                paused = True
            except PermissionDenied as exc:
                errors += 1
                logger.error(
                    "missing permission to delete message %s channel=%s code=%s: %s",
                    message_id,
                    channel_id,
                    exc.code,
                    exc,
                )
                return BatchResult(deleted_count=deleted, error_count=errors, fatal=True)
            except UnknownChannel:
                logger.info(
                    "channel %s disappeared mid-batch after %d deletion(s)",
                    channel_id,
                    deleted,
                )
                return BatchResult(deleted_count=deleted, error_count=errors, channel_gone=True)
            except Exception as exc:
                errors += 1
                logger.error(
                    "error deleting message %s channel=%s code=%s: %s",
                    message_id,
                    channel_id,
                    error_code_for(exc),
                    exc,
                )
        return BatchResult(deleted_count=deleted, error_count=errors)
