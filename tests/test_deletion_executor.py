import unittest

from fakes import FakeGateway, RecordingSleep, make_messages

from telegram_vanish_bot.domain.errors import (
    AgeWindowExceeded,
    GatewayError,
    MessageNotFound,
    PermissionDenied,
    RateLimited,
    UnknownChannel,
)
from telegram_vanish_bot.services.backoff import DeletionBackoff
from telegram_vanish_bot.services.deletion_executor import DeletionExecutor

CHANNEL = "-1001"


class TestDeletionExecutor(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.gateway = FakeGateway()
        self.sleep = RecordingSleep()
        self.executor = DeletionExecutor(
            gateway=self.gateway,
            backoff=DeletionBackoff(spacing_sec=0.2, rate_limit_pause_sec=5.0),
            sleep=self.sleep,
        )

    def _ids(self, count: int):
        messages = make_messages(count, age_seconds=20 * 86400)
        self.gateway.add_messages(CHANNEL, messages)
        return [m.id for m in messages]

    async def test_empty_batch_touches_nothing(self):
        result = await self.executor.delete_batch(CHANNEL, [])
        self.assertEqual((result.deleted_count, result.error_count, result.fatal), (0, 0, False))
        self.assertEqual(self.gateway.bulk_calls, [])

    async def test_bulk_success_deletes_whole_batch(self):
        ids = self._ids(30)
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(result.deleted_count, 30)
        self.assertEqual(result.error_count, 0)
        self.assertEqual(len(self.gateway.bulk_calls), 1)
        self.assertEqual(self.gateway.delete_calls, [])
        self.assertEqual(self.sleep.calls, [])

    async def test_age_window_falls_back_to_individual_deletion(self):
        ids = self._ids(50)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded("older than 48h")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(result.deleted_count, 50)
        self.assertEqual(result.error_count, 0)
        self.assertFalse(result.fatal)
        self.assertEqual([m for _, m in self.gateway.delete_calls], ids)
        self.assertEqual(self.gateway.remaining(CHANNEL), [])
        self.assertEqual(self.sleep.calls, [0.2] * 49)

    async def test_not_found_counts_as_deleted_and_continues(self):
        ids = self._ids(5)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        self.gateway.delete_errors[ids[1]] = MessageNotFound("Message to delete not found")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(result.deleted_count, 5)
        self.assertEqual(result.error_count, 0)
        self.assertEqual(len(self.gateway.delete_calls), 5)

    async def test_rate_limited_message_is_counted_and_not_retried(self):
        ids = self._ids(50)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        limited = ids[9]
        self.gateway.delete_errors[limited] = RateLimited(retry_after_ms=0)
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(result.deleted_count, 49)
        self.assertEqual(result.error_count, 1)
        self.assertEqual(self.gateway.remaining(CHANNEL), [limited])
        attempted = [m for _, m in self.gateway.delete_calls]
        self.assertEqual(attempted.count(limited), 1)
        self.assertEqual(attempted, ids)
        self.assertEqual(self.sleep.calls.count(5.0), 1)
        self.assertEqual(self.sleep.calls[9], 5.0)
        self.assertEqual(len(self.sleep.calls), 49)

    async def test_rate_limit_pause_honours_longer_retry_after(self):
        ids = self._ids(2)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        self.gateway.delete_errors[ids[0]] = RateLimited(retry_after_ms=12000)
        await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(self.sleep.calls, [12.0])

    async def test_permission_denied_during_fallback_is_fatal(self):
        ids = self._ids(10)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        self.gateway.delete_errors[ids[3]] = PermissionDenied("not enough rights")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertTrue(result.fatal)
        self.assertEqual(result.deleted_count, 3)
        self.assertEqual(result.error_count, 1)
        self.assertEqual(len(self.gateway.delete_calls), 4)

    async def test_channel_vanishing_mid_fallback_keeps_partial_count(self):
        ids = self._ids(10)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        self.gateway.delete_errors[ids[2]] = RateLimited(retry_after_ms=1000)
        self.gateway.delete_errors[ids[6]] = UnknownChannel("chat not found")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertTrue(result.channel_gone)
        self.assertFalse(result.fatal)
        self.assertEqual(result.deleted_count, 5)
        self.assertEqual(result.error_count, 1)
        self.assertEqual(len(self.gateway.delete_calls), 7)

    async def test_bulk_unknown_channel_is_flagged(self):
        ids = self._ids(10)
        self.gateway.bulk_errors[CHANNEL] = UnknownChannel("chat not found")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertTrue(result.channel_gone)
        self.assertEqual((result.deleted_count, result.error_count), (0, 0))
        self.assertEqual(self.gateway.delete_calls, [])

    async def test_bulk_permission_denied_is_fatal_without_fallback(self):
        ids = self._ids(10)
        self.gateway.bulk_errors[CHANNEL] = PermissionDenied("Forbidden")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertTrue(result.fatal)
        self.assertEqual(result.deleted_count, 0)
        self.assertEqual(self.gateway.delete_calls, [])

    async def test_other_bulk_failure_counts_one_error_without_fallback(self):
        ids = self._ids(10)
        self.gateway.bulk_errors[CHANNEL] = GatewayError("Bad Gateway")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertFalse(result.fatal)
        self.assertEqual(result.deleted_count, 0)
        self.assertEqual(result.error_count, 1)
        self.assertEqual(self.gateway.delete_calls, [])
        self.assertEqual(len(self.gateway.remaining(CHANNEL)), 10)

    async def test_unexpected_individual_error_is_counted_and_skipped(self):
        ids = self._ids(4)
        self.gateway.bulk_errors[CHANNEL] = AgeWindowExceeded()
        self.gateway.delete_errors[ids[0]] = RuntimeError("connection reset")
        result = await self.executor.delete_batch(CHANNEL, ids)
        self.assertEqual(result.deleted_count, 3)
        self.assertEqual(result.error_count, 1)
        self.assertFalse(result.fatal)


class TestDeletionBackoff(unittest.TestCase):
    def test_pause_defaults_to_fixed_interval(self):
        self.assertEqual(DeletionBackoff().pause_for(RateLimited(0)), 5.0)

    def test_pause_is_capped(self):
        backoff = DeletionBackoff(rate_limit_pause_sec=5.0, max_rate_limit_pause_sec=30.0)
        self.assertEqual(backoff.pause_for(RateLimited(retry_after_ms=120000)), 30.0)

    def test_negative_spacing_is_clamped(self):
        self.assertEqual(DeletionBackoff(spacing_sec=-1).spacing(), 0.0)


if __name__ == "__main__":
    unittest.main()
