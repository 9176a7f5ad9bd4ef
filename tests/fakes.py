"""In-memory collaborators shared by the sweep engine tests."""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from telegram_vanish_bot.domain.contracts import ChannelInfo
from telegram_vanish_bot.domain.errors import MessageNotFound, StoreError, UnknownChannel
from telegram_vanish_bot.domain.retention import CandidateMessage, RetentionPolicy, StatsUpdate

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_policy(channel_id: str = "-1001", ttl_seconds: int = 3600, messages_deleted: int = 0, guild_id: str = "") -> RetentionPolicy:
    return RetentionPolicy(
        channel_id=channel_id,
        guild_id=guild_id or channel_id,
        ttl_seconds=ttl_seconds,
        messages_deleted=messages_deleted,
        last_deletion_at=None,
        created_at=NOW - timedelta(days=30),
        updated_at=NOW - timedelta(days=30),
    )


def make_messages(
    count: int,
    age_seconds: float,
    start_id: int = 1,
    pinned_ids: Sequence[int] = (),
    now: datetime = NOW,
) -> List[CandidateMessage]:
    pinned = set(pinned_ids)
    return [
        CandidateMessage(
            id=str(start_id + i),
            created_at=now - timedelta(seconds=age_seconds),
            pinned=(start_id + i) in pinned,
        )
        for i in range(count)
    ]


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return self.now


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeGateway:
    def __init__(self):
        self.messages: Dict[str, Dict[int, CandidateMessage]] = {}
        self.unknown_channels = set()
        self.bulk_errors: Dict[str, Exception] = {}
        self.delete_errors: Dict[str, Exception] = {}
        self.fetch_errors: Dict[str, Exception] = {}
        self.resolve_errors: Dict[str, Exception] = {}
        self.label_error: Optional[Exception] = None
        self.fetch_calls: List[tuple] = []
        self.bulk_calls: List[tuple] = []
        self.delete_calls: List[tuple] = []
        self.labels: Dict[str, str] = {}

    def add_messages(self, channel_id: str, messages: Sequence[CandidateMessage]) -> None:
        bucket = self.messages.setdefault(channel_id, {})
        for m in messages:
            bucket[int(m.id)] = m

    def remaining(self, channel_id: str) -> List[str]:
        return [str(i) for i in sorted(self.messages.get(channel_id, {}))]

    async def resolve_channel(self, channel_id: str) -> ChannelInfo:
        if channel_id in self.resolve_errors:
            raise self.resolve_errors[channel_id]
        if channel_id in self.unknown_channels:
            raise UnknownChannel(f"chat {channel_id} not found")
        return ChannelInfo(channel_id=channel_id, title=f"chat {channel_id}", kind="supergroup")

    async def fetch_messages_before(self, channel_id: str, cursor_id: Optional[str], limit: int) -> List[CandidateMessage]:
        self.fetch_calls.append((channel_id, cursor_id, limit))
        if channel_id in self.fetch_errors:
            raise self.fetch_errors[channel_id]
        bucket = self.messages.get(channel_id, {})
        ids = sorted(bucket, reverse=True)
        if cursor_id is not None:
            ids = [i for i in ids if i < int(cursor_id)]
        return [bucket[i] for i in ids[:limit]]

    async def bulk_delete(self, channel_id: str, ids: Sequence[str]) -> None:
        self.bulk_calls.append((channel_id, list(ids)))
        if channel_id in self.bulk_errors:
            raise self.bulk_errors[channel_id]
        for m in ids:
            self.messages.get(channel_id, {}).pop(int(m), None)

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        self.delete_calls.append((channel_id, message_id))
        err = self.delete_errors.get(message_id)
        if err is not None:
            if isinstance(err, MessageNotFound):
                self.messages.get(channel_id, {}).pop(int(message_id), None)
            raise err
        self.messages.get(channel_id, {}).pop(int(message_id), None)

    async def set_channel_label(self, channel_id: str, text: str) -> None:
        if self.label_error is not None:
            raise self.label_error
        self.labels[channel_id] = text


class FakeStore:
    def __init__(self, policies: Sequence[RetentionPolicy] = ()):
        self.policies: Dict[str, RetentionPolicy] = {p.channel_id: p for p in policies}
        self.increments: List[tuple] = []
        self.fail_increment = False
        self.fail_list = False

    def list_active_policies(self, guild_id: Optional[str] = None) -> List[RetentionPolicy]:
        if self.fail_list:
            raise StoreError("database is locked")
        return [p for p in self.policies.values() if not guild_id or p.guild_id == guild_id]

    def get_policy(self, channel_id: str) -> Optional[RetentionPolicy]:
        return self.policies.get(channel_id)

    def set_policy(self, channel_id: str, guild_id: str, ttl_seconds: int) -> RetentionPolicy:
        policy = make_policy(channel_id, ttl_seconds, guild_id=guild_id)
        self.policies[channel_id] = policy
        return policy

    def remove_policy(self, channel_id: str) -> bool:
        return self.policies.pop(channel_id, None) is not None

    def increment_stats(self, channel_id: str, deleted_count: int) -> Optional[StatsUpdate]:
        self.increments.append((channel_id, deleted_count))
        if self.fail_increment:
            raise StoreError("disk I/O error")
        policy = self.policies.get(channel_id)
        if policy is None:
            return None
        updated = replace(policy, messages_deleted=policy.messages_deleted + deleted_count, last_deletion_at=NOW)
        self.policies[channel_id] = updated
        return StatsUpdate(messages_deleted=updated.messages_deleted, last_deletion_at=NOW)
