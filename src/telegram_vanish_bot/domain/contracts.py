from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from telegram_vanish_bot.domain.retention import CandidateMessage, RetentionPolicy, StatsUpdate


@dataclass(frozen=True)
class ChannelInfo:
    channel_id: str
    title: str
    kind: str


class PolicyStore(Protocol):
    def list_active_policies(self, guild_id: Optional[str] = None) -> List[RetentionPolicy]:
        ...

    def get_policy(self, channel_id: str) -> Optional[RetentionPolicy]:
        ...

    def set_policy(self, channel_id: str, guild_id: str, ttl_seconds: int) -> RetentionPolicy:
        ...

    def remove_policy(self, channel_id: str) -> bool:
        ...

    def increment_stats(self, channel_id: str, deleted_count: int) -> Optional[StatsUpdate]:
        ...


class ChannelGateway(Protocol):
    async def resolve_channel(self, channel_id: str) -> ChannelInfo:
        ...

    async def fetch_messages_before(
        self,
        channel_id: str,
        cursor_id: Optional[str],
        limit: int,
    ) -> List[CandidateMessage]:
        ...

    async def bulk_delete(self, channel_id: str, ids: Sequence[str]) -> None:
        ...

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        ...

    async def set_channel_label(self, channel_id: str, text: str) -> None:
        ...


class SweepLease(Protocol):
    def acquire_sweep_lease(self, owner: str, ttl_sec: int) -> bool:
        ...

    def release_sweep_lease(self, owner: str) -> bool:
        ...
