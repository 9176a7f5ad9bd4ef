from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


OUTCOME_DONE = "done"
OUTCOME_ABORTED = "aborted"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"

MAX_TTL_SECONDS = 365 * 86400


@dataclass(frozen=True)
class RetentionPolicy:
    channel_id: str
    guild_id: str
    ttl_seconds: int
    messages_deleted: int
    last_deletion_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CandidateMessage:
    id: str
    created_at: datetime
    pinned: bool = False

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def is_expired(self, now: datetime, ttl_seconds: int) -> bool:
        return self.age_seconds(now) > ttl_seconds


@dataclass(frozen=True)
class BatchResult:
    deleted_count: int
    error_count: int
    fatal: bool = False
    channel_gone: bool = False


@dataclass(frozen=True)
class StatsUpdate:
    messages_deleted: int
    last_deletion_at: Optional[datetime]


@dataclass
class SweepRun:
    """Per-channel sweep state. Lives only for one channel of one run."""

    channel_id: str
    cursor: Optional[str] = None
    processed_count: int = 0
    deleted_count: int = 0
    error_count: int = 0
    pages_fetched: int = 0
    continue_paging: bool = True
    outcome: str = OUTCOME_DONE
    error_code: str = ""
    messages_deleted_total: Optional[int] = None


@dataclass(frozen=True)
class SweepSummary:
    channels_total: int
    channels_swept: int
    channels_skipped: int
    channels_aborted: int
    channels_failed: int
    total_deleted: int
    total_errors: int
    started_at: datetime
    elapsed_ms: float
    runs: List[SweepRun] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "channels_total": self.channels_total,
            "channels_swept": self.channels_swept,
            "channels_skipped": self.channels_skipped,
            "channels_aborted": self.channels_aborted,
            "channels_failed": self.channels_failed,
            "total_deleted": self.total_deleted,
            "total_errors": self.total_errors,
            "started_at": self.started_at.isoformat(),
            "elapsed_ms": round(self.elapsed_ms, 2),
            "runs": [
                {
                    "channel_id": run.channel_id,
                    "outcome": run.outcome,
                    "error_code": run.error_code,
                    "processed": run.processed_count,
                    "deleted": run.deleted_count,
                    "errors": run.error_count,
                    "pages": run.pages_fetched,
                }
                for run in self.runs
            ],
        }


def validate_ttl(ttl_seconds: int) -> int:
    if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
        raise ValueError("ttl_seconds must be an integer")
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be greater than zero")
    if ttl_seconds > MAX_TTL_SECONDS:
        raise ValueError(f"ttl_seconds must be at most {MAX_TTL_SECONDS}")
    return ttl_seconds
