from telegram_vanish_bot.domain.errors import (
    AgeWindowExceeded,
    GatewayError,
    MessageNotFound,
    PermissionDenied,
    RateLimited,
    StoreError,
    TransientPlatformError,
    UnknownChannel,
    error_code_for,
)
from telegram_vanish_bot.domain.retention import (
    BatchResult,
    CandidateMessage,
    RetentionPolicy,
    StatsUpdate,
    SweepRun,
    SweepSummary,
)

__all__ = [
    "AgeWindowExceeded",
    "BatchResult",
    "CandidateMessage",
    "GatewayError",
    "MessageNotFound",
    "PermissionDenied",
    "RateLimited",
    "RetentionPolicy",
    "StatsUpdate",
    "StoreError",
    "SweepRun",
    "SweepSummary",
    "TransientPlatformError",
    "UnknownChannel",
    "error_code_for",
]
