from dataclasses import dataclass
from typing import List, Optional

from telegram_vanish_bot.domain.errors import error_code_for


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    counted_as_error: bool
    operator_hint: str


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_RATE_LIMITED",
        title="Rate limited by Telegram",
        counted_as_error=True,
        operator_hint="The sweeper paused and moved on; the message is retried on the next run.",
    ),
    ErrorCatalogEntry(
        code="ERR_AGE_WINDOW",
        title="Outside the bulk-delete age window",
        counted_as_error=False,
        operator_hint="Expected for old history; the batch falls back to one-by-one deletion.",
    ),
    ErrorCatalogEntry(
        code="ERR_MESSAGE_NOT_FOUND",
        title="Message already gone",
        counted_as_error=False,
        operator_hint="Counted as deleted.",
    ),
    ErrorCatalogEntry(
        code="ERR_PERMISSION_DENIED",
        title="Bot lacks delete rights",
        counted_as_error=True,
        operator_hint="Grant the bot the 'Delete messages' admin right in this chat.",
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN_CHANNEL",
        title="Chat no longer reachable",
        counted_as_error=False,
        operator_hint="Skipped for this run. Run /vanish off or remove the policy if the chat is gone for good.",
    ),
    ErrorCatalogEntry(
        code="ERR_STORE",
        title="Policy store failure",
        counted_as_error=True,
        operator_hint="Check the state database path and disk space; stats catch up on the next deletion.",
    ),
    ErrorCatalogEntry(
        code="ERR_PLATFORM",
        title="Telegram API error",
        counted_as_error=True,
        operator_hint="Inspect the log line for the Telegram error message.",
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unexpected error",
        counted_as_error=True,
        operator_hint="Inspect the traceback in the service log.",
    ),
]


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")


def describe_error(exc: Optional[BaseException]) -> ErrorCatalogEntry:
    return get_catalog_entry(error_code_for(exc))
