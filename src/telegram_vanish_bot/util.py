import os
import re
from datetime import datetime
from functools import lru_cache
from typing import List, Optional

DEFAULT_REPLACEMENT = "REDACTED"
_DEFAULT_PATTERNS = (
    (r"(?<!\d)\d{6,12}:[A-Za-z0-9_-]{30,}", "BOT_TOKEN_REDACTED"),
    (r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*\b", "Bearer REDACTED"),
    (
        r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|secret|password))\b\s*[:=]\s*([^\s,;]+)",
        r"\1=REDACTED",
    ),
)
_EXTRA_PATTERNS_ENV = "REDACTION_EXTRA_PATTERNS"

_DURATION_RE = re.compile(r"^(\d+)(d|h|m|s)$")
_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def redact(text: str) -> str:
    value = text or ""
    for regex, replacement in _compiled_patterns():
        value = regex.sub(replacement, value)
    return value


@lru_cache(maxsize=2)
def _compiled_patterns() -> List[tuple]:
    items = [(re.compile(pattern), replacement) for pattern, replacement in _DEFAULT_PATTERNS]
    extra_raw = (os.environ.get(_EXTRA_PATTERNS_ENV) or "").strip()
    if not extra_raw:
        return items
    for token in extra_raw.split(";;"):
        pattern = token.strip()
        if not pattern:
            continue
        try:
            items.append((re.compile(pattern), DEFAULT_REPLACEMENT))
        except re.error:
            continue
    return items


def parse_duration(text: str) -> Optional[int]:
    """Parse ``6h``, ``1d``, ``30m`` or ``60s`` into seconds; ``None`` if invalid."""
    match = _DURATION_RE.match((text or "").strip().lower())
    if not match:
        return None
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    return seconds or None


def format_duration(seconds: int) -> str:
    value = max(0, int(seconds))
    if value >= 86400:
        return f"{value // 86400}d"
    if value >= 3600:
        return f"{value // 3600}h"
    if value >= 60:
        return f"{value // 60}m"
    return f"{value}s"


def format_relative(when: Optional[datetime], now: datetime) -> str:
    if when is None:
        return "Never"
    delta = int((now - when).total_seconds())
    if delta < 0:
        return "just now"
    if delta < 60:
        return f"{delta} seconds ago" if delta != 1 else "1 second ago"
    for unit_seconds, name in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if delta >= unit_seconds:
            count = delta // unit_seconds
            return f"{count} {name}{'s' if count != 1 else ''} ago"
    return "just now"
