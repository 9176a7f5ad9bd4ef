import json
import logging
from datetime import datetime, timezone
from logging import Logger
from typing import Any, Dict


def log_json(logger: Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one sweep/admin event as a sorted JSON line."""
    if not logger.isEnabledFor(level):
        return
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    payload.update(fields)
    logger.log(level, json.dumps(payload, ensure_ascii=True, sort_keys=True, default=str))
