"""Failure taxonomy shared by the gateway, the store and the sweep engine.

Each class carries a stable ``code`` that ends up in log lines and in the
control center error catalog.
"""
from typing import Optional


class RetentionError(Exception):
    code = "ERR_UNKNOWN"


class GatewayError(RetentionError):
    code = "ERR_PLATFORM"


class RateLimited(GatewayError):
    code = "ERR_RATE_LIMITED"

    def __init__(self, retry_after_ms: int = 0, message: str = ""):
        self.retry_after_ms = max(0, int(retry_after_ms or 0))
        super().__init__(message or f"rate limited, retry after {self.retry_after_ms}ms")


TransientPlatformError = RateLimited


class AgeWindowExceeded(GatewayError):
    code = "ERR_AGE_WINDOW"


class MessageNotFound(GatewayError):
    code = "ERR_MESSAGE_NOT_FOUND"


class PermissionDenied(GatewayError):
    code = "ERR_PERMISSION_DENIED"


class UnknownChannel(GatewayError):
    code = "ERR_UNKNOWN_CHANNEL"


class StoreError(RetentionError):
    code = "ERR_STORE"


def error_code_for(exc: Optional[BaseException]) -> str:
    if isinstance(exc, RetentionError):
        return exc.code
    return "ERR_UNKNOWN"
