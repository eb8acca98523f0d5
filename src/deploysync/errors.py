"""
Error types for deploysync.

Transport failures are classified so callers can decide whether to retry
and which exit code to report.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Failure classes reported by transports."""

    AUTH = "auth"
    CONNECTION = "connection"
    PERMISSION = "permission"
    TRANSFER = "transfer"
    TIMEOUT = "timeout"


class UploadError(Exception):
    """Base class for all transport failures."""

    code: ErrorCode = ErrorCode.TRANSFER

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class UploadAuthError(UploadError):
    """Credentials or key rejected. Never retried."""

    code = ErrorCode.AUTH


class UploadConnectionError(UploadError):
    """Host unreachable or connection dropped."""

    code = ErrorCode.CONNECTION


class UploadPermissionError(UploadError):
    """Remote filesystem denied an operation."""

    code = ErrorCode.PERMISSION


class UploadTransferError(UploadError):
    """Underlying tool failed while moving data."""

    code = ErrorCode.TRANSFER


class UploadTimeoutError(UploadError):
    """Operation exceeded its time limit."""

    code = ErrorCode.TIMEOUT


class ConfigError(ValueError):
    """Invalid or missing configuration."""


def is_ssh_auth_error(message: str) -> bool:
    """Check ssh/scp/rsync output for authentication-failure markers."""
    return "Permission denied" in message or "publickey" in message


def is_connection_refused(message: str) -> bool:
    return "Connection refused" in message


def error_code_of(exc: BaseException) -> Optional[str]:
    """Return the string error code of an exception, if it carries one."""
    if isinstance(exc, UploadError):
        return exc.code.value
    return None
