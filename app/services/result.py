from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_RESOLVED = "already_resolved"
    ASSIGNED_TO_OTHER = "assigned_to_other"
    ALREADY_OPEN = "already_open"
    COOLDOWN = "cooldown"
    NOT_CONFIGURED = "not_configured"
    SEND_FAILED = "send_failed"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T = None) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = ErrorCode.UNKNOWN) -> "Result[T]":
        return Result(ok=False, error=error, error_code=ErrorCode(code).value)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
