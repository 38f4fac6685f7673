"""Tagged success/failure value returned by tool adapters instead of raising."""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def to_payload(self) -> dict[str, Any]:
        """Shape sent back to the language model as a tool message."""
        if self.ok:
            return {"ok": True, "data": self.value}
        return {"ok": False, "error": self.error, "code": self.error_code}
