from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

ABSENT = "absent"
MALFORMED = "malformed"


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

    @staticmethod
    def absent() -> "Result[T]":
        return Result(ok=False, error="no value", error_code=ABSENT)

    @staticmethod
    def malformed(error: str) -> "Result[T]":
        return Result(ok=False, error=error, error_code=MALFORMED)

    @property
    def is_absent(self) -> bool:
        return not self.ok and self.error_code == ABSENT

    @property
    def is_malformed(self) -> bool:
        return not self.ok and self.error_code == MALFORMED

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
