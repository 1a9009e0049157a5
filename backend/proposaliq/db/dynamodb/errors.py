from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(slots=True)
class DdbError(Exception):
    """Failure talking to the entity table, already classified for the HTTP layer."""

    http_status: ClassVar[int] = 500

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message

    def log_fields(self) -> dict[str, Any]:
        return {
            "ddb_operation": self.operation,
            "ddb_table": self.table_name,
            "aws_request_id": self.aws_request_id,
            "retryable": self.retryable,
        }


@dataclass(slots=True)
class DdbNotFound(DdbError):
    http_status: ClassVar[int] = 404


@dataclass(slots=True)
class DdbConflict(DdbError):
    """Conditional write lost a race or the record was modified concurrently."""

    http_status: ClassVar[int] = 409


@dataclass(slots=True)
class DdbValidation(DdbError):
    http_status: ClassVar[int] = 400


@dataclass(slots=True)
class DdbThrottled(DdbError):
    http_status: ClassVar[int] = 503


@dataclass(slots=True)
class DdbUnavailable(DdbError):
    http_status: ClassVar[int] = 503


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass


def status_code_for(exc: DdbError) -> int:
    return int(getattr(exc, "http_status", 500))
