from __future__ import annotations

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbNotFound,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from .table import DynamoTable, get_main_table

__all__ = [
    "DdbConflict",
    "DdbError",
    "DdbInternal",
    "DdbNotFound",
    "DdbThrottled",
    "DdbUnavailable",
    "DdbValidation",
    "DynamoTable",
    "get_main_table",
]
