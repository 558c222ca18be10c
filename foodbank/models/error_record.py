from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

Records one failure observed by an import or restore run. `batch` and `row`
use -1 as a sentinel when the failure is not tied to a specific batch/row
(e.g. a restore-level error, or a whole-batch commit failure).
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        operation: import / restore / export
        batch: 1-based batch index, -1 when not applicable
        row: 1-based row number, -1 when the error covers more than one row
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Database error message or description
    """
    timestamp: str
    operation: str
    batch: int
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(operation: str, batch: int, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            operation=operation,
            batch=batch,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
