from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for error logging.

This module defines the ErrorRecord dataclass used for structured error logging
during a snapshot run. Optional sources that fail to fetch and fatal pipeline
errors are both recorded here; ``source`` is "<RUN>" for run-level errors where
no single source is to blame.
"""

__all__ = [
    "ErrorRecord",
    "RUN_LEVEL",
]

RUN_LEVEL = "<RUN>"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        command: CLI command being executed (snapshot, dept-health, ...)
        source: Logical source name, or "<RUN>" for run-level errors
        source_id: Spreadsheet sheet/report id ("" when unknown)
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Error message
    """
    timestamp: str  # ISO8601 UTC
    command: str
    source: str
    source_id: str
    error_type: str  # UPPER_SNAKE
    message: str

    @staticmethod
    def create(command: str, source: str, source_id: str, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord with current UTC timestamp."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            command=command,
            source=source,
            source_id=source_id,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        """Serialize ErrorRecord to JSON Lines format (no extra keys)."""
        return json.dumps(asdict(self), ensure_ascii=False)
