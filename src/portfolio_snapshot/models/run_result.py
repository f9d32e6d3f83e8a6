from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

"""Run result model backing the SUMMARY output line.

One RunResult is produced per CLI command invocation.
"""

__all__ = [
    "RunResult",
]


@dataclass(frozen=True)
class RunResult:
    """Aggregated metrics for one command run.

    ``counts`` holds command specific tallies in display order
    (e.g. projects / live / newbiz / internal / uncategorized).
    """
    command: str
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    counts: dict[str, int] = field(default_factory=dict)
    sources_fetched: int = 0
    sources_missing: int = 0  # optional source の取得失敗数
