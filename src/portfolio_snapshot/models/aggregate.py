from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .records import Segment

"""Aggregate accumulator models.

AggregateBucket is the mutable running total for one group value of one
grouping dimension (or for a whole segment). AggregationResult is what a
single engine pass returns; the projection layer shapes it for output.
"""

__all__ = [
    "RAG_COLORS",
    "AggregateBucket",
    "AggregationResult",
]

RAG_COLORS = ("green", "yellow", "red", "blue", "unknown")


def _empty_rag() -> dict[str, int]:
    return dict.fromkeys(RAG_COLORS, 0)


@dataclass
class AggregateBucket:
    """Running totals for one group.

    ``underserviced_amount`` is stored as a positive magnitude.
    ``sums`` / ``tallies`` hold measures that only some variants use
    (utilization percentages, status distributions).
    """
    name: Any
    budget: float = 0.0
    actuals: float = 0.0
    overage: float = 0.0
    oop: float = 0.0
    investment: float = 0.0
    missing_time: float = 0.0
    deviation: float = 0.0
    weighted: float = 0.0
    projects: int = 0
    tracked_projects: int = 0
    overserviced_count: int = 0
    overserviced_amount: float = 0.0
    underserviced_count: int = 0
    underserviced_amount: float = 0.0
    rag: dict[str, int] = field(default_factory=_empty_rag)
    sums: dict[str, float] = field(default_factory=dict)
    tallies: dict[str, dict[str, int]] = field(default_factory=dict)

    def add(self, measure: str, amount: float) -> None:
        self.sums[measure] = self.sums.get(measure, 0.0) + amount

    def tally(self, group: str, label: str) -> None:
        counts = self.tallies.setdefault(group, {})
        counts[label] = counts.get(label, 0) + 1

    def mean(self, measure: str) -> float:
        if self.projects == 0:
            return 0.0
        return self.sums.get(measure, 0.0) / self.projects

    def count_of(self, group: str, label: str) -> int:
        return self.tallies.get(group, {}).get(label, 0)


@dataclass
class AggregationResult:
    """Output of one engine pass.

    buckets[segment][dimension_name][group_key] -> AggregateBucket
    """
    totals: dict[Segment, AggregateBucket]
    projects: dict[Segment, list[Any]]
    buckets: dict[Segment, dict[str, dict[Any, AggregateBucket]]]
    categories: dict[str, int] = field(default_factory=dict)
    total_rows: int = 0
    uncategorized_count: int = 0

    @classmethod
    def empty(cls, dimension_names: dict[Segment, list[str]]) -> AggregationResult:
        segments = [s for s in Segment if s is not Segment.UNKNOWN]
        return cls(
            totals={s: AggregateBucket(name=s.value) for s in segments},
            projects={s: [] for s in segments},
            buckets={s: {name: {} for name in dimension_names.get(s, [])} for s in segments},
        )

    def count(self, segment: Segment) -> int:
        return len(self.projects.get(segment, []))

    def dimension(self, segment: Segment, name: str) -> dict[Any, AggregateBucket]:
        return self.buckets.get(segment, {}).get(name, {})
