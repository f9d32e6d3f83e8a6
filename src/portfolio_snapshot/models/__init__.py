"""Domain models for the portfolio snapshot pipeline.

This package contains the domain model classes used throughout the application:
configuration, row records, aggregate accumulators and run metrics.
"""

from .aggregate import AggregateBucket, AggregationResult
from .config_models import (
    CategoryRule,
    DashboardConfig,
    DepartmentConfig,
    HistoryConfig,
    RuleSet,
    SourceConfig,
)
from .records import FieldRecord, PersonRecord, ProjectRecord, Segment, Tracked, Untracked
from .run_result import RunResult

__all__ = [
    # Configuration models
    "CategoryRule",
    "DashboardConfig",
    "DepartmentConfig",
    "HistoryConfig",
    "RuleSet",
    "SourceConfig",
    # Row models
    "FieldRecord",
    "PersonRecord",
    "ProjectRecord",
    "Segment",
    "Tracked",
    "Untracked",
    # Aggregation / run models
    "AggregateBucket",
    "AggregationResult",
    "RunResult",
]
