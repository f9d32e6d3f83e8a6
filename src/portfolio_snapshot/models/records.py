from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar

"""Row-level domain models for the portfolio snapshot pipeline.

A spreadsheet row passes through three shapes:

- RawRow: column title -> cell value (plain dict, never stored)
- FieldRecord: canonical field-named record produced by the normalizer
- ProjectRecord / PersonRecord: enriched rows produced by the aggregation engine

Numeric cells that may be "not yet tracked" are carried as the tagged union
``Tracked(value) | Untracked(raw)`` so that a tracked zero never collapses into
an untracked placeholder.
"""

__all__ = [
    "CellValue",
    "Segment",
    "Tracked",
    "Untracked",
    "TrackedValue",
    "UNTRACKED_LABEL",
    "FieldRecord",
    "ProjectRecord",
    "PersonRecord",
]

CellValue = str | int | float | bool | None

UNTRACKED_LABEL = "No Tracking"


class Segment(Enum):
    """Top-level business bucket a category belongs to."""
    LIVE = "live"
    NEWBIZ = "newbiz"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Tracked:
    value: float


@dataclass(frozen=True)
class Untracked:
    raw: Any = None  # 元のセル値 (表示/デバッグ用)


TrackedValue = Tracked | Untracked


@dataclass(frozen=True)
class FieldRecord:
    """Canonical normalized row.

    Every known field is optional; absent cells stay ``None`` (zero-defaulting
    happens only during aggregation). Column titles that are not in the
    title -> field dictionary are kept verbatim in ``extra``.
    """
    rid: CellValue = None
    client_name: CellValue = None
    project_name: CellValue = None
    workflow_status: CellValue = None
    budget_forecast: CellValue = None
    actuals: CellValue = None
    overage: CellValue = None
    oop: CellValue = None
    ecosystem: CellValue = None
    request_type: CellValue = None
    approved_investment: CellValue = None
    win_probability: CellValue = None
    recommendation: CellValue = None
    assignment: CellValue = None
    rag: CellValue = None
    project_manager: CellValue = None
    work_progress: CellValue = None
    resource_status: CellValue = None
    percent_complete: CellValue = None
    missing_time: CellValue = None
    top_priority: CellValue = None
    start_date: CellValue = None
    end_date: CellValue = None
    last_weeks_deviation: CellValue = None
    monthly_budget: CellValue = None
    # 行メタデータ
    origin_sheet: str | None = None
    row_id: Any = None
    extra: dict[str, CellValue] = field(default_factory=dict)

    _META_FIELDS: ClassVar[frozenset[str]] = frozenset({"origin_sheet", "row_id", "extra"})

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        """Names of the declared data fields (metadata excluded), in declaration order."""
        return tuple(f.name for f in fields(cls) if f.name not in cls._META_FIELDS)

    def get(self, name: str, default: CellValue = None) -> CellValue:
        if name in self.field_names():
            value = getattr(self, name)
        else:
            value = self.extra.get(name)
        return default if value is None else value


@dataclass(frozen=True)
class ProjectRecord:
    """A FieldRecord enriched with its classification and parsed numbers."""
    record: FieldRecord
    category: str
    segment: Segment
    budget_forecast: float
    actuals: TrackedValue
    overage: TrackedValue
    oop: float = 0.0
    approved_investment: float = 0.0
    missing_time: float = 0.0
    deviation: float = 0.0
    monthly_budget: float = 0.0
    percent_complete: float | None = None
    win_probability: float | None = None
    weighted_pipeline: float = 0.0
    rag_color: str = "unknown"

    @property
    def is_overserviced(self) -> bool:
        return isinstance(self.overage, Tracked) and self.overage.value > 0

    @property
    def is_underserviced(self) -> bool:
        return isinstance(self.overage, Tracked) and self.overage.value < 0

    def get(self, name: str, default: CellValue = None) -> Any:
        """Group-by lookup: derived attributes first, then the underlying record."""
        if name == "category":
            return self.category
        if name == "rag_color":
            return self.rag_color
        return self.record.get(name, default)

    def to_dict(self) -> dict[str, Any]:
        from ..sheets.parsers import display_value, round_percent, tracked_amount

        data: dict[str, Any] = {name: getattr(self.record, name) for name in FieldRecord.field_names()}
        data.update(
            category=self.category,
            segment=self.segment.value,
            origin_sheet=self.record.origin_sheet,
            budget_forecast=self.budget_forecast,
            actuals=tracked_amount(self.actuals),
            actuals_display=display_value(self.actuals),
            overage=tracked_amount(self.overage),
            overage_display=display_value(self.overage),
            oop=self.oop,
            approved_investment=self.approved_investment,
            missing_time=self.missing_time,
            last_weeks_deviation=self.deviation,
            monthly_budget=self.monthly_budget,
            percent_complete=round_percent(self.percent_complete),
            win_probability=round_percent(self.win_probability),
            weighted_pipeline=self.weighted_pipeline,
            rag_color=self.rag_color,
            is_overserviced=self.is_overserviced,
            is_underserviced=self.is_underserviced,
        )
        if self.record.extra:
            data["extra"] = dict(self.record.extra)
        return data


@dataclass(frozen=True)
class PersonRecord:
    """One team member row from a utilization report (percentages on a 0-100 scale)."""
    name: str
    role: str = "Unknown"
    ecosystem: str = ""
    primary_group: str = ""
    level: str = ""
    num_projects: int = 0
    utilization: float | None = None
    utilization_target: float | None = None
    billable: float | None = None
    admin_time: float | None = None
    nb_internal: float | None = None
    utilization_status: str = ""
    happiness: str = ""

    @property
    def non_billable(self) -> float:
        return max(0.0, (self.utilization or 0) - (self.billable or 0))

    def get(self, name: str, default: Any = None) -> Any:
        value = getattr(self, name, None)
        return default if value is None else value

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["non_billable"] = self.non_billable
        return data
