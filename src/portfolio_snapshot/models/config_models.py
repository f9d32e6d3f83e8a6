from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .records import Segment

"""Config dataclasses for the portfolio snapshot pipeline.

Rule tables and column mappings are immutable configuration injected into the
engine, so tests can substitute alternate rule sets. The YAML loader lives in
portfolio_snapshot.config.loader; these classes only model the typed result.
"""

__all__ = [
    "UNCATEGORIZED",
    "SourceConfig",
    "CategoryRule",
    "RuleSet",
    "DepartmentConfig",
    "HistoryConfig",
    "DashboardConfig",
]

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class SourceConfig:
    """One spreadsheet source (sheet or cross-sheet report)."""
    name: str  # 論理名 (snapshot, dept_revenue, ...)
    source_id: str
    kind: str = "sheet"  # sheet | report
    optional: bool = False  # 取得失敗時 None として続行
    page_size: int = 10000


@dataclass(frozen=True)
class CategoryRule:
    """Single entry of the ordered classification table.

    Matches when the workflow status equals one of ``statuses`` or the origin
    sheet name contains one of ``sheets``. Both are stored lower-cased.
    """
    name: str
    segment: Segment
    statuses: frozenset[str] = frozenset()
    sheets: tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        name: str,
        segment: Segment | str,
        statuses: Iterable[str] = (),
        sheets: Iterable[str] = (),
    ) -> CategoryRule:
        return cls(
            name=name,
            segment=segment if isinstance(segment, Segment) else Segment(segment),
            statuses=frozenset(s.strip().lower() for s in statuses),
            sheets=tuple(s.strip().lower() for s in sheets if s.strip()),
        )


@dataclass(frozen=True)
class RuleSet:
    """Ordered category rules plus the RAG keyword table.

    ``fallback_category`` (with ``fallback_segment``) replaces "Uncategorized"
    for variants where every row belongs to one bucket.
    """
    categories: tuple[CategoryRule, ...]
    rag_statuses: Mapping[str, frozenset[str]] = field(default_factory=dict)
    fallback_category: str | None = None
    fallback_segment: Segment = Segment.UNKNOWN

    @classmethod
    def build(
        cls,
        categories: Iterable[CategoryRule],
        rag_statuses: Mapping[str, Iterable[str]] | None = None,
    ) -> RuleSet:
        rag = {
            color: frozenset(k.strip().lower() for k in keywords)
            for color, keywords in (rag_statuses or {}).items()
        }
        return cls(categories=tuple(categories), rag_statuses=rag)

    def segment_for(self, category: str) -> Segment:
        for rule in self.categories:
            if rule.name == category:
                return rule.segment
        if self.fallback_category is not None and category == self.fallback_category:
            return self.fallback_segment
        return Segment.UNKNOWN

    def with_fallback(self, category: str, segment: Segment, *, keep_rules: bool = False) -> RuleSet:
        return replace(
            self,
            categories=self.categories if keep_rules else (),
            fallback_category=category,
            fallback_segment=segment,
        )


@dataclass(frozen=True)
class DepartmentConfig:
    """Settings for the departmental (Delivery & Experiences) health view."""
    experiences_disciplines: frozenset[str]
    delivery_disciplines: frozenset[str]
    revenue_section: str = "TOTAL EFFORT"
    penetration_fallback: bool = False  # 位置依存の推定 (既定 OFF)


@dataclass(frozen=True)
class HistoryConfig:
    backend: str = "file"  # file | postgres
    directory: str = "./history"
    dsn: str | None = None
    caps: Mapping[str, int] = field(default_factory=dict)
    baselines: Mapping[str, list[dict[str, Any]]] = field(default_factory=dict)


@dataclass(frozen=True)
class DashboardConfig:
    """Root configuration object."""
    title: str
    sources: Mapping[str, SourceConfig]
    column_mapping: Mapping[str, str]  # column title -> field name
    people_columns: Mapping[str, str]  # column title -> PersonRecord attribute
    rules: RuleSet
    pipeline_stages: tuple[str, ...]
    department: DepartmentConfig
    history: HistoryConfig
    api_base_url: str = "https://api.smartsheet.com/2.0"
    request_timeout: float = 30.0
