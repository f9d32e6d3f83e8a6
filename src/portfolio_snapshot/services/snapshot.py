from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from ..models.aggregate import AggregateBucket, AggregationResult
from ..models.config_models import DashboardConfig, RuleSet
from ..models.records import FieldRecord, Segment
from ..sheets.normalizer import normalize_source
from ..sheets.parsers import finite, round_half_up
from .engine import AggregationEngine, Dimension, cross_dimension, field_dimension, token_dimension
from .projection import build_funnel, burn_rate, project_buckets, ratio_pct

"""Main portfolio snapshot (live / new business / internal).

build_snapshot wires the generic engine with the snapshot dimensions and
shapes the result into the dashboard JSON document.
"""

__all__ = [
    "snapshot_dimensions",
    "aggregate_snapshot",
    "build_snapshot",
    "snapshot_from_source",
]

# new business の完全性チェック対象
COMPLETENESS_FIELDS = ("client_name", "budget_forecast", "win_probability", "ecosystem", "recommendation", "assignment")


def snapshot_dimensions() -> dict[Segment, list[Dimension]]:
    live_ecosystem = field_dimension("by_ecosystem", "ecosystem")
    live_request = token_dimension("by_request_type", "request_type")
    newbiz_ecosystem = field_dimension("by_ecosystem", "ecosystem")
    newbiz_stage = field_dimension("by_stage", "workflow_status")
    return {
        Segment.LIVE: [
            field_dimension("by_client", "client_name"),
            field_dimension("by_pm", "project_manager"),
            live_ecosystem,
            field_dimension("by_category", "category"),
            live_request,
            cross_dimension("ecosystem_request_type", live_ecosystem, live_request),
            field_dimension("work_progress", "work_progress"),
            field_dimension("resource_status", "resource_status"),
        ],
        Segment.NEWBIZ: [
            newbiz_stage,
            newbiz_ecosystem,
            field_dimension("by_recommendation", "recommendation"),
            field_dimension("by_assignment", "assignment"),
            cross_dimension("ecosystem_stage", newbiz_ecosystem, newbiz_stage),
        ],
        Segment.INTERNAL: [
            field_dimension("by_category", "category"),
        ],
    }


def aggregate_snapshot(records: Iterable[FieldRecord], rules: RuleSet) -> AggregationResult:
    return AggregationEngine(rules, snapshot_dimensions()).run(records)


def _count_fields(bucket: AggregateBucket) -> dict[str, Any]:
    return {"count": bucket.projects}


def _pipeline_fields(bucket: AggregateBucket) -> dict[str, Any]:
    return {
        "count": bucket.projects,
        "forecast": finite(bucket.budget),
        "weighted": finite(bucket.weighted),
    }


def _nested(buckets: dict[Any, AggregateBucket]) -> dict[str, dict[str, AggregateBucket]]:
    nested: dict[str, dict[str, AggregateBucket]] = {}
    for (outer, inner), bucket in buckets.items():
        nested.setdefault(outer, {})[inner] = bucket
    return nested


def _live_section(result: AggregationResult) -> dict[str, Any]:
    total = result.totals[Segment.LIVE]
    dim = lambda name: result.dimension(Segment.LIVE, name)  # noqa: E731
    financials = {
        "total_budget": finite(total.budget),
        "total_actuals": finite(total.actuals),
        "total_remaining": finite(total.budget - total.actuals),
        "tracked_projects": total.tracked_projects,
        "burn_rate_pct": burn_rate(total.actuals, total.budget),
        "total_overage": finite(total.overage),
        "total_oop": finite(total.oop),
        "total_investment": finite(total.investment),
        "net_overservice": finite(total.overage - total.investment),
        "overserviced_count": total.overserviced_count,
        "overserviced_amount": finite(total.overserviced_amount),
        "underserviced_count": total.underserviced_count,
        "underserviced_amount": finite(total.underserviced_amount),
        "missing_time_total": finite(total.missing_time),
        "last_weeks_deviation": finite(total.deviation),
    }
    ecosystem_request_type = [
        {
            "ecosystem": ecosystem,
            "total": sum(b.projects for b in inner.values()),
            "request_types": project_buckets(inner, "count", _count_fields),
        }
        for ecosystem, inner in _nested(dim("ecosystem_request_type")).items()
    ]
    ecosystem_request_type.sort(key=lambda e: (-e["total"], str(e["ecosystem"])))
    return {
        "count": result.count(Segment.LIVE),
        "financials": financials,
        "status": dict(total.rag),
        "by_client": project_buckets(dim("by_client"), "budget"),
        "by_pm": project_buckets(dim("by_pm"), "projects"),
        "by_ecosystem": project_buckets(dim("by_ecosystem"), "budget"),
        "by_category": project_buckets(dim("by_category"), "budget"),
        "by_request_type": project_buckets(dim("by_request_type"), "count", _count_fields),
        "ecosystem_request_type": ecosystem_request_type,
        "work_progress": project_buckets(dim("work_progress"), "count", _count_fields),
        "resource_status": project_buckets(dim("resource_status"), "count", _count_fields),
        "projects": [p.to_dict() for p in result.projects[Segment.LIVE]],
    }


def _data_completeness(projects: Sequence[Any]) -> dict[str, Any]:
    missing = dict.fromkeys(COMPLETENESS_FIELDS, 0)
    complete = 0
    for project in projects:
        gaps = [name for name in COMPLETENESS_FIELDS if project.get(name) in (None, "")]
        for name in gaps:
            missing[name] += 1
        if not gaps:
            complete += 1
    total = len(projects)
    return {
        "total": total,
        "complete": complete,
        "pct_complete": ratio_pct(complete, total, 0) if total else 0.0,
        "missing": missing,
    }


def _newbiz_section(result: AggregationResult, stage_order: Sequence[str]) -> dict[str, Any]:
    total = result.totals[Segment.NEWBIZ]
    dim = lambda name: result.dimension(Segment.NEWBIZ, name)  # noqa: E731
    pipeline_by_ecosystem = []
    for ecosystem, stages in _nested(dim("ecosystem_stage")).items():
        pipeline_by_ecosystem.append(
            {
                "ecosystem": ecosystem,
                "total_forecast": finite(sum(b.budget for b in stages.values())),
                "total_weighted": finite(sum(b.weighted for b in stages.values())),
                "stages": build_funnel(stages, stage_order),
            }
        )
    pipeline_by_ecosystem.sort(key=lambda e: (-e["total_weighted"], str(e["ecosystem"])))
    projects = result.projects[Segment.NEWBIZ]
    return {
        "count": result.count(Segment.NEWBIZ),
        "total_forecast": finite(total.budget),
        "weighted_pipeline": finite(round_half_up(total.weighted, 2)),
        "pipeline_funnel": build_funnel(dim("by_stage"), stage_order),
        "by_ecosystem": project_buckets(dim("by_ecosystem"), "weighted", _pipeline_fields),
        "pipeline_by_ecosystem": pipeline_by_ecosystem,
        "by_recommendation": project_buckets(dim("by_recommendation"), "count", _pipeline_fields),
        "by_assignment": project_buckets(dim("by_assignment"), "count", _pipeline_fields),
        "data_completeness": _data_completeness(projects),
        "projects": [p.to_dict() for p in projects],
    }


def _internal_section(result: AggregationResult) -> dict[str, Any]:
    total = result.totals[Segment.INTERNAL]
    return {
        "count": result.count(Segment.INTERNAL),
        "total_investment": finite(total.investment),
        "total_budget": finite(total.budget),
        "total_actuals": finite(total.actuals),
        "by_category": project_buckets(result.dimension(Segment.INTERNAL, "by_category"), "projects"),
        "projects": [p.to_dict() for p in result.projects[Segment.INTERNAL]],
    }


def build_snapshot(
    records: Iterable[FieldRecord],
    config: DashboardConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Aggregate normalized rows into the snapshot document."""
    result = aggregate_snapshot(records, config.rules)
    generated = now or datetime.now(UTC)
    return {
        "title": config.title,
        "generated_at": generated.isoformat(),
        "total_projects": sum(result.count(s) for s in (Segment.LIVE, Segment.NEWBIZ, Segment.INTERNAL)),
        "total_rows": result.total_rows,
        "uncategorized_count": result.uncategorized_count,
        "categories": dict(sorted(result.categories.items(), key=lambda kv: (-kv[1], kv[0]))),
        "live": _live_section(result),
        "newbiz": _newbiz_section(result, config.pipeline_stages),
        "internal": _internal_section(result),
    }


def snapshot_from_source(raw: dict[str, Any], config: DashboardConfig, now: datetime | None = None) -> dict[str, Any]:
    return build_snapshot(normalize_source(raw, config.column_mapping), config, now)
