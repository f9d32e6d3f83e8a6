from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from ..models.aggregate import AggregateBucket
from ..models.config_models import DashboardConfig, DepartmentConfig, RuleSet
from ..models.records import FieldRecord, PersonRecord, Segment
from ..sheets.normalizer import build_column_map, cell_value, normalize_source, row_to_titles
from ..sheets.parsers import finite, parse_currency, parse_percent, round_half_up
from .engine import AggregationEngine, accumulate_person, field_dimension
from .projection import burn_rate, parse_revenue_pivot, project_buckets, revenue_summary

"""Departmental (Delivery & Experiences) health view.

Sources:

- revenue pivot sheet (required): multi-section monthly revenue mix
- E&D utilization report (required): "ROLE - Name" rows
- integrated project report (required): every row is one integrated project
- penetration sheets this / last month (optional): None when the fetch failed
"""

__all__ = [
    "INTEGRATED_CATEGORY",
    "INTEGRATED_COLUMNS",
    "split_role",
    "parse_team",
    "parse_integrated",
    "parse_penetration",
    "calculate_penetration",
    "build_dept_health",
]

logger = logging.getLogger(__name__)

INTEGRATED_CATEGORY = "Integrated Projects"

# integrated report 列タイトル -> FieldRecord フィールド
INTEGRATED_COLUMNS: dict[str, str] = {
    "RID": "rid",
    "Client": "client_name",
    "Assignment Title": "project_name",
    "Assignment": "project_name",
    "Owning Ecosystem": "ecosystem",
    "Ecosystem": "ecosystem",
    "RAG": "rag",
    "Budget Forecast": "budget_forecast",
    "Actuals": "actuals",
    "Overage": "overage",
    "Work Progress": "percent_complete",
    "% Complete": "percent_complete",
    "Top Priority": "top_priority",
    "Last Weeks Deviation": "last_weeks_deviation",
    "Last Week's Deviation": "last_weeks_deviation",
    "Resource Status": "resource_status",
    "PM/PROD Assigned": "project_manager",
    "PM/Prod Assigned": "project_manager",
    "Monthly Budget": "monthly_budget",
}

_NAME_COLUMN = re.compile(r"team|member|name", re.IGNORECASE)
_PERCENT_CELL = re.compile(r"^\d+(\.\d+)?%?$")
_WHOLE_PERCENT_CELL = re.compile(r"^\d+%?$")


def split_role(value: str) -> tuple[str, str]:
    """``"ROLE - Name"`` -> ``(role, name)``; role "Unknown" without a separator."""
    if " - " not in value:
        return "Unknown", value.strip()
    role, _, name = value.partition(" - ")
    return role.strip(), name.strip()


def _first(item: Mapping[str, Any], *titles: str) -> Any:
    for title in titles:
        value = item.get(title)
        if value not in (None, ""):
            return value
    return None


def parse_team(raw: Mapping[str, Any]) -> list[PersonRecord]:
    """E&D utilization rows -> PersonRecord (blank names skipped)."""
    column_map = build_column_map(raw.get("columns"))
    people: list[PersonRecord] = []
    for row in raw.get("rows") or []:
        item = row_to_titles(row, column_map)
        if not item:
            continue
        name_column = next((t for t in item if _NAME_COLUMN.search(t)), next(iter(item)))
        text = str(item.get(name_column) or "").strip()
        if not text:
            continue
        role, name = split_role(text)
        people.append(
            PersonRecord(
                name=name,
                role=role,
                utilization=parse_percent(_first(item, "Utilization %", "Utilization")),
                billable=parse_percent(_first(item, "Billable %", "Billable")),
                admin_time=parse_percent(_first(item, "Admin Time %", "Admin Time", "Admin")),
            )
        )
    return people


def _integrated_rules(rules: RuleSet) -> RuleSet:
    return rules.with_fallback(INTEGRATED_CATEGORY, Segment.LIVE)


def parse_integrated(raw: Mapping[str, Any]) -> list[FieldRecord]:
    return normalize_source(raw, INTEGRATED_COLUMNS)


def _integrated_fields(bucket: AggregateBucket) -> dict[str, Any]:
    return {
        "count": bucket.projects,
        "budget": finite(bucket.budget),
        "actuals": finite(bucket.actuals),
        "overage": finite(bucket.overage),
        "deviation": finite(bucket.deviation),
        "burn_rate": burn_rate(bucket.actuals, bucket.budget),
    }


def _integrated_summary(records: list[FieldRecord], rules: RuleSet) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    engine = AggregationEngine(
        _integrated_rules(rules),
        {Segment.LIVE: [field_dimension("by_ecosystem", "ecosystem", default="Other")]},
    )
    result = engine.run(records)
    total = result.totals[Segment.LIVE]
    summary = {
        "total_projects": total.projects,
        "total_budget": finite(total.budget),
        "total_actuals": finite(total.actuals),
        "tracked_projects": total.tracked_projects,
        "burn_rate_pct": burn_rate(total.actuals, total.budget),
        # 超過分のみ (マイナスは含めない)
        "total_overage": finite(total.overserviced_amount),
        "total_deviation": finite(total.deviation),
        "overserviced_count": total.overserviced_count,
        "underserviced_count": total.underserviced_count,
        "rag": dict(total.rag),
        "by_ecosystem": project_buckets(result.dimension(Segment.LIVE, "by_ecosystem"), "budget", _integrated_fields),
    }
    return summary, [p.to_dict() for p in result.projects[Segment.LIVE]]


def _team_fields(bucket: AggregateBucket) -> dict[str, Any]:
    return {
        "count": bucket.projects,
        "avg_utilization": round_half_up(bucket.mean("utilization")),
        "avg_billable": round_half_up(bucket.mean("billable")),
        "avg_admin": round_half_up(bucket.mean("admin_time")),
    }


def _role_rows(buckets: dict[Any, AggregateBucket]) -> list[dict[str, Any]]:
    rows = []
    for entry in project_buckets(buckets, "count", _team_fields):
        role = entry.pop("name")
        rows.append({"role": role, **entry})
    return rows


def _team_summary(people: list[PersonRecord]) -> dict[str, Any]:
    engine = AggregationEngine(
        RuleSet(categories=()).with_fallback("E&D Team", Segment.INTERNAL),
        {Segment.INTERNAL: [field_dimension("by_role", "role", default="Unknown")]},
        enrich=lambda person, category, segment, rules: person,
        accumulate=accumulate_person,
    )
    result = engine.run(people)
    total = result.totals[Segment.INTERNAL]
    return {
        "team_size": total.projects,
        **{k: v for k, v in _team_fields(total).items() if k != "count"},
        "high_utilization": sum(1 for p in people if (p.utilization or 0) >= 80),
        "low_billable": sum(1 for p in people if (p.billable or 0) < 30),
        "by_role": _role_rows(result.dimension(Segment.INTERNAL, "by_role")),
    }


def parse_penetration(raw: Mapping[str, Any] | None, fallback: bool = False) -> dict[str, float | None]:
    """Experiences / Delivery penetration percentages from a small sheet.

    A row labelled "experiences" or "delivery" provides the first
    percentage-shaped cell of that row. With ``fallback`` enabled and no label
    matched, the first two whole-number percentages are taken positionally as
    Experiences then Delivery.
    """
    result: dict[str, float | None] = {"experiences": None, "delivery": None}
    if not raw or not raw.get("rows"):
        return result
    column_map = build_column_map(raw.get("columns"))
    positional: list[float] = []
    for row in raw["rows"]:
        texts = [
            str(cell_value(cell)).strip()
            for cell in row.get("cells") or []
            if (cell.get("virtualColumnId") or cell.get("columnId")) in column_map and cell_value(cell) is not None
        ]
        pct_text = next((t for t in texts if _PERCENT_CELL.match(t)), None)
        pct = float(pct_text.rstrip("%")) if pct_text is not None else None
        if pct is not None:
            if any("experiences" in t.lower() for t in texts):
                result["experiences"] = pct
            if any("delivery" in t.lower() for t in texts):
                result["delivery"] = pct
        positional.extend(float(t.rstrip("%")) for t in texts if _WHOLE_PERCENT_CELL.match(t) and float(t.rstrip("%")) <= 100)

    if fallback and result["experiences"] is None and result["delivery"] is None and positional:
        logger.debug("penetration label match failed; positional fallback cells=%d", len(positional))
        result["experiences"] = positional[0]
        if len(positional) >= 2:
            result["delivery"] = positional[1]
    return result


def calculate_penetration(raw: Mapping[str, Any] | None, department: DepartmentConfig) -> dict[str, float] | None:
    """Discipline revenue share from a penetration sheet (None when unusable).

    Needs a ``Discipline`` column and an incurred currency column; forecast
    currency is optional. Shares are whole percents of incurred + forecast.
    """
    if not raw or not raw.get("rows"):
        return None
    discipline_col = incurred_col = forecast_col = None
    for column in raw.get("columns") or []:
        title = str(column.get("title") or "").lower()
        if title == "discipline":
            discipline_col = column.get("id")
        if "incurred" in title and "currency" in title:
            incurred_col = column.get("id")
        if "forecast" in title and "currency" in title:
            forecast_col = column.get("id")
    if discipline_col is None or incurred_col is None:
        return None

    total = experiences = delivery = 0.0
    for row in raw["rows"]:
        discipline = ""
        amount = 0.0
        for cell in row.get("cells") or []:
            column_id = cell.get("columnId")
            raw_value = cell.get("value") if cell.get("value") is not None else cell.get("displayValue")
            if column_id == discipline_col:
                discipline = str(cell.get("value") or "").strip().upper()
            elif column_id == incurred_col:
                amount += parse_currency(raw_value)
            elif forecast_col is not None and column_id == forecast_col:
                amount += parse_currency(raw_value)
        total += amount
        if discipline in department.experiences_disciplines:
            experiences += amount
        if discipline in department.delivery_disciplines:
            delivery += amount

    return {
        "experiences_pct": round_half_up(finite(experiences / total * 100)) if total > 0 else 0.0,
        "delivery_pct": round_half_up(finite(delivery / total * 100)) if total > 0 else 0.0,
        "exp_revenue": finite(experiences),
        "del_revenue": finite(delivery),
    }


def build_dept_health(
    sources: Mapping[str, Mapping[str, Any] | None],
    config: DashboardConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the departmental document from already fetched sources.

    ``sources`` keys: dept_revenue, dept_utilization, dept_integrated,
    dept_penetration_this, dept_penetration_last (the last two may be None).
    """
    department = config.department
    sections = parse_revenue_pivot(sources["dept_revenue"] or {})
    people = parse_team(sources["dept_utilization"] or {})
    integrated_summary, integrated_projects = _integrated_summary(
        parse_integrated(sources["dept_integrated"] or {}), config.rules
    )
    pen_this = sources.get("dept_penetration_this")
    pen_last = sources.get("dept_penetration_last")
    this_month = parse_penetration(pen_this, department.penetration_fallback)
    last_month = parse_penetration(pen_last, department.penetration_fallback)
    return {
        "generated_at": (now or datetime.now(UTC)).isoformat(),
        "revenue_sections": sections,
        "revenue_summary": revenue_summary(sections, department.revenue_section),
        "utilization": [p.to_dict() for p in people],
        "utilization_summary": _team_summary(people),
        "integrated_projects": integrated_projects,
        "integrated_summary": integrated_summary,
        "penetration": {
            "this_month": this_month,
            "last_month": last_month,
            "change": {
                key: round_half_up(this_month[key] - last_month[key], 1)
                if this_month[key] is not None and last_month[key] is not None
                else None
                for key in ("experiences", "delivery")
            },
        },
        "penetration_sources": {
            "this_month": pen_this.get("name") if pen_this else None,
            "last_month": pen_last.get("name") if pen_last else None,
        },
    }
