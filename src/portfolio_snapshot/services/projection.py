from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from ..models.aggregate import AggregateBucket
from ..sheets.normalizer import build_column_map, row_to_titles
from ..sheets.parsers import finite, parse_currency, round_half_up

"""Summary projection: AggregateBucket maps -> API shaped structures.

Derived ratios (burn rate, month-over-month change, shares) are computed here,
never during accumulation. Every number leaving this module passes through
``finite`` so NaN / inf never reach the JSON output.
"""

__all__ = [
    "burn_rate",
    "ratio_pct",
    "mom_change",
    "bucket_fields",
    "project_buckets",
    "build_funnel",
    "parse_revenue_pivot",
    "revenue_summary",
]

_MONTH_LABEL = re.compile(r"^\d{4}-\d{2}$")
_CONTAINS_MONTH = re.compile(r"\d{4}-\d{2}")
_SUB_HEADER = re.compile(r"^(delivery|experiences|total|adjusted)", re.IGNORECASE)
_CURRENCY_LIKE = re.compile(r"^[\s$(),.\-\d]+$")


def ratio_pct(numerator: float, denominator: float, digits: int = 1) -> float | None:
    """``numerator / denominator`` as a percent, None when the denominator is 0."""
    if not denominator:
        return None
    return round_half_up(finite(numerator / denominator * 100), digits)


def burn_rate(actuals: float, budget: float) -> float:
    """Actuals as a percentage of budget, one decimal (0 when budget is 0)."""
    return ratio_pct(actuals, budget) or 0.0


def mom_change(points: Iterable[tuple[str, float]]) -> float | None:
    """Percent change between the last two chronological points.

    ``points`` are ``(label, value)`` pairs whose labels sort chronologically
    (``YYYY-MM`` / ``YYYY-MM-DD``). None when fewer than two points exist or
    the previous value is not positive.
    """
    ordered = sorted(points, key=lambda p: p[0])
    if len(ordered) < 2:
        return None
    previous = ordered[-2][1]
    current = ordered[-1][1]
    if previous <= 0:
        return None
    return round_half_up(finite((current - previous) / previous * 100), 1)


def bucket_fields(bucket: AggregateBucket) -> dict[str, Any]:
    """Default projection of one bucket (financial view)."""
    return {
        "budget": finite(bucket.budget),
        "actuals": finite(bucket.actuals),
        "burn_rate": burn_rate(bucket.actuals, bucket.budget),
        "overage": finite(bucket.overage),
        "oop": finite(bucket.oop),
        "investment": finite(bucket.investment),
        "deviation": finite(bucket.deviation),
        "weighted": finite(bucket.weighted),
        "projects": bucket.projects,
        "tracked_projects": bucket.tracked_projects,
        "overserviced_count": bucket.overserviced_count,
        "overserviced_amount": finite(bucket.overserviced_amount),
        "underserviced_count": bucket.underserviced_count,
        "underserviced_amount": finite(bucket.underserviced_amount),
        "rag": dict(bucket.rag),
    }


def project_buckets(
    buckets: Mapping[Any, AggregateBucket],
    sort_key: str = "budget",
    fields: Callable[[AggregateBucket], dict[str, Any]] = bucket_fields,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Sorted ``[{name, ...}]`` list, descending by ``sort_key`` then by name."""
    items = [{"name": name, **fields(bucket)} for name, bucket in buckets.items()]
    items.sort(key=lambda item: str(item["name"]))
    items.sort(key=lambda item: item.get(sort_key) or 0, reverse=True)
    return items[:limit] if limit is not None else items


def build_funnel(stage_buckets: Mapping[Any, AggregateBucket], stage_order: Sequence[str]) -> list[dict[str, Any]]:
    """One entry per configured stage, in configured order, zero-filled."""
    by_lower = {str(name).strip().lower(): bucket for name, bucket in stage_buckets.items()}
    funnel = []
    for stage in stage_order:
        bucket = by_lower.get(stage.strip().lower())
        funnel.append(
            {
                "stage": stage,
                "count": bucket.projects if bucket else 0,
                "forecast": finite(bucket.budget) if bucket else 0.0,
                "weighted": finite(bucket.weighted) if bucket else 0.0,
            }
        )
    return funnel


def _echoes_header(row: Mapping[str, Any]) -> bool:
    return any(value is not None and str(value).strip() == title for title, value in row.items())


def _is_section_label(text: str) -> bool:
    return (
        len(text) > 3
        and text == text.upper()
        and any(ch.isalpha() for ch in text)
        and not _CONTAINS_MONTH.search(text)
        and not _CURRENCY_LIKE.match(text)
    )


def parse_revenue_pivot(raw: Mapping[str, Any]) -> dict[str, list[dict[str, Any]]]:
    """Split a multi-section revenue pivot sheet into monthly series.

    Returns ``{section_label: [{month, delivery, experiences, total, adjusted}]}``
    with rows in sheet order. Monthly rows seen before any section label are
    ignored.
    """
    column_map = build_column_map(raw.get("columns"))
    sections: dict[str, list[dict[str, Any]]] = {}
    current: str | None = None
    for raw_row in raw.get("rows") or []:
        row = row_to_titles(raw_row, column_map)
        values = list(row.values())
        first = str(values[0]).strip() if values and values[0] is not None else ""
        if not first:
            continue
        if _echoes_header(row):
            continue
        if _is_section_label(first):
            current = first
            sections.setdefault(current, [])
            continue
        if _SUB_HEADER.match(first):
            continue
        if current is not None and _MONTH_LABEL.match(first):
            padded = values + [None] * 5
            sections[current].append(
                {
                    "month": first,
                    "delivery": parse_currency(padded[1]),
                    "experiences": parse_currency(padded[2]),
                    "total": parse_currency(padded[3]),
                    "adjusted": parse_currency(padded[4]),
                }
            )
    return sections


def revenue_summary(sections: Mapping[str, list[dict[str, Any]]], section: str = "TOTAL EFFORT") -> dict[str, Any]:
    series = sorted(sections.get(section) or [], key=lambda r: r["month"])
    latest = series[-1] if series else None
    return {
        "section": section,
        "latest_month": latest["month"] if latest else None,
        "latest_total": finite(latest["total"]) if latest else 0.0,
        "latest_delivery": finite(latest["delivery"]) if latest else 0.0,
        "latest_experiences": finite(latest["experiences"]) if latest else 0.0,
        "mom_change": mom_change((r["month"], r["total"]) for r in series),
        "delivery_share": ratio_pct(latest["delivery"], latest["total"]) if latest and latest["total"] > 0 else None,
    }
