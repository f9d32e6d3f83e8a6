from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from ..models.aggregate import AggregateBucket
from ..models.config_models import RuleSet
from ..models.records import PersonRecord, Segment
from ..sheets.normalizer import build_column_map, row_to_titles
from ..sheets.parsers import parse_currency, parse_percent, round_half_up
from .engine import AggregationEngine, accumulate_person, field_dimension
from .projection import project_buckets

"""Agency utilization view: one PersonRecord per team member row."""

__all__ = [
    "TEAM_CATEGORY",
    "STATUS_LABELS",
    "HAPPINESS_LABELS",
    "parse_people",
    "build_utilization",
]

TEAM_CATEGORY = "Team Members"

# 出力キー -> シートの値
STATUS_LABELS = {"over": "Over", "utilized": "Utilized", "capacity": "Capacity"}
HAPPINESS_LABELS = {"extreme": "Extreme", "severe": "Severe", "no_pain": "No Pain"}

_PERCENT_ATTRS = frozenset({"utilization", "utilization_target", "billable", "admin_time", "nb_internal"})


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def parse_people(raw: Mapping[str, Any], people_columns: Mapping[str, str]) -> list[PersonRecord]:
    """Report rows -> PersonRecord using the title -> attribute mapping.

    Rows without a name are skipped. Ecosystem is upper-cased; project counts
    that do not parse become 0.
    """
    column_map = build_column_map(raw.get("columns"))
    people: list[PersonRecord] = []
    for row in raw.get("rows") or []:
        values: dict[str, Any] = {}
        for title, value in row_to_titles(row, column_map).items():
            attr = people_columns.get(title)
            if attr is None or values.get(attr) not in (None, ""):
                continue
            values[attr] = value
        name = _text(values.pop("name", None))
        if not name:
            continue
        kwargs: dict[str, Any] = {}
        for attr, value in values.items():
            if attr in _PERCENT_ATTRS:
                kwargs[attr] = parse_percent(value)
            elif attr == "num_projects":
                kwargs[attr] = int(parse_currency(value))
            elif attr == "ecosystem":
                kwargs[attr] = _text(value).upper()
            else:
                kwargs[attr] = _text(value)
        people.append(PersonRecord(name=name, **kwargs))
    return people


def _ecosystem_fields(bucket: AggregateBucket) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "count": bucket.projects,
        "avg_utilization": round_half_up(bucket.mean("utilization")),
        "avg_target": round_half_up(bucket.mean("utilization_target")),
        "avg_admin": round_half_up(bucket.mean("admin_time")),
        "avg_projects": round_half_up(bucket.mean("num_projects"), 1),
    }
    for key, value in STATUS_LABELS.items():
        fields[key] = bucket.count_of("status", value)
    fields["extreme"] = bucket.count_of("happiness", HAPPINESS_LABELS["extreme"])
    fields["severe"] = bucket.count_of("happiness", HAPPINESS_LABELS["severe"])
    return fields


def build_utilization(
    people: Iterable[PersonRecord],
    now: datetime | None = None,
) -> dict[str, Any]:
    engine = AggregationEngine(
        RuleSet(categories=()).with_fallback(TEAM_CATEGORY, Segment.INTERNAL),
        {Segment.INTERNAL: [field_dimension("by_ecosystem", "ecosystem", default="OTHER")]},
        enrich=lambda person, category, segment, rules: person,
        accumulate=accumulate_person,
    )
    result = engine.run(people)
    total = result.totals[Segment.INTERNAL]
    members = sorted(result.projects[Segment.INTERNAL], key=lambda p: p.utilization or 0)
    overall = _ecosystem_fields(total)
    return {
        "generated_at": (now or datetime.now(UTC)).isoformat(),
        "team_size": total.projects,
        "avg_utilization": overall["avg_utilization"],
        "avg_target": overall["avg_target"],
        "avg_admin": overall["avg_admin"],
        "avg_projects": overall["avg_projects"],
        "status": {key: total.count_of("status", value) for key, value in STATUS_LABELS.items()},
        "happiness": {key: total.count_of("happiness", value) for key, value in HAPPINESS_LABELS.items()},
        "by_ecosystem": project_buckets(result.dimension(Segment.INTERNAL, "by_ecosystem"), "count", _ecosystem_fields),
        "people": [p.to_dict() for p in members],
    }
