from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..models.aggregate import AggregateBucket, AggregationResult
from ..models.config_models import RuleSet
from ..models.records import FieldRecord, PersonRecord, ProjectRecord, Segment, Tracked
from ..sheets.parsers import parse_currency, parse_percent, parse_tracked
from .classification import classify_record, classify_status, get_segment

"""Generic classify + fold engine.

One pass over the normalized rows:

1. category / segment via the injected RuleSet
2. segment ``unknown`` -> counted in ``uncategorized_count`` and skipped
3. otherwise enrich -> append to the segment project list -> accumulate into
   the segment total and every grouping dimension configured for the segment

The three dashboard variants only differ in the dimensions and the
enrich / accumulate callables they pass in.
"""

__all__ = [
    "DEFAULT_LABEL",
    "Dimension",
    "AggregationEngine",
    "label",
    "tokens",
    "field_dimension",
    "token_dimension",
    "cross_dimension",
    "enrich_project",
    "accumulate_project",
    "accumulate_person",
]

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Unassigned"

Enricher = Callable[[Any, str, Segment, RuleSet], Any]
Accumulator = Callable[[AggregateBucket, Any], None]
Classifier = Callable[[Any, RuleSet], str]


def label(value: Any, default: str = DEFAULT_LABEL) -> str:
    """Group label for a single-valued dimension (blank -> default)."""
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def tokens(value: Any, default: str = DEFAULT_LABEL) -> list[str]:
    """Split a comma separated cell into trimmed, de-duplicated tokens."""
    if value is None:
        return [default]
    result: list[str] = []
    for part in str(value).split(","):
        part = part.strip()
        if part and part not in result:
            result.append(part)
    return result or [default]


@dataclass(frozen=True)
class Dimension:
    """Grouping dimension.

    ``key`` returns the group key for one item. With ``multi`` it returns a
    sequence of keys and the item is accumulated once per key.
    """
    name: str
    key: Callable[[Any], Any]
    multi: bool = False

    def keys_for(self, item: Any) -> Sequence[Any]:
        if self.multi:
            return list(self.key(item))
        return [self.key(item)]


def field_dimension(name: str, field_name: str, default: str = DEFAULT_LABEL) -> Dimension:
    return Dimension(name, lambda item: label(item.get(field_name), default))


def token_dimension(name: str, field_name: str, default: str = DEFAULT_LABEL) -> Dimension:
    return Dimension(name, lambda item: tokens(item.get(field_name), default), multi=True)


def cross_dimension(name: str, outer: Dimension, inner: Dimension) -> Dimension:
    """Two-level dimension keyed by ``(outer, inner)`` tuples."""

    def _keys(item: Any) -> list[tuple[Any, Any]]:
        return [(o, i) for o in outer.keys_for(item) for i in inner.keys_for(item)]

    return Dimension(name, _keys, multi=True)


def enrich_project(record: FieldRecord, category: str, segment: Segment, rules: RuleSet) -> ProjectRecord:
    """Parse the numeric fields of a FieldRecord into a ProjectRecord."""
    budget = parse_currency(record.budget_forecast)
    win = parse_percent(record.win_probability)
    weighted = 0.0
    if segment is Segment.NEWBIZ and win is not None:
        weighted = budget * win / 100
    return ProjectRecord(
        record=record,
        category=category,
        segment=segment,
        budget_forecast=budget,
        actuals=parse_tracked(record.actuals),
        overage=parse_tracked(record.overage),
        oop=parse_currency(record.oop),
        approved_investment=parse_currency(record.approved_investment),
        missing_time=parse_currency(record.missing_time),
        deviation=parse_currency(record.last_weeks_deviation),
        monthly_budget=parse_currency(record.monthly_budget),
        percent_complete=parse_percent(record.percent_complete),
        win_probability=win,
        weighted_pipeline=weighted,
        rag_color=classify_status(record.rag, rules),
    )


def accumulate_project(bucket: AggregateBucket, project: ProjectRecord) -> None:
    bucket.projects += 1
    bucket.budget += project.budget_forecast
    bucket.oop += project.oop
    bucket.investment += project.approved_investment
    bucket.missing_time += project.missing_time
    bucket.deviation += project.deviation
    bucket.weighted += project.weighted_pipeline
    if isinstance(project.actuals, Tracked):
        bucket.actuals += project.actuals.value
        bucket.tracked_projects += 1
    if isinstance(project.overage, Tracked):
        overage = project.overage.value
        bucket.overage += overage
        if overage > 0:
            bucket.overserviced_count += 1
            bucket.overserviced_amount += overage
        elif overage < 0:
            bucket.underserviced_count += 1
            bucket.underserviced_amount += abs(overage)
    bucket.rag[project.rag_color] = bucket.rag.get(project.rag_color, 0) + 1


PERSON_MEASURES = ("utilization", "utilization_target", "billable", "admin_time", "nb_internal", "num_projects")


def accumulate_person(bucket: AggregateBucket, person: PersonRecord) -> None:
    bucket.projects += 1  # 人数
    for measure in PERSON_MEASURES:
        bucket.add(measure, float(getattr(person, measure) or 0))
    bucket.add("non_billable", person.non_billable)
    if person.utilization_status:
        bucket.tally("status", person.utilization_status)
    if person.happiness:
        bucket.tally("happiness", person.happiness)


class AggregationEngine:
    """Single-pass classifier and multi-dimension accumulator."""

    def __init__(
        self,
        rules: RuleSet,
        dimensions: Mapping[Segment, Sequence[Dimension]],
        enrich: Enricher = enrich_project,
        accumulate: Accumulator = accumulate_project,
        classify: Classifier = classify_record,
    ) -> None:
        self.rules = rules
        self.dimensions = {segment: list(dims) for segment, dims in dimensions.items()}
        self.enrich = enrich
        self.accumulate = accumulate
        self.classify = classify

    def run(self, rows: Iterable[Any]) -> AggregationResult:
        result = AggregationResult.empty(
            {segment: [d.name for d in dims] for segment, dims in self.dimensions.items()}
        )
        for row in rows:
            result.total_rows += 1
            category = self.classify(row, self.rules)
            segment = get_segment(category, self.rules)
            if segment is Segment.UNKNOWN:
                result.uncategorized_count += 1
                continue
            result.categories[category] = result.categories.get(category, 0) + 1
            item = self.enrich(row, category, segment, self.rules)
            result.projects[segment].append(item)
            self.accumulate(result.totals[segment], item)
            for dim in self.dimensions.get(segment, []):
                groups = result.buckets[segment][dim.name]
                for key in dim.keys_for(item):
                    bucket = groups.get(key)
                    if bucket is None:
                        bucket = groups[key] = AggregateBucket(name=key)
                    self.accumulate(bucket, item)
        logger.debug(
            "aggregated rows=%d uncategorized=%d categories=%s",
            result.total_rows,
            result.uncategorized_count,
            result.categories,
        )
        return result
