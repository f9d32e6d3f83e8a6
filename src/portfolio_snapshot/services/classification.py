from __future__ import annotations

from typing import Any

from ..models.config_models import UNCATEGORIZED, RuleSet
from ..models.records import Segment

"""Row classification against the injected rule tables.

Rule order is significant: the first matching rule wins, because sheet-name
substrings may overlap (e.g. "internal" vs "internal approved").
"""

__all__ = [
    "UNCATEGORIZED",
    "classify_category",
    "get_segment",
    "classify_status",
    "classify_record",
]


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def classify_category(workflow_status: Any, origin_sheet: Any, rules: RuleSet) -> str:
    """Return the first category whose statuses or sheet substrings match."""
    status = _normalize(workflow_status)
    sheet = _normalize(origin_sheet)
    for rule in rules.categories:
        if status and status in rule.statuses:
            return rule.name
        if sheet and any(fragment in sheet for fragment in rule.sheets):
            return rule.name
    if rules.fallback_category is not None:
        return rules.fallback_category
    return UNCATEGORIZED


def get_segment(category: str, rules: RuleSet) -> Segment:
    if category == UNCATEGORIZED:
        return Segment.UNKNOWN
    return rules.segment_for(category)


def classify_status(rag_value: Any, rules: RuleSet) -> str:
    """Map a RAG cell to green / yellow / red / blue, or "unknown"."""
    value = _normalize(rag_value)
    if not value:
        return "unknown"
    for color, keywords in rules.rag_statuses.items():
        if value in keywords:
            return color
    return "unknown"


def classify_record(record: Any, rules: RuleSet) -> str:
    """Default classifier for FieldRecord-like rows."""
    return classify_category(
        getattr(record, "workflow_status", None),
        getattr(record, "origin_sheet", None),
        rules,
    )
