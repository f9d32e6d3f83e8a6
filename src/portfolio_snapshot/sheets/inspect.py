from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pandas as pd

from ..models.config_models import RuleSet
from ..services.classification import classify_record
from .normalizer import build_sheet_name_map, normalize_source

"""Diagnostics over a fetched source (debug-rows view).

Counts rows per origin sheet, per workflow status and per resolved category,
plus a ``"<sheet> | <status>"`` cross-tab. Useful when tuning the category
rule table against live data.
"""

__all__ = [
    "EMPTY_LABEL",
    "rows_frame",
    "debug_rows",
]

EMPTY_LABEL = "EMPTY"


def rows_frame(raw: Mapping[str, Any], title_map: Mapping[str, str], rules: RuleSet) -> pd.DataFrame:
    """One line per row: sheet / workflow_status / category."""
    records = normalize_source(raw, title_map)
    frame = pd.DataFrame(
        {
            "sheet": [r.origin_sheet or f"unknown_{r.row_id}" for r in records],
            "workflow_status": [r.workflow_status for r in records],
            "category": [classify_record(r, rules) for r in records],
        },
        columns=["sheet", "workflow_status", "category"],
    )
    frame["workflow_status"] = (
        frame["workflow_status"].astype("string").str.strip().replace("", pd.NA).fillna(EMPTY_LABEL).astype(str)
    )
    return frame


def _counts(series: pd.Series) -> dict[str, int]:
    return {str(k): int(v) for k, v in series.value_counts(sort=True).items()}


def debug_rows(raw: Mapping[str, Any], title_map: Mapping[str, str], rules: RuleSet) -> dict[str, Any]:
    frame = rows_frame(raw, title_map, rules)
    cross = frame["sheet"].astype(str) + " | " + frame["workflow_status"]
    return {
        "source": raw.get("name"),
        "total_rows": int(len(frame)),
        "source_sheets": [{"id": k, "name": v} for k, v in build_sheet_name_map(raw.get("sourceSheets")).items()],
        "rows_by_sheet": _counts(frame["sheet"]),
        "rows_by_workflow": _counts(frame["workflow_status"]),
        "rows_by_category": _counts(frame["category"]),
        "cross_tab": _counts(cross),
    }
