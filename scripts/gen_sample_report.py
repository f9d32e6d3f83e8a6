#!/usr/bin/env python3
"""Synthetic Smartsheet report generator for load and demo runs.

Writes a JSON payload shaped like ``GET /reports/{id}?include=sourceSheets``:
columns carry ``virtualId``, cells carry ``virtualColumnId`` and rows point to
one of several source sheets. Cell values mimic real data quirks: formatted
currency strings, parenthesized negatives, "No Tracking" placeholders and
fractional / whole-number percentages.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

COLUMNS = [
    "RID",
    "Client",
    "Project Name",
    "Workflow Status",
    "Budget Forecast",
    "Actuals",
    "Overage",
    "Owning Ecosystem",
    "Request Type",
    "Win Probability",
    "Recommendation",
    "RAG",
    "PM/PROD Assigned",
]

SOURCE_SHEETS = ["Live Projects", "Support", "New Business Pipeline", "Internal Approved"]
STATUSES = {
    "Live Projects": ["Active Climate", "Active Live"],
    "Support": ["Active Support"],
    "New Business Pipeline": ["IN REVIEW", "Proposal", "Waiting For Response", "Working On Contract", "On Hold"],
    "Internal Approved": ["Internal Approved"],
}
ECOSYSTEMS = ["Climate", "Health", "Energy", "Consumer", ""]
REQUEST_TYPES = ["Web", "Brand", "Web, Brand", "Media", "Strategy, Web"]
RAG = ["Green", "Yellow", "Red", "Blue", ""]


def _money(value: float) -> str:
    text = f"${abs(value):,.2f}"
    return f"({text})" if value < 0 else text


def generate_rows(rows: int, seed: int = 42) -> pd.DataFrame:
    """Synthetic rows as a DataFrame (one column per report column plus ``sheet``)."""
    rng = np.random.default_rng(seed)
    sheets = rng.choice(SOURCE_SHEETS, rows)
    budgets = np.round(rng.uniform(1_000, 250_000, rows), 2)
    actuals = np.round(budgets * rng.uniform(0.1, 1.2, rows), 2)
    untracked = rng.random(rows) < 0.1
    overage = np.round(actuals - budgets * rng.uniform(0.8, 1.1, rows), 2)
    win = rng.choice([0.1, 0.25, 0.5, 75, 90, None], rows)
    frame = pd.DataFrame(
        {
            "sheet": sheets,
            "RID": [f"R-{i + 1:05d}" for i in range(rows)],
            "Client": [f"Client {n}" for n in rng.integers(1, max(2, rows // 10), rows)],
            "Project Name": [f"Project {i + 1}" for i in range(rows)],
            "Workflow Status": [rng.choice(STATUSES[s]) for s in sheets],
            "Budget Forecast": [_money(b) for b in budgets],
            "Actuals": ["No Tracking" if u else _money(a) for a, u in zip(actuals, untracked)],
            "Overage": [_money(o) for o in overage],
            "Owning Ecosystem": rng.choice(ECOSYSTEMS, rows),
            "Request Type": rng.choice(REQUEST_TYPES, rows),
            "Win Probability": win,
            "Recommendation": rng.choice(["Pursue", "Hold", "Decline"], rows),
            "RAG": rng.choice(RAG, rows),
            "PM/PROD Assigned": rng.choice(["Alex", "Sam", "Jordan", ""], rows),
        }
    )
    return frame


def to_report(frame: pd.DataFrame, name: str = "Sample Portfolio Report") -> dict[str, Any]:
    columns = [{"id": 1000 + i, "virtualId": 9000 + i, "title": t} for i, t in enumerate(COLUMNS)]
    sheet_ids = {s: 500 + i for i, s in enumerate(SOURCE_SHEETS)}
    rows = []
    for idx, record in enumerate(frame.to_dict(orient="records")):
        cells = []
        for col in columns:
            value = record[col["title"]]
            if value is None or (isinstance(value, float) and np.isnan(value)) or value == "":
                continue
            if isinstance(value, np.generic):
                value = value.item()
            cells.append({"columnId": col["id"], "virtualColumnId": col["virtualId"], "value": value})
        rows.append({"id": idx + 1, "sheetId": sheet_ids[record["sheet"]], "cells": cells})
    return {
        "name": name,
        "totalRowCount": len(rows),
        "columns": columns,
        "rows": rows,
        "sourceSheets": [{"id": i, "name": s} for s, i in sheet_ids.items()],
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a synthetic Smartsheet report payload")
    parser.add_argument("output", type=Path, help="Output JSON file path")
    parser.add_argument("--rows", type=int, default=5_000, help="Number of rows (default: 5,000)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1

    report = to_report(generate_rows(args.rows, args.seed))
    args.output.parent.mkdir(parents=True, exist_ok=True)
    args.output.write_text(json.dumps(report, ensure_ascii=False), encoding="utf-8")
    print(f"Created report payload: {args.output}")
    print(f"  Rows: {args.rows:,}  Source sheets: {len(SOURCE_SHEETS)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
