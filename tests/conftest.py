# Shared pytest fixtures
from __future__ import annotations
import tempfile
from pathlib import Path
from typing import Any

import pytest

from portfolio_snapshot.config.loader import DEFAULTS_PATH, load_config
from portfolio_snapshot.logging.init import reset_logging


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def clean_env(monkeypatch):
    for var in (
        "SMARTSHEET_API_TOKEN",
        "SMARTSHEET_SOURCE_ID",
        "SMARTSHEET_SOURCE_TYPE",
        "DASHBOARD_TITLE",
        "HISTORY_DSN",
        "DATABASE_URL",
        "HISTORY_BACKEND",
        "HISTORY_DIR",
        "DEPT_REVENUE_SHEET_ID",
        "DEPT_UTILIZATION_REPORT_ID",
        "DEPT_INTEGRATED_REPORT_ID",
        "DEPT_PENETRATION_THIS_ID",
        "DEPT_PENETRATION_LAST_ID",
        "AGENCY_UTILIZATION_REPORT_ID",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def dashboard_config():
    """Packaged defaults, no environment overrides."""
    return load_config(DEFAULTS_PATH, env={})


@pytest.fixture()
def rules(dashboard_config):
    return dashboard_config.rules


@pytest.fixture()
def sample_config_yaml() -> str:
    return """title: Test Snapshot
sources:
  snapshot:
    id: "111"
    type: report
  agency_utilization:
    id: "222"
    type: report
  dept_revenue:
    id: "301"
  dept_utilization:
    id: "302"
    type: report
  dept_integrated:
    id: "303"
    type: report
  dept_penetration_this:
    id: "304"
    optional: true
  dept_penetration_last:
    id: "305"
    optional: true
history:
  backend: file
  directory: ./history
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "dashboard.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def _build_source(
    titles: list[str],
    rows: list[dict[str, Any]],
    *,
    name: str = "Test Sheet",
    virtual: bool = False,
    source_sheets: list[dict[str, Any]] | None = None,
    display: bool = False,
) -> dict[str, Any]:
    """Raw sheet / report payload from ``{title: value}`` rows.

    Row keys ``_sheetId`` / ``_sheetName`` become row metadata. With
    ``display`` the value is sent as ``displayValue`` instead of ``value``.
    """
    columns = []
    for i, title in enumerate(titles):
        col: dict[str, Any] = {"id": 100 + i, "title": title}
        if virtual:
            col["virtualId"] = 900 + i
        columns.append(col)
    raw_rows = []
    for n, row in enumerate(rows):
        cells = []
        for col in columns:
            if col["title"] not in row:
                continue
            cell: dict[str, Any] = {"columnId": col["id"]}
            if virtual:
                cell["virtualColumnId"] = col["virtualId"]
            cell["displayValue" if display else "value"] = row[col["title"]]
            cells.append(cell)
        raw_row: dict[str, Any] = {"id": n + 1, "cells": cells}
        if "_sheetId" in row:
            raw_row["sheetId"] = row["_sheetId"]
        if "_sheetName" in row:
            raw_row["sheetName"] = row["_sheetName"]
        raw_rows.append(raw_row)
    payload: dict[str, Any] = {"name": name, "columns": columns, "rows": raw_rows}
    if source_sheets is not None:
        payload["sourceSheets"] = source_sheets
    return payload


@pytest.fixture()
def build_source():
    return _build_source


@pytest.fixture()
def portfolio_source(build_source) -> dict[str, Any]:
    """Small cross-sheet report covering every segment plus one unmatched row."""
    titles = [
        "RID", "Client", "Project Name", "Workflow Status", "Budget Forecast", "Actuals",
        "Overage", "Owning Ecosystem", "Request Type", "Win Probability", "RAG", "PM/PROD Assigned",
        "Recommendation", "Assignment",
    ]
    rows = [
        {"RID": "R1", "Client": "Acme", "Workflow Status": "Active Climate", "Budget Forecast": "$10,000",
         "Actuals": "$6,000", "Overage": "$500", "Owning Ecosystem": "Climate", "Request Type": "Web, Brand",
         "RAG": "Green", "PM/PROD Assigned": "Alex", "_sheetId": 1},
        {"RID": "R2", "Client": "Beta", "Workflow Status": "Active Climate", "Budget Forecast": "$5,000",
         "Actuals": "No Tracking", "Overage": "-$200", "Owning Ecosystem": "Climate", "Request Type": "Web",
         "RAG": "At Risk", "_sheetId": 1},
        {"RID": "R3", "Client": "Acme", "Workflow Status": "Active Support", "Budget Forecast": "(1,000)",
         "Actuals": 250, "Overage": "0", "Owning Ecosystem": "Health", "_sheetId": 5},
        {"RID": "N1", "Client": "Gamma", "Workflow Status": "Proposal", "Budget Forecast": "$20,000",
         "Win Probability": 0.5, "Owning Ecosystem": "Climate", "Recommendation": "Pursue",
         "Assignment": "Sam", "_sheetId": 2},
        {"RID": "N2", "Client": "Delta", "Workflow Status": "IN REVIEW", "Budget Forecast": "$8,000",
         "Win Probability": "25%", "_sheetId": 2},
        {"RID": "I1", "Workflow Status": "", "Budget Forecast": "$0", "_sheetId": 3},
        {"RID": "X1", "Workflow Status": "Cancelled", "Budget Forecast": "$99,999", "_sheetId": 4},
    ]
    return build_source(
        titles,
        rows,
        name="Portfolio Report",
        virtual=True,
        source_sheets=[
            {"id": 1, "name": "Live Projects"},
            {"id": 2, "name": "New Business Pipeline"},
            {"id": 3, "name": "Internal Approved 2026"},
            {"id": 4, "name": "Archive"},
            {"id": 5, "name": "Support Desk"},
        ],
    )


@pytest.fixture()
def agency_source(build_source) -> dict[str, Any]:
    titles = [
        "Team Member", "Primary Group", "ECOSYSTEM", "Level", "NO. OF PROJECTS", "Utilization",
        "Utilization Target", "Billable", "UTILIZATION STATUS", "Admin Time", "HAPPINESS MEASURE",
    ]
    rows = [
        {"Team Member": "Alex", "ECOSYSTEM": "climate", "NO. OF PROJECTS": "4", "Utilization": 0.95,
         "Utilization Target": 0.8, "Billable": 0.7, "UTILIZATION STATUS": "Over", "Admin Time": 0.05,
         "HAPPINESS MEASURE": "Severe", "Level": "Senior"},
        {"Team Member": "Sam", "ECOSYSTEM": "Climate", "NO. OF PROJECTS": 2, "Utilization": "70%",
         "Utilization Target": "80%", "Billable": "60%", "UTILIZATION STATUS": "Utilized", "Admin Time": "10%",
         "HAPPINESS MEASURE": "No Pain"},
        {"Team Member": "Jordan", "NO. OF PROJECTS": "n/a", "Utilization": 40, "Utilization Target": 80,
         "UTILIZATION STATUS": "Capacity", "HAPPINESS MEASURE": "Extreme"},
        {"Team Member": "", "Utilization": 0.5},
    ]
    return build_source(titles, rows, name="Agency Utilization", virtual=True)


def _penetration(build_source, name: str, amounts: dict[str, tuple[float, float]], labels: dict[str, str]):
    titles = ["Discipline", "Incurred (Currency)", "Forecast (Currency)"]
    rows = [
        {"Discipline": d, "Incurred (Currency)": inc, "Forecast (Currency)": fc} for d, (inc, fc) in amounts.items()
    ]
    rows += [{"Discipline": f"{label} Penetration", "Incurred (Currency)": pct} for label, pct in labels.items()]
    return build_source(titles, rows, name=name)


@pytest.fixture()
def dept_payloads(build_source) -> dict[str, dict[str, Any]]:
    """The five departmental sources keyed by their logical source name."""
    pivot_titles = ["Label", "Delivery", "Experiences", "Total", "Adjusted"]
    pivot_rows = [
        ("TOTAL EFFORT",),
        ("Label", "Delivery", "Experiences", "Total", "Adjusted"),
        ("2026-01", 1000, 3000, 4000, 3900),
        ("2026-02", 1200, 3600, 4800, 4700),
    ]
    return {
        "dept_revenue": build_source(
            pivot_titles, [dict(zip(pivot_titles, r)) for r in pivot_rows], name="Revenue Pivot"
        ),
        "dept_utilization": build_source(
            ["Team Member", "Utilization %", "Billable %"],
            [
                {"Team Member": "IPM - Jordan Lee", "Utilization %": 0.9, "Billable %": 0.7},
                {"Team Member": "DESIGN - Sam Park", "Utilization %": "60%", "Billable %": "20%"},
            ],
            name="E&D Utilization",
        ),
        "dept_integrated": build_source(
            ["RID", "Owning Ecosystem", "Budget Forecast", "Actuals", "Overage"],
            [
                {"RID": "I-1", "Owning Ecosystem": "Climate", "Budget Forecast": "$10,000", "Actuals": "$8,000",
                 "Overage": "$1,500"},
                {"RID": "I-2", "Budget Forecast": "$6,000", "Actuals": "No Tracking"},
            ],
            name="Integrated Projects",
        ),
        "dept_penetration_this": _penetration(
            build_source,
            "Penetration March",
            {"DESIGN": (6000, 2000), "IPM": (1500, 500), "ACCOUNTS": (10000, 0)},
            {"Experiences": "40%", "Delivery": "10%"},
        ),
        "dept_penetration_last": _penetration(
            build_source,
            "Penetration February",
            {"DESIGN": (5000, 0), "IPM": (2500, 0), "ACCOUNTS": (12500, 0)},
            {"Experiences": "25%", "Delivery": "13%"},
        ),
    }


class FakeSmartsheetClient:
    """In-memory stand-in for SmartsheetClient keyed by source id."""

    def __init__(self, payloads: dict[str, dict[str, Any]], failing: set[str] | None = None) -> None:
        self.payloads = payloads
        self.failing = failing or set()
        self.calls: list[tuple[str, str, int]] = []

    def get_source(self, source_id: str, kind: str = "sheet", page_size: int = 10000) -> dict[str, Any]:
        from portfolio_snapshot.sheets.client import FetchError

        self.calls.append((source_id, kind, page_size))
        if source_id in self.failing or source_id not in self.payloads:
            raise FetchError(f"Smartsheet API error 404: {source_id} not found", status=404)
        return self.payloads[source_id]

    def inspect_source(self, source_id: str, kind: str = "sheet", sample: int = 5) -> dict[str, Any]:
        raw = self.get_source(source_id, kind, 10)
        return {
            "name": raw.get("name"),
            "total_rows": len(raw.get("rows") or []),
            "columns": [{"id": c["id"], "title": c["title"], "type": "N/A"} for c in raw.get("columns") or []],
            "sample_rows": [],
        }


@pytest.fixture()
def sample_config(write_config):
    """sample_config_yaml loaded without environment overrides."""
    return load_config(write_config, env={})


@pytest.fixture()
def source_payloads(portfolio_source, agency_source, dept_payloads) -> dict[str, dict[str, Any]]:
    """Payloads keyed by the source ids used in sample_config_yaml."""
    ids = {
        "dept_revenue": "301",
        "dept_utilization": "302",
        "dept_integrated": "303",
        "dept_penetration_this": "304",
        "dept_penetration_last": "305",
    }
    payloads = {"111": portfolio_source, "222": agency_source}
    payloads.update({ids[name]: raw for name, raw in dept_payloads.items()})
    return payloads


@pytest.fixture()
def fake_client(source_payloads):
    def _make(failing: set[str] | None = None) -> FakeSmartsheetClient:
        return FakeSmartsheetClient(source_payloads, failing)

    return _make
