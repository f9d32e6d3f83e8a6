from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

"""History log definitions, merge policy and entry builders.

Each log is a chronologically sorted list of dict entries keyed by ``date``
(``YYYY-MM-DD``) or ``month`` (``YYYY-MM``). Appending replaces an entry with
the same key, re-sorts, and keeps only the newest ``cap`` entries. Baseline
entries are seeded on read when their key is missing.
"""

__all__ = [
    "HistoryLog",
    "DEFAULT_LOGS",
    "history_logs",
    "merge_history",
    "with_baseline",
    "snapshot_entry",
    "dept_entry",
    "pipeline_entry",
    "utilization_entry",
    "previous_month_label",
]


@dataclass(frozen=True)
class HistoryLog:
    name: str
    key: str  # date | month
    cap: int
    baseline: tuple[Mapping[str, Any], ...] = field(default_factory=tuple)


DEFAULT_LOGS: dict[str, HistoryLog] = {
    "snapshot": HistoryLog("snapshot", "date", 52),
    "dept": HistoryLog("dept", "month", 24),
    "pipeline": HistoryLog("pipeline", "date", 104),
    "utilization": HistoryLog("utilization", "date", 104),
    # 書き込みコマンドなし (既存ファイルと baseline を読むだけ)
    "deviation": HistoryLog("deviation", "date", 104),
    "dept_utilization": HistoryLog("dept_utilization", "date", 104),
}


def history_logs(
    caps: Mapping[str, int] | None = None,
    baselines: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
) -> dict[str, HistoryLog]:
    """DEFAULT_LOGS with configured caps / baselines applied."""
    logs = {}
    for name, log in DEFAULT_LOGS.items():
        logs[name] = HistoryLog(
            name=name,
            key=log.key,
            cap=int((caps or {}).get(name, log.cap)),
            baseline=tuple(dict(e) for e in (baselines or {}).get(name, log.baseline)),
        )
    return logs


def with_baseline(entries: Iterable[Mapping[str, Any]], log: HistoryLog) -> list[dict[str, Any]]:
    merged = [dict(e) for e in entries]
    present = {e.get(log.key) for e in merged}
    for entry in log.baseline:
        if entry.get(log.key) not in present:
            merged.append(dict(entry))
    merged.sort(key=lambda e: str(e.get(log.key, "")))
    return merged


def merge_history(existing: Iterable[Mapping[str, Any]], entry: Mapping[str, Any], log: HistoryLog) -> list[dict[str, Any]]:
    """Replace-if-same-key, sort chronologically, keep the newest ``cap``."""
    key = entry.get(log.key)
    if not key:
        raise ValueError(f"history entry for {log.name!r} has no {log.key!r} key")
    merged = [dict(e) for e in existing if e.get(log.key) != key]
    merged.append(dict(entry))
    merged.sort(key=lambda e: str(e.get(log.key, "")))
    return merged[-log.cap:] if log.cap > 0 else merged


def previous_month_label(today: date | datetime) -> str:
    year, month = today.year, today.month - 1
    if month == 0:
        year, month = year - 1, 12
    return f"{year:04d}-{month:02d}"


def snapshot_entry(snapshot: Mapping[str, Any], today: date) -> dict[str, Any]:
    financials = snapshot["live"]["financials"]
    return {
        "date": today.isoformat(),
        "live_revenue": financials["total_budget"],
        "live_actuals": financials["total_actuals"],
        "net_overservice": financials["total_overage"] - financials["total_investment"],
        "weighted_pipeline": snapshot["newbiz"]["weighted_pipeline"],
        "live_count": snapshot["live"]["count"],
        "newbiz_count": snapshot["newbiz"]["count"],
        "overserviced_count": financials["overserviced_count"],
        "burn_rate": financials["burn_rate_pct"],
    }


def dept_entry(
    month: str,
    last_month: Mapping[str, float],
    this_month: Mapping[str, float] | None,
) -> dict[str, Any]:
    """Penetration of the closed month plus revenue of the running month."""
    return {
        "month": month,
        "experiences": last_month["experiences_pct"],
        "delivery": last_month["delivery_pct"],
        "combined": last_month["experiences_pct"] + last_month["delivery_pct"],
        "exp_revenue": this_month["exp_revenue"] if this_month else 0,
        "del_revenue": this_month["del_revenue"] if this_month else 0,
    }


def pipeline_entry(snapshot: Mapping[str, Any], today: date) -> dict[str, Any]:
    newbiz = snapshot["newbiz"]
    return {
        "date": today.isoformat(),
        "count": newbiz["count"],
        "total_forecast": newbiz["total_forecast"],
        "weighted_pipeline": newbiz["weighted_pipeline"],
        "stages": {s["stage"]: s["count"] for s in newbiz["pipeline_funnel"]},
    }


def utilization_entry(summary: Mapping[str, Any], today: date) -> dict[str, Any]:
    return {
        "date": today.isoformat(),
        "team_size": summary["team_size"],
        "avg_utilization": summary["avg_utilization"],
        "avg_target": summary["avg_target"],
        "avg_admin": summary["avg_admin"],
        "team": {
            p["name"]: {"utilization": p["utilization"], "target": p["utilization_target"]}
            for p in summary["people"]
        },
    }
