from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from ..config.loader import ConfigError
from ..db.history_store import HistoryStore, HistoryStoreError
from ..logging.error_log import ErrorLogBuffer, ErrorRecord
from ..models.config_models import DashboardConfig, SourceConfig
from ..models.run_result import RunResult
from ..sheets.client import FetchError, SmartsheetClient
from ..sheets.inspect import debug_rows
from ..sheets.normalizer import normalize_source
from .departmental import build_dept_health, calculate_penetration
from .history import HistoryLog, dept_entry, pipeline_entry, previous_month_label, snapshot_entry, utilization_entry
from .progress import FetchProgress
from .snapshot import build_snapshot
from .utilization import build_utilization, parse_people

"""Command orchestration.

Each ``run_*`` function resolves its sources (all source ids are checked
before the first request), fetches them concurrently, runs the pure
aggregation for the view and returns ``(document, RunResult)``.

Failure policy:
- missing source id / credential -> ConfigError (nothing fetched)
- required source fetch failure -> FetchError propagated unchanged
- optional source fetch failure -> WARN + ErrorRecord, source passed as None
- anything unexpected while aggregating -> PipelineError
"""

__all__ = [
    "PipelineError",
    "RunContext",
    "require_source",
    "fetch_sources",
    "run_snapshot",
    "run_dept_health",
    "run_utilization",
    "run_log_snapshot",
    "run_log_dept_snapshot",
    "run_log_utilization",
    "run_history",
    "run_debug_rows",
    "run_inspect",
]

logger = logging.getLogger(__name__)

DEPT_SOURCES = (
    "dept_revenue",
    "dept_utilization",
    "dept_integrated",
    "dept_penetration_this",
    "dept_penetration_last",
)

MAX_FETCH_WORKERS = 8

_PASSTHROUGH = (ConfigError, FetchError, HistoryStoreError)


class PipelineError(Exception):
    """Unexpected failure while building a view."""
    pass


@dataclass
class RunContext:
    """Collaborators and bookkeeping shared by one command run."""
    command: str
    config: DashboardConfig
    client: SmartsheetClient | None = None
    errors: ErrorLogBuffer = field(default_factory=ErrorLogBuffer)
    started: datetime = field(default_factory=lambda: datetime.now(UTC))
    sources_fetched: int = 0
    sources_missing: int = 0

    def result(self, counts: Mapping[str, int]) -> RunResult:
        end = datetime.now(UTC)
        return RunResult(
            command=self.command,
            start_time=self.started,
            end_time=end,
            elapsed_seconds=round((end - self.started).total_seconds(), 3),
            counts=dict(counts),
            sources_fetched=self.sources_fetched,
            sources_missing=self.sources_missing,
        )


def require_source(config: DashboardConfig, name: str) -> SourceConfig:
    source = config.sources.get(name)
    if source is None or not source.source_id:
        raise ConfigError(f"No source ID configured for {name!r}")
    return source


def _client(ctx: RunContext) -> SmartsheetClient:
    if ctx.client is None:
        ctx.client = SmartsheetClient.from_config(ctx.config)
    return ctx.client


def fetch_sources(ctx: RunContext, names: Iterable[str]) -> dict[str, dict[str, Any] | None]:
    """Fetch the named sources concurrently.

    Optional sources that fail resolve to None; a failing required source
    raises its FetchError.
    """
    names = list(names)
    results: dict[str, dict[str, Any] | None] = {}
    specs: list[SourceConfig] = []
    for name in names:
        source = ctx.config.sources.get(name)
        if source is not None and source.optional and not source.source_id:
            logger.warning(f"optional source not configured source={name}")
            results[name] = None
            ctx.sources_missing += 1
            continue
        specs.append(require_source(ctx.config, name))
    if not specs:
        return results
    client = _client(ctx)
    with FetchProgress(len(specs)) as progress, ThreadPoolExecutor(
        max_workers=min(len(specs), MAX_FETCH_WORKERS)
    ) as pool:
        futures = {
            pool.submit(client.get_source, spec.source_id, spec.kind, spec.page_size): spec for spec in specs
        }
        for future in as_completed(futures):
            spec = futures[future]
            try:
                results[spec.name] = future.result()
            except FetchError as e:
                progress.finish_source(spec.name, success=False)
                if not spec.optional:
                    logger.error(f"fetch failed source={spec.name} id={spec.source_id}: {e}")
                    raise
                logger.warning(f"optional source unavailable source={spec.name} id={spec.source_id}: {e}")
                ctx.errors.append(
                    ErrorRecord.create(ctx.command, spec.name, spec.source_id, "FETCH_FAILED", str(e))
                )
                results[spec.name] = None
                ctx.sources_missing += 1
                continue
            progress.finish_source(spec.name)
            ctx.sources_fetched += 1
            logger.debug("fetched source=%s rows=%d", spec.name, len(results[spec.name].get("rows") or []))
    # 呼び出し順を保持
    return {name: results[name] for name in names}


def _guarded(step: str, fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except _PASSTHROUGH:
        raise
    except Exception as e:
        raise PipelineError(f"{step} failed: {e}") from e


def run_snapshot(ctx: RunContext, now: datetime | None = None) -> tuple[dict[str, Any], RunResult]:
    raw = fetch_sources(ctx, ["snapshot"])["snapshot"]
    doc = _guarded(
        "snapshot",
        lambda: build_snapshot(normalize_source(raw, ctx.config.column_mapping), ctx.config, now),
    )
    counts = {
        "rows": doc["total_rows"],
        "projects": doc["total_projects"],
        "live": doc["live"]["count"],
        "newbiz": doc["newbiz"]["count"],
        "internal": doc["internal"]["count"],
        "uncategorized": doc["uncategorized_count"],
    }
    return doc, ctx.result(counts)


def run_dept_health(ctx: RunContext, now: datetime | None = None) -> tuple[dict[str, Any], RunResult]:
    sources = fetch_sources(ctx, DEPT_SOURCES)
    doc = _guarded("dept-health", lambda: build_dept_health(sources, ctx.config, now))
    counts = {
        "months": len(doc["revenue_sections"].get(ctx.config.department.revenue_section, [])),
        "team": doc["utilization_summary"]["team_size"],
        "integrated": doc["integrated_summary"]["total_projects"],
    }
    return doc, ctx.result(counts)


def _utilization_doc(ctx: RunContext, now: datetime | None) -> dict[str, Any]:
    raw = fetch_sources(ctx, ["agency_utilization"])["agency_utilization"]
    return _guarded(
        "utilization",
        lambda: build_utilization(parse_people(raw, ctx.config.people_columns), now),
    )


def run_utilization(ctx: RunContext, now: datetime | None = None) -> tuple[dict[str, Any], RunResult]:
    doc = _utilization_doc(ctx, now)
    return doc, ctx.result({"people": doc["team_size"], "ecosystems": len(doc["by_ecosystem"])})


def _today(now: datetime | None) -> date:
    return (now or datetime.now(UTC)).date()


def run_log_snapshot(
    ctx: RunContext,
    store: HistoryStore,
    logs: Mapping[str, HistoryLog],
    now: datetime | None = None,
) -> tuple[dict[str, Any], RunResult]:
    """Append the weekly snapshot and pipeline entries."""
    snapshot, _ = run_snapshot(ctx, now)
    entry = snapshot_entry(snapshot, _today(now))
    history = store.append_history(logs["snapshot"], entry)
    pipeline = store.append_history(logs["pipeline"], pipeline_entry(snapshot, _today(now)))
    logger.info(f"history logged log=snapshot date={entry['date']} entries={len(history)}")
    doc = {"success": True, "logged": entry, "total_entries": len(history), "pipeline_entries": len(pipeline)}
    return doc, ctx.result({"entries": len(history)})


def run_log_dept_snapshot(
    ctx: RunContext,
    store: HistoryStore,
    logs: Mapping[str, HistoryLog],
    now: datetime | None = None,
) -> tuple[dict[str, Any], RunResult]:
    """Log the closed month's penetration (runs on the 1st of the month)."""
    sources = fetch_sources(ctx, ["dept_penetration_last", "dept_penetration_this"])
    department = ctx.config.department
    last_calc = calculate_penetration(sources["dept_penetration_last"], department)
    if last_calc is None:
        raise PipelineError("Could not calculate penetration from last month sheet")
    this_calc = calculate_penetration(sources["dept_penetration_this"], department)
    entry = dept_entry(previous_month_label(now or datetime.now(UTC)), last_calc, this_calc)
    history = store.append_history(logs["dept"], entry)
    logger.info(f"history logged log=dept month={entry['month']} entries={len(history)}")
    return {"success": True, "logged": entry, "total_entries": len(history)}, ctx.result({"entries": len(history)})


def run_log_utilization(
    ctx: RunContext,
    store: HistoryStore,
    logs: Mapping[str, HistoryLog],
    now: datetime | None = None,
) -> tuple[dict[str, Any], RunResult]:
    summary = _utilization_doc(ctx, now)
    entry = utilization_entry(summary, _today(now))
    history = store.append_history(logs["utilization"], entry)
    logger.info(f"history logged log=utilization date={entry['date']} entries={len(history)}")
    return {"success": True, "logged": entry, "total_entries": len(history)}, ctx.result({"entries": len(history)})


def run_history(
    ctx: RunContext,
    store: HistoryStore,
    logs: Mapping[str, HistoryLog],
    name: str,
) -> tuple[list[dict[str, Any]], RunResult]:
    log = logs.get(name)
    if log is None:
        raise ConfigError(f"unknown history log {name!r} (expected one of: {', '.join(sorted(logs))})")
    entries = store.get_history(log)
    return entries, ctx.result({"entries": len(entries)})


def run_debug_rows(ctx: RunContext) -> tuple[dict[str, Any], RunResult]:
    raw = fetch_sources(ctx, ["snapshot"])["snapshot"]
    doc = _guarded("debug-rows", lambda: debug_rows(raw, ctx.config.column_mapping, ctx.config.rules))
    return doc, ctx.result({"rows": doc["total_rows"], "sheets": len(doc["rows_by_sheet"])})


def run_inspect(ctx: RunContext, source_id: str, kind: str = "sheet") -> tuple[dict[str, Any], RunResult]:
    doc = _client(ctx).inspect_source(source_id, kind)
    ctx.sources_fetched += 1
    return doc, ctx.result({"columns": len(doc["columns"]), "sample_rows": len(doc["sample_rows"])})
