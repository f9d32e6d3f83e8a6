from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    CategoryRule,
    DashboardConfig,
    DepartmentConfig,
    HistoryConfig,
    RuleSet,
    SourceConfig,
)
from ..models.records import FieldRecord, PersonRecord

"""Config loader.

Responsibilities:
- Load YAML (config/dashboard.yml by default, packaged defaults.yml as fallback)
- Merge top-level keys of the user file over the packaged defaults
- Validate against dashboard_schema.json (jsonschema)
- Apply environment overrides (source ids / type, title, history backend)
- Build the frozen DashboardConfig
"""

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_PATH",
    "DEFAULTS_PATH",
    "SCHEMA_PATH",
    "ENV_SOURCE_IDS",
    "load_config",
    "load_raw_config",
    "build_config",
]

_here = Path(__file__).parent
DEFAULTS_PATH = _here / "defaults.yml"
SCHEMA_PATH = _here / "dashboard_schema.json"
DEFAULT_CONFIG_PATH = Path("config/dashboard.yml")

# 環境変数 -> source 論理名
ENV_SOURCE_IDS = {
    "SMARTSHEET_SOURCE_ID": "snapshot",
    "DEPT_REVENUE_SHEET_ID": "dept_revenue",
    "DEPT_UTILIZATION_REPORT_ID": "dept_utilization",
    "DEPT_INTEGRATED_REPORT_ID": "dept_integrated",
    "DEPT_PENETRATION_THIS_ID": "dept_penetration_this",
    "DEPT_PENETRATION_LAST_ID": "dept_penetration_last",
    "AGENCY_UTILIZATION_REPORT_ID": "agency_utilization",
}


class ConfigError(Exception):
    pass


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return data


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate merged config data against the packaged JSON schema.

    Raises:
        ConfigError: schema file missing / not valid JSON, or the data
            violates the schema (missing keys, wrong types, unknown keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"config validation failed{f' at {where}' if where else ''}: {e.message}") from e


def load_raw_config(path: Path | None = None) -> dict[str, Any]:
    """Defaults merged with the user file (top-level keys replace defaults)."""
    data = _read_yaml(DEFAULTS_PATH)
    if path is not None:
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        data.update(_read_yaml(path))
    elif DEFAULT_CONFIG_PATH.exists():
        data.update(_read_yaml(DEFAULT_CONFIG_PATH))
    return data


def _apply_env(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    sources = {name: dict(src) for name, src in (data.get("sources") or {}).items()}
    for var, name in ENV_SOURCE_IDS.items():
        if env.get(var):
            sources.setdefault(name, {})["id"] = env[var]
    if env.get("SMARTSHEET_SOURCE_TYPE"):
        sources.setdefault("snapshot", {"id": ""})["type"] = env["SMARTSHEET_SOURCE_TYPE"]
    data["sources"] = sources
    if env.get("DASHBOARD_TITLE"):
        data["title"] = env["DASHBOARD_TITLE"]
    history = dict(data.get("history") or {})
    dsn = env.get("HISTORY_DSN") or env.get("DATABASE_URL")
    if dsn:
        history["dsn"] = dsn
    if env.get("HISTORY_BACKEND"):
        history["backend"] = env["HISTORY_BACKEND"]
    if env.get("HISTORY_DIR"):
        history["directory"] = env["HISTORY_DIR"]
    data["history"] = history
    return data


def _build_rules(data: dict[str, Any]) -> RuleSet:
    segments: dict[str, str] = {}
    rules = []
    for entry in data["categories"]:
        name, segment = entry["name"], entry["segment"]
        if segments.setdefault(name, segment) != segment:
            raise ConfigError(f"category {name!r} mapped to segments {segments[name]!r} and {segment!r}")
        rules.append(CategoryRule.build(name, segment, entry.get("statuses", ()), entry.get("sheets", ())))
    return RuleSet.build(rules, data["rag_statuses"])


def _check_targets(mapping: Mapping[str, str], allowed: set[str], section: str) -> None:
    unknown = sorted({v for v in mapping.values() if v not in allowed})
    if unknown:
        raise ConfigError(f"{section} maps to unknown field(s): {', '.join(unknown)}")


def build_config(data: dict[str, Any]) -> DashboardConfig:
    """Typed config from an already validated mapping."""
    column_mapping = {str(k): v for k, v in data["column_mapping"].items()}
    _check_targets(column_mapping, set(FieldRecord.field_names()), "column_mapping")
    people_columns = {str(k): v for k, v in (data.get("people_columns") or {}).items()}
    _check_targets(people_columns, {f for f in PersonRecord.__dataclass_fields__}, "people_columns")

    sources = {
        name: SourceConfig(
            name=name,
            source_id=str(src.get("id") or ""),
            kind=src.get("type", "sheet"),
            optional=bool(src.get("optional", False)),
            page_size=int(src.get("page_size", 10000)),
        )
        for name, src in data["sources"].items()
    }
    dept = data.get("department") or {}
    department = DepartmentConfig(
        experiences_disciplines=frozenset(d.strip().upper() for d in dept.get("experiences_disciplines", ())),
        delivery_disciplines=frozenset(d.strip().upper() for d in dept.get("delivery_disciplines", ())),
        revenue_section=dept.get("revenue_section", "TOTAL EFFORT"),
        penetration_fallback=bool(dept.get("penetration_fallback", False)),
    )
    hist = data.get("history") or {}
    history = HistoryConfig(
        backend=hist.get("backend", "file"),
        directory=hist.get("directory", "./history"),
        dsn=hist.get("dsn"),
        caps=dict(hist.get("caps") or {}),
        baselines={k: list(v) for k, v in (hist.get("baselines") or {}).items()},
    )
    api = data.get("api") or {}
    return DashboardConfig(
        title=data["title"],
        sources=sources,
        column_mapping=column_mapping,
        people_columns=people_columns,
        rules=_build_rules(data),
        pipeline_stages=tuple(data["pipeline_stages"]),
        department=department,
        history=history,
        api_base_url=api.get("base_url", "https://api.smartsheet.com/2.0"),
        request_timeout=float(api.get("timeout", 30.0)),
    )


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> DashboardConfig:
    data = _apply_env(load_raw_config(path), os.environ if env is None else env)
    _validate_config_schema(data)
    return build_config(data)
