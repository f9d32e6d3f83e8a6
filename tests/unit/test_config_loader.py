from __future__ import annotations

from pathlib import Path

import pytest

from portfolio_snapshot.config.loader import DEFAULTS_PATH, ConfigError, load_config, load_raw_config
from portfolio_snapshot.models.records import Segment


def test_packaged_defaults_load(dashboard_config):
    assert dashboard_config.title == "Weekly Project Snapshot"
    assert dashboard_config.sources["snapshot"].kind == "report"
    assert dashboard_config.sources["dept_penetration_this"].optional is True
    assert dashboard_config.sources["agency_utilization"].page_size == 200
    assert dashboard_config.column_mapping["Budget Forecast"] == "budget_forecast"
    assert [r.name for r in dashboard_config.rules.categories][0] == "Internal Admin Time"
    assert dashboard_config.rules.segment_for("New Business Pipeline") is Segment.NEWBIZ
    assert "blocked" in dashboard_config.rules.rag_statuses["red"]
    assert dashboard_config.pipeline_stages[0] == "IN REVIEW"
    assert "TECH DEV" in dashboard_config.department.experiences_disciplines
    assert dashboard_config.history.caps["snapshot"] == 52
    assert dashboard_config.history.baselines["dept"][0]["month"] == "2025-12"


def test_user_file_replaces_top_level_keys(write_config):
    cfg = load_config(write_config, env={})
    assert cfg.title == "Test Snapshot"
    assert cfg.sources["snapshot"].source_id == "111"
    # ファイルにない sources は消える (トップレベル単位で置換)
    assert set(cfg.sources) == {
        "snapshot",
        "agency_utilization",
        "dept_revenue",
        "dept_utilization",
        "dept_integrated",
        "dept_penetration_this",
        "dept_penetration_last",
    }
    assert cfg.history.directory == "./history"
    # categories はデフォルトのまま
    assert len(cfg.rules.categories) == 7


def test_default_path_is_picked_up_from_cwd(write_config):
    assert load_config(env={}).title == "Test Snapshot"


def test_missing_explicit_path_raises(temp_workdir):
    with pytest.raises(ConfigError, match="not found"):
        load_raw_config(temp_workdir / "nope.yml")


def test_env_overrides(temp_workdir):
    env = {
        "SMARTSHEET_SOURCE_ID": "555",
        "SMARTSHEET_SOURCE_TYPE": "sheet",
        "DASHBOARD_TITLE": "Env Title",
        "DATABASE_URL": "postgresql://db/history",
        "HISTORY_BACKEND": "postgres",
        "DEPT_PENETRATION_THIS_ID": "777",
    }
    cfg = load_config(DEFAULTS_PATH, env=env)
    assert cfg.sources["snapshot"].source_id == "555"
    assert cfg.sources["snapshot"].kind == "sheet"
    assert cfg.sources["dept_penetration_this"].source_id == "777"
    assert cfg.title == "Env Title"
    assert cfg.history.backend == "postgres"
    assert cfg.history.dsn == "postgresql://db/history"


def test_history_dsn_wins_over_database_url():
    cfg = load_config(DEFAULTS_PATH, env={"HISTORY_DSN": "a", "DATABASE_URL": "b"})
    assert cfg.history.dsn == "a"


def _write(tmp: Path, text: str) -> Path:
    path = tmp / "config" / "custom.yml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    "text,match",
    [
        ("title: 5\n", "title"),
        ("unknown_key: 1\n", "unknown_key"),
        ("categories:\n  - name: X\n    segment: pipeline\n", "segment"),
        ("column_mapping:\n  Budget: not_a_field\n", "not_a_field"),
        ("people_columns:\n  Who: nobody\n", "nobody"),
        ("- just\n- a list\n", "mapping"),
        ("title: [unclosed\n", "invalid yaml"),
    ],
)
def test_invalid_configs(temp_workdir, text, match):
    with pytest.raises(ConfigError, match=match):
        load_config(_write(temp_workdir, text), env={})


def test_conflicting_category_segments(temp_workdir):
    text = (
        "categories:\n"
        "  - {name: Dup, segment: live, statuses: [a]}\n"
        "  - {name: Dup, segment: internal, statuses: [b]}\n"
    )
    with pytest.raises(ConfigError, match="Dup"):
        load_config(_write(temp_workdir, text), env={})


def test_history_backend_enum(temp_workdir):
    text = "history:\n  backend: redis\n"
    with pytest.raises(ConfigError):
        load_config(_write(temp_workdir, text), env={})
