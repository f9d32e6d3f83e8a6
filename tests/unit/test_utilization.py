from __future__ import annotations

from datetime import UTC, datetime

from portfolio_snapshot.models.records import PersonRecord
from portfolio_snapshot.services.utilization import build_utilization, parse_people

NOW = datetime(2026, 3, 2, tzinfo=UTC)


def test_parse_people(agency_source, dashboard_config):
    people = parse_people(agency_source, dashboard_config.people_columns)
    assert [p.name for p in people] == ["Alex", "Sam", "Jordan"]
    alex, sam, jordan = people
    assert alex.ecosystem == "CLIMATE"
    assert alex.num_projects == 4
    assert alex.utilization == 95.0
    assert alex.level == "Senior"
    assert sam.utilization_target == 80.0
    assert jordan.num_projects == 0
    assert jordan.ecosystem == ""
    assert jordan.billable is None


def test_build_utilization(agency_source, dashboard_config):
    doc = build_utilization(parse_people(agency_source, dashboard_config.people_columns), NOW)
    assert doc["generated_at"] == NOW.isoformat()
    assert doc["team_size"] == 3
    assert doc["avg_utilization"] == 68  # (95 + 70 + 40) / 3 = 68.33
    assert doc["avg_target"] == 80
    assert doc["avg_projects"] == 2.0
    assert doc["status"] == {"over": 1, "utilized": 1, "capacity": 1}
    assert doc["happiness"] == {"extreme": 1, "severe": 1, "no_pain": 1}

    by_eco = {e["name"]: e for e in doc["by_ecosystem"]}
    assert [e["name"] for e in doc["by_ecosystem"]] == ["CLIMATE", "OTHER"]
    assert by_eco["CLIMATE"]["count"] == 2
    assert by_eco["CLIMATE"]["avg_utilization"] == 83  # 82.5 -> 83
    assert by_eco["CLIMATE"]["over"] == 1
    assert by_eco["CLIMATE"]["severe"] == 1
    assert by_eco["OTHER"]["extreme"] == 1

    # 稼働率の低い順
    assert [p["name"] for p in doc["people"]] == ["Jordan", "Sam", "Alex"]
    assert doc["people"][0]["non_billable"] == 40.0


def test_build_utilization_empty():
    doc = build_utilization([], NOW)
    assert doc["team_size"] == 0
    assert doc["avg_utilization"] == 0
    assert doc["by_ecosystem"] == []
    assert doc["people"] == []


def test_person_non_billable_never_negative():
    assert PersonRecord(name="x", utilization=30, billable=50).non_billable == 0.0
    assert PersonRecord(name="x").non_billable == 0.0
