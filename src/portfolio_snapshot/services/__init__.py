"""Aggregation engine, dashboard views, history policy and command orchestration."""
