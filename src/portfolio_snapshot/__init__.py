"""Smartsheet portfolio snapshot: classification, aggregation and history for dashboard views."""

__version__ = "0.1.0"
