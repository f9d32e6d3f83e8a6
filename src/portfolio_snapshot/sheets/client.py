from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import requests

from ..config.loader import ConfigError
from ..models.config_models import DashboardConfig
from .normalizer import build_column_map, row_to_titles

"""Thin authenticated REST client for the Smartsheet API.

No retries: a failed request raises FetchError and the caller decides whether
the source was optional.
"""

__all__ = [
    "TOKEN_ENV",
    "FetchError",
    "SmartsheetClient",
]

logger = logging.getLogger(__name__)

TOKEN_ENV = "SMARTSHEET_API_TOKEN"


class FetchError(Exception):
    """HTTP failure or malformed payload from the spreadsheet API."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class SmartsheetClient:
    def __init__(
        self,
        token: str,
        base_url: str = "https://api.smartsheet.com/2.0",
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    @classmethod
    def from_config(cls, config: DashboardConfig, env: Mapping[str, str] | None = None) -> SmartsheetClient:
        env = os.environ if env is None else env
        token = env.get(TOKEN_ENV)
        if not token:
            raise ConfigError(f"{TOKEN_ENV} environment variable is not set")
        return cls(token, config.api_base_url, config.request_timeout)

    def _request(self, endpoint: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        logger.debug("GET %s params=%s", url, params)
        try:
            response = self.session.get(url, headers=self.headers, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Smartsheet request failed {endpoint}: {e}") from e
        if not response.ok:
            raise FetchError(
                f"Smartsheet API error {response.status_code}: {response.text[:500]}",
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise FetchError(f"Smartsheet returned non-JSON payload for {endpoint}") from e
        if not isinstance(data, dict):
            raise FetchError(f"Smartsheet returned unexpected payload type for {endpoint}: {type(data).__name__}")
        return data

    def get_source(self, source_id: str, kind: str = "sheet", page_size: int = 10000) -> dict[str, Any]:
        """Full sheet or report (reports include their source sheet names)."""
        if kind == "report":
            return self._request(f"/reports/{source_id}", {"pageSize": page_size, "include": "sourceSheets"})
        return self._request(f"/sheets/{source_id}", {"pageSize": page_size})

    def list_sheets(self) -> list[dict[str, Any]]:
        return self._request("/sheets", {"pageSize": 200, "includeAll": "true"}).get("data") or []

    def list_reports(self) -> list[dict[str, Any]]:
        return self._request("/reports", {"pageSize": 200, "includeAll": "true"}).get("data") or []

    def inspect_source(self, source_id: str, kind: str = "sheet", sample: int = 5) -> dict[str, Any]:
        """Columns and a few sample rows, for building the column mapping."""
        data = self.get_source(source_id, kind, page_size=10)
        column_map = build_column_map(data.get("columns"))
        columns = [
            {
                "id": c.get("virtualId") if c.get("virtualId") is not None else c.get("id"),
                "title": c.get("title"),
                "type": c.get("type") or "N/A",
            }
            for c in data.get("columns") or []
        ]
        return {
            "name": data.get("name"),
            "total_rows": data.get("totalRowCount", len(data.get("rows") or [])),
            "columns": columns,
            "sample_rows": [row_to_titles(r, column_map) for r in (data.get("rows") or [])[:sample]],
        }
