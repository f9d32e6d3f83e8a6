from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from ..models.records import CellValue, FieldRecord

"""Row normalizer: raw Smartsheet rows -> FieldRecord.

Two source shapes are supported:

- sheet: cells carry ``columnId`` matching ``columns[].id``
- report: cells may carry ``virtualColumnId`` matching ``columns[].virtualId``;
  the virtual id is preferred because a cross-sheet report merges same-titled
  columns from several source sheets.

Cells whose column id does not resolve are dropped silently. Titles missing
from the title -> field dictionary are kept verbatim in ``FieldRecord.extra``.
"""

__all__ = [
    "ColumnMap",
    "build_column_map",
    "build_sheet_name_map",
    "cell_value",
    "normalize_row",
    "normalize_source",
    "row_to_titles",
]

logger = logging.getLogger(__name__)

ColumnMap = dict[Any, str]


def _column_key(column: Mapping[str, Any]) -> Any:
    virtual_id = column.get("virtualId")
    return virtual_id if virtual_id is not None else column.get("id")


def _cell_key(cell: Mapping[str, Any]) -> Any:
    virtual_id = cell.get("virtualColumnId")
    return virtual_id if virtual_id is not None else cell.get("columnId")


def build_column_map(columns: Iterable[Mapping[str, Any]] | None) -> ColumnMap:
    """Column identifier (virtual id when present) -> column title."""
    column_map: ColumnMap = {}
    for column in columns or []:
        key = _column_key(column)
        title = column.get("title")
        if key is None or title is None:
            continue
        column_map[key] = str(title)
    return column_map


def build_sheet_name_map(source_sheets: Iterable[Mapping[str, Any]] | None) -> dict[Any, str]:
    return {s.get("id"): str(s.get("name")) for s in source_sheets or [] if s.get("name") is not None}


def cell_value(cell: Mapping[str, Any]) -> CellValue:
    """``displayValue`` if present, else ``value``, else None."""
    display = cell.get("displayValue")
    if display is not None and display != "":
        return display
    return cell.get("value")


def normalize_row(
    row: Mapping[str, Any],
    column_map: ColumnMap,
    title_map: Mapping[str, str],
    sheet_names: Mapping[Any, str] | None = None,
    default_sheet: str | None = None,
) -> FieldRecord:
    known = set(FieldRecord.field_names())
    values: dict[str, CellValue] = {}
    extra: dict[str, CellValue] = {}
    for cell in row.get("cells") or []:
        title = column_map.get(_cell_key(cell))
        if title is None:
            continue
        name = title_map.get(title, title)
        value = cell_value(cell)
        target = values if name in known else extra
        # 同一フィールドへ複数タイトルが対応する場合は最初の空でない値を優先
        if target.get(name) not in (None, ""):
            continue
        target[name] = value

    origin = row.get("sheetName")
    if not origin and sheet_names:
        origin = sheet_names.get(row.get("sheetId"))
    if not origin:
        origin = default_sheet
    return FieldRecord(**values, origin_sheet=origin, row_id=row.get("id"), extra=extra)


def normalize_source(raw: Mapping[str, Any], title_map: Mapping[str, str]) -> list[FieldRecord]:
    """Normalize every row of a fetched sheet or report payload."""
    column_map = build_column_map(raw.get("columns"))
    sheet_names = build_sheet_name_map(raw.get("sourceSheets"))
    default_sheet = raw.get("name")
    records = [
        normalize_row(row, column_map, title_map, sheet_names, default_sheet)
        for row in raw.get("rows") or []
    ]
    logger.debug(
        "normalized source=%s columns=%d rows=%d source_sheets=%d",
        default_sheet,
        len(column_map),
        len(records),
        len(sheet_names),
    )
    return records


def row_to_titles(row: Mapping[str, Any], column_map: ColumnMap) -> dict[str, CellValue]:
    """RawRow view: column title -> cell value, in cell order."""
    item: dict[str, CellValue] = {}
    for cell in row.get("cells") or []:
        title = column_map.get(_cell_key(cell))
        if title is None:
            continue
        item[title] = cell_value(cell)
    return item
