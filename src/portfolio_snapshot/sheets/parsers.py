from __future__ import annotations

import math
import re
from typing import Any

from ..models.records import UNTRACKED_LABEL, Tracked, TrackedValue, Untracked

"""Cell value parsers.

Spreadsheet data is inconsistently formatted, so none of these functions raise:
unparseable currency degrades to 0 and unparseable percentages to None.

- parse_currency: "$1,234.56" / "(500)" / "-500" / 1234.5 -> float
- parse_percent: 0.42 / 42 / "85%" -> 0-100 scale, None for "no data"
- is_tracked / parse_tracked: "No Tracking" sentinel handling
"""

__all__ = [
    "CURRENCY_SENTINELS",
    "UNTRACKED_SENTINELS",
    "parse_currency",
    "parse_percent",
    "is_tracked",
    "parse_tracked",
    "tracked_amount",
    "display_value",
    "round_half_up",
    "round_percent",
    "finite",
]

# 完全一致 (strip 前, 大文字小文字区別)
CURRENCY_SENTINELS = frozenset({"No Tracking", "-", "N/A"})
# 正規化後 (strip + lower) で比較
UNTRACKED_SENTINELS = frozenset({"no tracking", "", "-", "n/a"})

_CURRENCY_NOISE = re.compile(r"[$,\s]")
_PERCENT_NOISE = re.compile(r"[%\s]")


def _to_float(text: str) -> float | None:
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_currency(value: Any) -> float:
    """Parse a currency cell into a float (0 for empty, sentinel or garbage)."""
    if value is None or isinstance(value, bool):
        return 0.0
    if _is_number(value):
        return float(value) if math.isfinite(value) else 0.0
    text = str(value)
    if text in CURRENCY_SENTINELS:
        return 0.0
    cleaned = _CURRENCY_NOISE.sub("", text)
    if not cleaned:
        return 0.0
    negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        negative = True
        cleaned = cleaned[1:-1]
    number = _to_float(cleaned)
    if number is None:
        return 0.0
    return -number if negative else number


def parse_percent(value: Any) -> float | None:
    """Parse a percentage cell onto the 0-100 scale.

    Numeric input between 0 and 1 (exclusive) is treated as a fraction and
    scaled by 100; anything else numeric is already a whole-number percent.
    String input only has ``%`` and whitespace stripped.
    """
    if value is None or isinstance(value, bool):
        return None
    if _is_number(value):
        if not math.isfinite(value):
            return None
        if 0 < value < 1:
            # 0.42 * 100 = 42.00000000000001 -> 浮動小数点誤差を除去
            return round(value * 100, 10)
        return float(value)
    text = str(value)
    if not text.strip() or text.strip().lower() in UNTRACKED_SENTINELS:
        return None
    return _to_float(_PERCENT_NOISE.sub("", text))


def is_tracked(value: Any) -> bool:
    """True unless the value is empty or one of the "no tracking" sentinels."""
    if value is None:
        return False
    return str(value).strip().lower() not in UNTRACKED_SENTINELS


def parse_tracked(value: Any) -> TrackedValue:
    if is_tracked(value):
        return Tracked(parse_currency(value))
    return Untracked(value)


def tracked_amount(value: TrackedValue) -> float:
    """Numeric contribution of a tracked value (0 when untracked)."""
    return value.value if isinstance(value, Tracked) else 0.0


def display_value(value: TrackedValue) -> float | str:
    """Number for tracked values, the literal "No Tracking" otherwise."""
    return value.value if isinstance(value, Tracked) else UNTRACKED_LABEL


def round_half_up(value: float, digits: int = 0) -> float:
    value = finite(value)
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def round_percent(value: float | None, digits: int = 1) -> float | None:
    """Display rounding for percentages; None stays None."""
    if value is None or not math.isfinite(value):
        return None
    return round_half_up(value, digits)


def finite(value: float | None) -> float:
    """Guard an output number: NaN / inf / None become 0."""
    if value is None or not math.isfinite(value):
        return 0.0
    return value
