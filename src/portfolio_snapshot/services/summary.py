from __future__ import annotations

from ..models.run_result import RunResult

"""SUMMARY line rendering.

Format:
SUMMARY command={command} sources={fetched}/{total} {count_key}={n} ... elapsed_sec={elapsed}

``sources`` is fetched / (fetched + missing); missing only counts optional
sources that failed and were skipped.
"""

__all__ = [
    "format_number",
    "render_summary_line",
]


def format_number(value: float) -> str:
    """Integers without a decimal point, tiny values without scientific notation."""
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if abs(value) < 0.01:
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(value)


def render_summary_line(result: RunResult) -> str:
    """Render the SUMMARY line for one command run.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2026, 1, 5, 9, 0, 2, tzinfo=timezone.utc)
        >>> result = RunResult(
        ...     command="snapshot", start_time=start, end_time=end, elapsed_seconds=2.0,
        ...     counts={"projects": 10, "uncategorized": 1}, sources_fetched=1,
        ... )
        >>> render_summary_line(result)
        'SUMMARY command=snapshot sources=1/1 projects=10 uncategorized=1 elapsed_sec=2'
    """
    total_sources = result.sources_fetched + result.sources_missing
    parts = [
        "SUMMARY",
        f"command={result.command}",
        f"sources={result.sources_fetched}/{total_sources}",
    ]
    parts.extend(f"{key}={value}" for key, value in result.counts.items())
    parts.append(f"elapsed_sec={format_number(result.elapsed_seconds)}")
    return " ".join(parts)
