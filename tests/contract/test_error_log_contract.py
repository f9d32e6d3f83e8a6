from __future__ import annotations

import json
import re

from portfolio_snapshot.logging.error_log import ErrorLogBuffer, ErrorRecord
from portfolio_snapshot.models.error_record import RUN_LEVEL

"""Error log contract.

- file name: logs/errors-YYYYMMDD-HHMMSS.log
- one JSON object per line with exactly the ErrorRecord keys
- timestamp: ISO8601 UTC with Z suffix, error_type: UPPER_SNAKE
"""

FILE_NAME = re.compile(r"^errors-\d{8}-\d{6}\.log$")
TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$")
UPPER_SNAKE = re.compile(r"^[A-Z]+(_[A-Z]+)*$")
KEYS = ["timestamp", "command", "source", "source_id", "error_type", "message"]


def test_error_log_line_format(temp_workdir):
    buf = ErrorLogBuffer()
    buf.append(ErrorRecord.create("dept-health", "dept_penetration_last", "1413", "FETCH_FAILED", "HTTP 500 \"x\""))
    buf.append(ErrorRecord.create("snapshot", RUN_LEVEL, "", "PIPELINE_ERROR", "日本語メッセージ"))
    path = buf.flush()
    assert FILE_NAME.match(path.name)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    for line in lines:
        obj = json.loads(line)
        assert list(obj) == KEYS
        assert TIMESTAMP.match(obj["timestamp"])
        assert UPPER_SNAKE.match(obj["error_type"])
    # ensure_ascii=False
    assert "日本語メッセージ" in lines[1]
