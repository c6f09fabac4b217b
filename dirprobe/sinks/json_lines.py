"""
json_lines.py
-------------

Writes reportable results to the file given with ``--out``.  Each line is a
standalone JSON object so partial files from interrupted scans stay usable:

    {"target": "...", "method": "GET", "url": "...", "path": "/admin/", "status": 200, "depth": 0}

``load_results`` reads such a file back for the ``result.*`` commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, IO, List, Optional

from dirprobe.core import BaseSink, ConfigurationError, ScanContext, ScanResult


class JsonLinesSink(BaseSink):
    name = "JsonLinesSink"
    description = "Append reportable results to a JSON lines file"
    priority = 20

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        self._fh: Optional[IO[str]] = None

    @classmethod
    def enabled(cls, context: ScanContext) -> bool:
        return bool(context.out_file)

    def open(self) -> None:
        path = Path(self.context.out_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(path, "w", encoding="utf-8")

    def record(self, result: ScanResult) -> None:
        if self._fh is None or not self.is_reportable(result):
            return
        row: Dict[str, Any] = {
            "target": self.context.target,
            "method": result.method,
            "url": result.url,
            "path": result.path,
            "status": result.status,
            "depth": result.task.depth,
        }
        location = result.headers.get("Location")
        if location:
            row["location"] = location
        self._fh.write(json.dumps(row) + "\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


def load_results(path: str) -> List[Dict[str, Any]]:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"result file not found: {path}")
    rows: List[Dict[str, Any]] = []
    with p.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"{path}:{lineno}: invalid result line: {exc}") from exc
            if not isinstance(row, dict) or "path" not in row:
                raise ConfigurationError(f"{path}:{lineno}: result line has no path")
            rows.append(row)
    return rows
