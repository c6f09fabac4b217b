"""
console.py
----------

Logs results while the scan runs.  Reportable results (a response whose
status is not in the ignore list) are logged at INFO so they show up by
default; ignored statuses only appear with ``-v``.  Transport failures are
already logged by the HTTP executor and are skipped here.
"""

from __future__ import annotations

import logging

from dirprobe.core import BaseSink, ScanResult


log = logging.getLogger(__name__)


class LogSink(BaseSink):
    name = "LogSink"
    description = "Log results to the console as they arrive"
    priority = 10

    def record(self, result: ScanResult) -> None:
        if result.failed:
            return
        location = result.headers.get("Location")
        suffix = f" -> {location}" if location else ""
        if self.is_reportable(result):
            log.info("Found: %s %s [%d]%s", result.method, result.url, result.status, suffix)
        else:
            log.debug("%s %s [%d]", result.method, result.url, result.status)
