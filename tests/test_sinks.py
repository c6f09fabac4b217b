from __future__ import annotations

import json
import logging

from dirprobe.core import BaseSink, Fragment, ScanContext, ScanResult, ScanTask, SinkManager
from dirprobe.sinks.console import LogSink
from dirprobe.sinks.json_lines import JsonLinesSink, load_results
from dirprobe.sinks.tree import TreeSink, build_tree, render_tree


def _context(**kwargs) -> ScanContext:
    return ScanContext(target="http://target.test/", dictionary="unused", **kwargs)


def _result(fragment: str, status=None, error=None, base: str = "/", headers=None) -> ScanResult:
    task = ScanTask(base_path=base, fragment=Fragment.from_line(fragment))
    return ScanResult(task=task, url="http://target.test" + task.path, status=status, error=error,
                      headers=headers or {})


def test_discovery_registers_builtin_sinks_by_priority(tmp_path):
    manager = SinkManager(_context(out_file=str(tmp_path / "out.jsonl")))
    manager.discover_sinks()
    manager.instantiate_sinks()
    assert [type(s) for s in manager.sinks] == [LogSink, JsonLinesSink, TreeSink]


def test_json_sink_only_enabled_with_out_file():
    manager = SinkManager(_context())
    manager.discover_sinks()
    manager.instantiate_sinks()
    assert JsonLinesSink not in [type(s) for s in manager.sinks]


def test_failing_sink_does_not_stop_the_others(caplog):
    class Broken(BaseSink):
        name = "Broken"

        def record(self, result):
            raise RuntimeError("boom")

    class Collect(BaseSink):
        name = "Collect"

        def __init__(self, context):
            super().__init__(context)
            self.seen = []

        def record(self, result):
            self.seen.append(result)

    ctx = _context()
    collect = Collect(ctx)
    manager = SinkManager(ctx, sinks=[Broken(ctx), collect])
    manager.record(_result("home", status=200))

    assert len(collect.seen) == 1
    assert "Error in Broken" in caplog.text


def test_log_sink_levels(caplog):
    caplog.set_level(logging.DEBUG, logger="dirprobe")
    sink = LogSink(_context())
    sink.record(_result("admin/", status=301, headers={"Location": "/admin/login"}))
    sink.record(_result("missing", status=404))
    sink.record(_result("broken", error="connection refused"))

    found = [r for r in caplog.records if r.levelno == logging.INFO]
    assert len(found) == 1
    assert "Found: GET http://target.test/admin/ [301] -> /admin/login" in found[0].getMessage()
    assert any("/missing [404]" in r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG)
    assert not any("broken" in r.getMessage() for r in caplog.records)


def test_json_lines_sink_round_trip(tmp_path):
    out = tmp_path / "nested" / "out.jsonl"
    ctx = _context(out_file=str(out), statuses_to_ignore={404, 403})
    sink = JsonLinesSink(ctx)
    sink.open()
    sink.record(_result("test/", status=200))
    sink.record(_result("secret", status=403))
    sink.record(_result("down", error="timeout"))
    sink.record(_result("home", status=200, base="/test/"))
    sink.close()

    rows = load_results(str(out))
    assert [r["path"] for r in rows] == ["/test/", "/test/home"]
    assert all("error" not in r and isinstance(r["status"], int) for r in rows)
    assert json.loads(out.read_text().splitlines()[0])["status"] == 200


def test_tree_sink_logs_findings(caplog):
    caplog.set_level(logging.INFO, logger="dirprobe")
    sink = TreeSink(_context())
    sink.record(_result("test/", status=200))
    sink.record(_result("home", status=404))
    sink.record(_result("index.php", status=200, base="/test/"))
    sink.close()

    assert "http://target.test/" in caplog.text
    assert "└── test/" in caplog.text
    assert "    └── index.php" in caplog.text


def test_render_tree_nests_directories():
    tree = build_tree(["/admin/", "/admin/login.php", "/admin/css/site.css", "/robots.txt"])
    assert render_tree(tree) == "\n".join([
        "/",
        "├── admin/",
        "│   ├── css/",
        "│   │   └── site.css",
        "│   └── login.php",
        "└── robots.txt",
    ])
