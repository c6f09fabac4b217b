"""
tree.py
-------

Renders findings as an indented path tree, e.g.::

    /
    ├── admin/
    │   └── login.php
    └── robots.txt

``TreeSink`` logs the tree of the current run once the scan has finished.
The helpers are shared with the ``result.view`` and ``result.diff`` commands.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from dirprobe.core import BaseSink, ScanContext, ScanResult


log = logging.getLogger(__name__)

Tree = Dict[str, "Tree"]


def build_tree(paths: Iterable[str]) -> Tree:
    root: Tree = {}
    for path in paths:
        segments = [s for s in path.split("/") if s]
        node = root
        for i, segment in enumerate(segments):
            last = i == len(segments) - 1
            # Directories keep their trailing separator in the label
            label = segment if last and not path.endswith("/") else segment + "/"
            node = node.setdefault(label, {})
    return root


def render_tree(tree: Tree, root_label: str = "/") -> str:
    lines: List[str] = [root_label]

    def walk(node: Tree, prefix: str) -> None:
        names = sorted(node)
        for i, name in enumerate(names):
            last = i == len(names) - 1
            lines.append(f"{prefix}{'└── ' if last else '├── '}{name}")
            walk(node[name], prefix + ("    " if last else "│   "))

    walk(tree, "")
    return "\n".join(lines)


class TreeSink(BaseSink):
    name = "TreeSink"
    description = "Log the tree of findings when the scan ends"
    priority = 90

    def __init__(self, context: ScanContext) -> None:
        super().__init__(context)
        self.paths: List[str] = []

    def record(self, result: ScanResult) -> None:
        if self.is_reportable(result):
            self.paths.append(result.path)

    def close(self) -> None:
        if not self.paths:
            log.info("No results found")
            return
        label = f"{self.context.origin}{self.context.base_path}"
        log.info("Results:\n%s", render_tree(build_tree(self.paths), root_label=label))
