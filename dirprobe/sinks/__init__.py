"""
Sinks package
=============

Consumers of scan results live in this package.  To add a new sink, create a
module in this directory that defines a subclass of
``dirprobe.core.BaseSink``.  ``SinkManager.discover_sinks`` imports every
module here and registers the sinks it finds; each sink decides through
``enabled`` whether it takes part in a given run.

Sinks provided out of the box:

* ``console`` – logs every reportable result as it arrives.
* ``json_lines`` – appends reportable results to the ``--out`` file, one JSON
  object per line.
* ``tree`` – collects findings and logs them as a tree when the scan ends;
  also hosts the helpers used by ``result.view`` and ``result.diff``.
"""

__all__ = [
    "console",
    "json_lines",
    "tree",
]
