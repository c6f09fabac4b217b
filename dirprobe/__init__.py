"""
dirprobe
========

Recursive content discovery for HTTP servers.  Given a target URL and a
dictionary of path fragments, ``dirprobe`` issues guessed requests with a
bounded pool of asyncio workers and expands the search into every
directory-like resource it discovers.

The package is split into a handful of small modules:

* ``core`` – data model, configuration snapshot and error types.
* ``dictionary`` – loading dictionaries from local files or URLs.
* ``http_client`` – the shared aiohttp transport that executes requests.
* ``scanner`` – the task queue, visited set, directory classifier and the
  worker pool driving a scan.
* ``sinks`` – pluggable consumers of scan results (console, JSON lines,
  findings tree).
* ``main`` – the command line entry point.
"""

__version__ = "0.3.0"

__all__ = [
    "core",
    "dictionary",
    "http_client",
    "scanner",
    "sinks",
    "main",
]
