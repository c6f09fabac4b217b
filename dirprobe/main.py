"""
dirprobe.main
-------------

Entry point for the scanner.

Commands:
- ``scan <target>``: recursive content discovery against an HTTP(S) target.
- ``result.view``: print the tree of findings stored by ``scan --out``.
- ``result.diff``: compare the findings of two result files.
- ``dictionary.generate``: build a dictionary from a local directory tree.

Scan settings can also be read from a TOML file (``--config``) holding a
``[scan]`` table whose keys mirror the long flag names with underscores
(``threads = 10``, ``cookies = ["name=value"]``, ...).  Flags given on the
command line win over the file, which wins over the built-in defaults.

Run examples:
    # Basic
    dirprobe scan http://10.10.10.10 --dictionary words.txt

    # Remote dictionary, more workers, through a SOCKS5 proxy, keep cookies
    dirprobe scan https://example.com/app/ \
        --dictionary https://example.com/lists/common.txt \
        -t 10 --socks5 127.0.0.1:9050 --use-cookie-jar \
        --header "Authorization: Bearer 123" --out results.jsonl

    # Inspect a previous run
    dirprobe result.view --result-file results.jsonl
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import toml

from dirprobe import __version__
from dirprobe.core import (
    DEFAULT_DICTIONARY_TIMEOUT_MS,
    DEFAULT_HTTP_TIMEOUT_MS,
    DEFAULT_THREADS,
    DEFAULT_USER_AGENT,
    ConfigurationError,
    RecursionPolicy,
    ScanContext,
    SinkManager,
    parse_cookie,
    parse_header,
    parse_methods,
    parse_statuses,
)
from dirprobe.dictionary import generate_dictionary, load_dictionary
from dirprobe.http_client import HttpExecutor
from dirprobe.log import configure_logging
from dirprobe.scanner import Scanner
from dirprobe.sinks.json_lines import load_results
from dirprobe.sinks.tree import build_tree, render_tree


log = logging.getLogger("dirprobe.main")

DEFAULT_SCAN_DEPTH = 3

# Built-in values for every scan option; also the set of keys a config file may use
SCAN_DEFAULTS: Dict[str, Any] = {
    "dictionary": None,
    "threads": DEFAULT_THREADS,
    "http_timeout": DEFAULT_HTTP_TIMEOUT_MS,
    "dictionary_timeout": DEFAULT_DICTIONARY_TIMEOUT_MS,
    "socks5": None,
    "cookies": [],
    "headers": [],
    "user_agent": DEFAULT_USER_AGENT,
    "use_cookie_jar": False,
    "http_methods": "GET",
    "http_statuses_to_ignore": "404",
    "scan_depth": DEFAULT_SCAN_DEPTH,
    "recursion_policy": RecursionPolicy.DIRECTORY.value,
    "out": None,
    "verbose": False,
    "no_color": False,
    "log_file": None,
}


UNLIMITED_DEPTH = -1


def _depth_arg(value: str) -> int:
    if value.strip().lower() == "unlimited":
        return UNLIMITED_DEPTH
    try:
        depth = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid scan depth: {value}")
    if depth < 0:
        raise argparse.ArgumentTypeError(f"scan depth must not be negative: {value}")
    return depth


def _as_depth(value: Any) -> Optional[int]:
    """Config files may say ``"unlimited"`` or any negative number."""
    if value is None or str(value).strip().lower() == "unlimited":
        return None
    try:
        depth = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid scan depth: {value}")
    return None if depth < 0 else depth


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dirprobe",
        description="Recursive content discovery for HTTP servers.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    # scan
    scan = subparsers.add_parser("scan", help="Scan a target for reachable paths.")
    scan.add_argument("target", help="Base URL to scan, e.g. http://10.10.10.10/app/")
    scan.add_argument(
        "-d", "--dictionary",
        default=None,
        help="Dictionary to use: local path or http(s) URL. Lines ending in '/' are expanded when found.",
    )
    scan.add_argument("-t", "--threads", type=int, default=None,
                      help=f"Number of concurrent workers (default: {DEFAULT_THREADS}).")
    scan.add_argument("--http-timeout", type=int, default=None,
                      help=f"Per-request timeout in milliseconds (default: {DEFAULT_HTTP_TIMEOUT_MS}).")
    scan.add_argument("--dictionary-get-timeout", dest="dictionary_timeout", type=int, default=None,
                      help=f"Timeout in milliseconds for fetching a remote dictionary (default: {DEFAULT_DICTIONARY_TIMEOUT_MS}).")
    scan.add_argument("--socks5", default=None, help="SOCKS5 proxy address, e.g. 127.0.0.1:9050.")
    scan.add_argument("--cookie", dest="cookies", action="append", default=None, metavar="NAME=VALUE",
                      help="Cookie sent with every request (repeatable).")
    scan.add_argument("--header", dest="headers", action="append", default=None, metavar='"NAME: VALUE"',
                      help="Header sent with every request (repeatable).")
    scan.add_argument("--user-agent", default=None, help=f"User agent (default: {DEFAULT_USER_AGENT}).")
    scan.add_argument("--use-cookie-jar", action="store_true", default=None,
                      help="Keep cookies set by the server and send them with later requests.")
    scan.add_argument("--http-methods", default=None,
                      help="Comma-separated HTTP methods to try for every path (default: GET).")
    scan.add_argument("--http-statuses-to-ignore", default=None,
                      help="Comma-separated statuses left out of the results (default: 404).")
    scan.add_argument("--scan-depth", type=_depth_arg, default=None,
                      help=f"Maximum recursion depth, or 'unlimited' (default: {DEFAULT_SCAN_DEPTH}).")
    scan.add_argument("--recursion-policy", choices=[p.value for p in RecursionPolicy], default=None,
                      help="'directory' expands only entries ending in '/', 'any-success' expands every 2xx path.")
    scan.add_argument("-o", "--out", default=None, help="Write results to this file (JSON lines).")
    scan.add_argument("--config", default=None, help="TOML file with a [scan] table of default options.")
    scan.add_argument("-v", "--verbose", action="store_true", default=None, help="Verbose output.")
    scan.add_argument("--no-color", action="store_true", default=None, help="Disable colorized console output.")
    scan.add_argument("--log-file", default=None, help="Also append log lines to this file.")
    scan.set_defaults(handler=cmd_scan)

    # result.view
    view = subparsers.add_parser("result.view", help="Print the tree of a previous scan's results.")
    view.add_argument("-r", "--result-file", required=True, help="File written by 'scan --out'.")
    view.set_defaults(handler=cmd_result_view)

    # result.diff
    diff = subparsers.add_parser("result.diff", help="Show paths found by only one of two scans.")
    diff.add_argument("-f", "--first", required=True, help="First result file.")
    diff.add_argument("-s", "--second", required=True, help="Second result file.")
    diff.set_defaults(handler=cmd_result_diff)

    # dictionary.generate
    gen = subparsers.add_parser("dictionary.generate", help="Generate a dictionary from a local directory.")
    gen.add_argument("path", help="Directory to walk.")
    gen.add_argument("-o", "--out", default=None, help="Write the dictionary here instead of stdout.")
    gen.set_defaults(handler=cmd_dictionary_generate)

    return parser


# ---------------------------
# Configuration
# ---------------------------

def load_config_file(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"config file not found: {path}")
    try:
        data = toml.load(p)
    except toml.TomlDecodeError as exc:
        raise ConfigurationError(f"config file {path} is not valid TOML: {exc}") from exc

    section = data.get("scan", {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"config file {path}: [scan] must be a table")
    unknown = sorted(set(section) - set(SCAN_DEFAULTS))
    if unknown:
        raise ConfigurationError(f"config file {path}: unknown option(s): {', '.join(unknown)}")
    return section


def resolve_scan_options(args: argparse.Namespace) -> Dict[str, Any]:
    """Layer command line flags over the config file over the defaults."""
    from_file = load_config_file(args.config) if args.config else {}
    options: Dict[str, Any] = {"target": args.target}
    for key, default in SCAN_DEFAULTS.items():
        cli_value = getattr(args, key, None)
        if cli_value is not None:
            options[key] = cli_value
        elif key in from_file:
            options[key] = from_file[key]
        else:
            options[key] = default
    return options


def _as_csv(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


def _as_list(value: Any, key: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ConfigurationError(f"option {key} must be a string or a list of strings")


def build_context(options: Dict[str, Any]) -> ScanContext:
    if not options["dictionary"]:
        raise ConfigurationError("a dictionary is required (--dictionary)")
    try:
        threads = int(options["threads"])
        http_timeout = int(options["http_timeout"])
        dictionary_timeout = int(options["dictionary_timeout"])
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid numeric option: {exc}") from exc

    return ScanContext(
        target=options["target"],
        dictionary=str(options["dictionary"]),
        threads=threads,
        http_timeout=http_timeout,
        dictionary_timeout=dictionary_timeout,
        socks5=options["socks5"],
        use_cookie_jar=bool(options["use_cookie_jar"]),
        cookies=[parse_cookie(c) for c in _as_list(options["cookies"], "cookies")],
        headers=[parse_header(h) for h in _as_list(options["headers"], "headers")],
        user_agent=str(options["user_agent"]),
        http_methods=parse_methods(_as_csv(options["http_methods"])),
        statuses_to_ignore=parse_statuses(_as_csv(options["http_statuses_to_ignore"])),
        max_depth=_as_depth(options["scan_depth"]),
        recursion_policy=RecursionPolicy.parse(str(options["recursion_policy"])),
        out_file=options["out"],
    )


# ---------------------------
# Commands
# ---------------------------

async def cmd_scan(args: argparse.Namespace) -> int:
    options = resolve_scan_options(args)
    configure_logging(bool(options["verbose"]), no_color=bool(options["no_color"]), log_file=options["log_file"])

    # Everything that can be rejected is checked before the first request
    context = build_context(options)
    for key, value in context.describe().items():
        log.info("%-16s %s", key, value)
    dictionary = await load_dictionary(context.dictionary, context.dictionary_timeout)

    manager = SinkManager(context)
    manager.discover_sinks()
    manager.instantiate_sinks()
    manager.open()
    try:
        async with HttpExecutor(context) as executor:
            scanner = Scanner(context, dictionary, executor, manager)
            installed = _install_interrupt_handler(scanner)
            try:
                summary = await scanner.scan()
            finally:
                if installed:
                    asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
    finally:
        manager.close()

    return 130 if summary.cancelled else 0


def _install_interrupt_handler(scanner: Scanner) -> bool:
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, scanner.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        # Windows event loops and non-main threads fall back to KeyboardInterrupt
        return False
    return True


async def cmd_result_view(args: argparse.Namespace) -> int:
    rows = load_results(args.result_file)
    label = str(rows[0].get("target", "/")) if rows else "/"
    print(render_tree(build_tree(row["path"] for row in rows), root_label=label))
    return 0


async def cmd_result_diff(args: argparse.Namespace) -> int:
    first = {row["path"] for row in load_results(args.first)}
    second = {row["path"] for row in load_results(args.second)}
    for path in sorted(first - second):
        print(f"- {path}")
    for path in sorted(second - first):
        print(f"+ {path}")
    return 0


async def cmd_dictionary_generate(args: argparse.Namespace) -> int:
    lines = generate_dictionary(args.path)
    text = "\n".join(lines) + ("\n" if lines else "")
    if args.out:
        Path(args.out).write_text(text, encoding="utf-8")
        print(f"[*] Wrote {len(lines)} entries to {args.out}")
    else:
        sys.stdout.write(text)
    return 0


async def run_command(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
        return 2
    try:
        return await args.handler(args)
    except ConfigurationError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        return asyncio.run(run_command(argv))
    except KeyboardInterrupt:
        print("\n[!] Interrupted by user.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
