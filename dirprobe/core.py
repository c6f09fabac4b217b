"""
core.py
-------

Core abstractions shared by every part of the scanner: the configuration
snapshot a scan runs with, the units of work handled by the engine, the
results handed to sinks and the error types raised before any request is
issued.

Everything in here is plain data plus a few parsing helpers.  Nothing in this
module touches the network, which keeps it trivial to test and lets the CLI
validate user input before a single request is sent.
"""

from __future__ import annotations

import enum
import importlib
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Type
from urllib.parse import urlparse

from dirprobe import __version__


log = logging.getLogger(__name__)


DEFAULT_USER_AGENT = f"dirprobe/{__version__}"
DEFAULT_THREADS = 3
DEFAULT_HTTP_TIMEOUT_MS = 5000
DEFAULT_DICTIONARY_TIMEOUT_MS = 50000


# ---------------------------
# Errors
# ---------------------------

class DirprobeError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(DirprobeError, ValueError):
    """Invalid user input: flags, cookies, headers, config file, target."""


class DictionaryError(ConfigurationError):
    """The dictionary source is missing, unreachable, malformed or empty."""


class QueueStateError(DirprobeError, RuntimeError):
    """A task queue invariant was violated (e.g. ``mark_done`` underflow)."""


# ---------------------------
# Policies
# ---------------------------

class RecursionPolicy(str, enum.Enum):
    """Which successful results open a new generation of tasks.

    ``DIRECTORY`` only expands fragments written with a trailing separator
    (``admin/``); ``ANY_SUCCESS`` expands every path that answered 2xx.
    """

    DIRECTORY = "directory"
    ANY_SUCCESS = "any-success"

    @classmethod
    def parse(cls, value: str) -> "RecursionPolicy":
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ConfigurationError(f"unknown recursion policy: {value} (expected one of {choices})")


# ---------------------------
# Data model
# ---------------------------

@dataclass(frozen=True)
class Fragment:
    """One dictionary entry."""

    value: str
    is_directory: bool = False

    @classmethod
    def from_line(cls, line: str) -> "Fragment":
        return cls(value=line, is_directory=line.endswith("/"))


@dataclass(frozen=True)
class ScanTask:
    """A (base path, fragment) pair waiting to be requested."""

    base_path: str
    fragment: Fragment
    depth: int = 0
    method: str = "GET"

    @property
    def path(self) -> str:
        return join_path(self.base_path, self.fragment.value)

    @property
    def key(self) -> Tuple[str, str]:
        # Deduplication key used by the visited set
        return self.method, self.path


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one executed request.

    Exactly one of ``status`` and ``error`` is populated: a response was
    received (whatever its status) or the transport failed.
    """

    task: ScanTask
    url: str
    status: Optional[int] = None
    error: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.status is None) == (self.error is None):
            raise ValueError("a scan result carries exactly one of status or error")

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def path(self) -> str:
        return self.task.path

    @property
    def method(self) -> str:
        return self.task.method

    def is_success(self) -> bool:
        return self.status is not None and 200 <= self.status < 300


@dataclass
class ScanSummary:
    """Counters reported once every worker has returned."""

    requests: int = 0
    errors: int = 0
    found: int = 0
    cancelled: bool = False


@dataclass
class ScanContext:
    """Read-only configuration snapshot for one scan run.

    Built once by the CLI (flags layered over an optional TOML file) and
    shared by the engine, the HTTP executor and the sinks.  Validation runs
    in ``__post_init__`` so a bad value never reaches the network.
    """

    target: str
    dictionary: str
    threads: int = DEFAULT_THREADS
    # Timeouts are expressed in milliseconds
    http_timeout: int = DEFAULT_HTTP_TIMEOUT_MS
    dictionary_timeout: int = DEFAULT_DICTIONARY_TIMEOUT_MS
    socks5: Optional[str] = None
    use_cookie_jar: bool = False
    cookies: List[Tuple[str, str]] = field(default_factory=list)
    headers: List[Tuple[str, str]] = field(default_factory=list)
    user_agent: str = DEFAULT_USER_AGENT
    http_methods: List[str] = field(default_factory=lambda: ["GET"])
    statuses_to_ignore: Set[int] = field(default_factory=lambda: {404})
    # None means unlimited recursion
    max_depth: Optional[int] = None
    recursion_policy: RecursionPolicy = RecursionPolicy.DIRECTORY
    out_file: Optional[str] = None

    origin: str = field(init=False)
    base_path: str = field(init=False)

    def __post_init__(self) -> None:
        if self.threads < 1:
            raise ConfigurationError(f"threads must be at least 1, got {self.threads}")
        if self.http_timeout <= 0:
            raise ConfigurationError(f"http timeout must be positive, got {self.http_timeout}")
        if self.dictionary_timeout <= 0:
            raise ConfigurationError(f"dictionary timeout must be positive, got {self.dictionary_timeout}")
        if self.max_depth is not None and self.max_depth < 0:
            raise ConfigurationError(f"scan depth must not be negative, got {self.max_depth}")
        if not self.http_methods:
            raise ConfigurationError("at least one HTTP method is required")
        if not isinstance(self.recursion_policy, RecursionPolicy):
            self.recursion_policy = RecursionPolicy.parse(str(self.recursion_policy))
        if self.socks5:
            self.socks5 = parse_socks5(self.socks5)
        self.origin, self.base_path = normalize_target(self.target)

    @property
    def proxy_url(self) -> Optional[str]:
        return f"socks5://{self.socks5}" if self.socks5 else None

    def describe(self) -> Dict[str, object]:
        """Flat view of the settings worth echoing before a scan starts."""
        return {
            "target": self.target,
            "dictionary": self.dictionary,
            "threads": self.threads,
            "http_timeout_ms": self.http_timeout,
            "http_methods": ",".join(self.http_methods),
            "user_agent": self.user_agent,
            "cookies": "; ".join(f"{k}={v}" for k, v in self.cookies),
            "headers": "; ".join(f"{k}: {v}" for k, v in self.headers),
            "socks5": self.socks5 or "-",
            "use_cookie_jar": self.use_cookie_jar,
            "scan_depth": "unlimited" if self.max_depth is None else self.max_depth,
            "recursion_policy": self.recursion_policy.value,
        }


# ---------------------------
# Parsing helpers
# ---------------------------

def parse_cookie(raw: str) -> Tuple[str, str]:
    """Parse a ``name=value`` literal."""
    name, sep, value = raw.strip().partition("=")
    name = name.strip()
    if not sep or not name or any(c in name for c in " ;,"):
        raise ConfigurationError(f"cookie format is invalid: {raw}")
    return name, value.strip()


def parse_header(raw: str) -> Tuple[str, str]:
    """Parse a ``Name: value`` literal, tolerating surrounding quotes."""
    text = raw.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    name, sep, value = text.partition(":")
    name = name.strip()
    if not sep or not name or any(c.isspace() for c in name):
        raise ConfigurationError(f"header is in invalid format: {raw}")
    return name, value.strip()


def parse_methods(raw: str) -> List[str]:
    methods: List[str] = []
    for token in raw.split(","):
        token = token.strip().upper()
        if not token:
            continue
        if not token.isalpha():
            raise ConfigurationError(f"invalid HTTP method: {token}")
        if token not in methods:
            methods.append(token)
    if not methods:
        raise ConfigurationError(f"no HTTP methods given: {raw!r}")
    return methods


def parse_statuses(raw: str) -> Set[int]:
    statuses: Set[int] = set()
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            code = int(token)
        except ValueError:
            raise ConfigurationError(f"invalid HTTP status code: {token}")
        if not 100 <= code <= 599:
            raise ConfigurationError(f"invalid HTTP status code: {token}")
        statuses.add(code)
    return statuses


def parse_socks5(raw: str) -> str:
    """Validate a SOCKS5 ``host:port`` address (an explicit scheme is tolerated)."""
    addr = raw.strip()
    if addr.lower().startswith("socks5://"):
        addr = addr[len("socks5://"):]
    host, sep, port = addr.rpartition(":")
    if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
        raise ConfigurationError(f"socks5 address is invalid: {raw}")
    return addr


def normalize_target(target: str) -> Tuple[str, str]:
    """Split a target URL into its origin and a base path ending with ``/``."""
    parsed = urlparse(target.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"target is not a valid http(s) URL: {target}")
    origin = f"{parsed.scheme}://{parsed.netloc}"
    base = join_path("/", parsed.path)
    if not base.endswith("/"):
        base += "/"
    return origin, base


def join_path(base: str, fragment: str) -> str:
    """Append ``fragment`` to ``base`` and normalize the result.

    Duplicate separators collapse, ``.`` and ``..`` segments resolve (never
    above the root) and a trailing separator is preserved so directory-like
    fragments stay directory-like.
    """
    raw = base.rstrip("/") + "/" + fragment.lstrip("/")
    trailing = raw.endswith("/")
    parts: List[str] = []
    for segment in raw.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    path = "/" + "/".join(parts)
    if trailing and parts:
        path += "/"
    return path


# ---------------------------
# Result sinks
# ---------------------------

class BaseSink:
    """Abstract base class for every consumer of scan results.

    The engine calls ``record`` exactly once per executed task, from whichever
    worker ran it.  Sinks receive results by value and must not hold on to
    engine state.  ``open`` runs before the first request and ``close`` once
    the scan has finished (or was cancelled).
    """

    name: str = "BaseSink"
    description: str = ""
    priority: int = 50  # sinks run in ascending order of priority

    def __init__(self, context: ScanContext) -> None:
        self.context = context

    @classmethod
    def enabled(cls, context: ScanContext) -> bool:
        """Whether this sink should be active for the given configuration."""
        return True

    def is_reportable(self, result: ScanResult) -> bool:
        return not result.failed and result.status not in self.context.statuses_to_ignore

    def open(self) -> None:
        return None

    def record(self, result: ScanResult) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


class SinkManager(BaseSink):
    """Loads the built-in sinks and fans every result out to them.

    Built-in sinks live in the ``dirprobe.sinks`` package; any subclass of
    ``BaseSink`` defined there is registered.  If one sink raises while
    handling a result the error is logged and the remaining sinks (and the
    scan) carry on.
    """

    name = "SinkManager"

    def __init__(self, context: ScanContext, sinks: Optional[Iterable[BaseSink]] = None) -> None:
        super().__init__(context)
        self._registry: List[Type[BaseSink]] = []
        self._instances: List[BaseSink] = list(sinks or [])

    @property
    def sinks(self) -> List[BaseSink]:
        return list(self._instances)

    def discover_sinks(self) -> None:
        import dirprobe.sinks as pkg
        package_path = Path(pkg.__file__).parent
        for file in sorted(package_path.glob("*.py")):
            if file.name.startswith("_"):
                continue
            module = importlib.import_module(f"dirprobe.sinks.{file.stem}")
            self._register_from_module(module)

    def _register_from_module(self, module: ModuleType) -> None:
        for _, obj in inspect.getmembers(module, inspect.isclass):
            if obj in (BaseSink, SinkManager) or not issubclass(obj, BaseSink):
                continue
            if obj.__module__ == module.__name__ and obj not in self._registry:
                self._registry.append(obj)

    def instantiate_sinks(self) -> None:
        for cls in sorted(self._registry, key=lambda c: getattr(c, "priority", 50)):
            if cls.enabled(self.context):
                self._instances.append(cls(self.context))
        log.debug("Active sinks: %s", ", ".join(s.name for s in self._instances) or "none")

    def open(self) -> None:
        for sink in self._instances:
            sink.open()

    def record(self, result: ScanResult) -> None:
        for sink in self._instances:
            try:
                sink.record(result)
            except Exception as exc:
                log.error("Error in %s while recording %s: %s", sink.name, result.url, exc)

    def close(self) -> None:
        for sink in self._instances:
            try:
                sink.close()
            except Exception as exc:
                log.error("Error in %s while closing: %s", sink.name, exc)
