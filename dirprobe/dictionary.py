"""
dictionary.py
-------------

Dictionary sources.  A dictionary is an ordered list of path fragments; a
fragment written with a trailing ``/`` is directory-like and becomes a branch
point for recursion when it resolves.

Sources are either a local file or an ``http(s)://`` URL fetched once before
the scan starts.  Any problem with the source is raised as a
``DictionaryError`` so the scan fails before issuing a single request.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Iterable, List

import aiohttp

from dirprobe.core import DictionaryError, Fragment


log = logging.getLogger(__name__)


def parse_dictionary(lines: Iterable[str]) -> List[Fragment]:
    """Turn raw lines into fragments (blank lines and ``#`` comments skipped)."""
    entries: List[str] = []
    for line in lines:
        word = line.strip()
        if not word or word.startswith("#"):
            continue
        entries.append(word)
    # De-dup while preserving order
    return [Fragment.from_line(w) for w in dict.fromkeys(entries)]


def is_remote(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


async def load_dictionary(source: str, timeout_ms: int = 50000) -> List[Fragment]:
    if is_remote(source):
        text = await _fetch_remote(source, timeout_ms)
    else:
        text = _read_local(source)

    fragments = parse_dictionary(text.splitlines())
    if not fragments:
        raise DictionaryError(f"dictionary is empty: {source}")
    log.debug("Loaded %d dictionary entries from %s", len(fragments), source)
    return fragments


def _read_local(source: str) -> str:
    path = Path(source)
    if not path.is_file():
        raise DictionaryError(f"dictionary not found: {source}")
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as exc:
        raise DictionaryError(f"failed to read dictionary {source}: {exc}") from exc


async def _fetch_remote(url: str, timeout_ms: int) -> str:
    timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                if not 200 <= resp.status < 300:
                    raise DictionaryError(f"failed to fetch dictionary {url}: status {resp.status}")
                return await resp.text(errors="ignore")
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise DictionaryError(f"failed to fetch dictionary {url}: {exc or type(exc).__name__}") from exc


def generate_dictionary(root: str) -> List[str]:
    """Build dictionary lines from a local directory tree.

    Every file and directory below ``root`` becomes one entry relative to it;
    directories get a trailing ``/`` so they are expanded when found.
    """
    base = Path(root)
    if not base.is_dir():
        raise DictionaryError(f"not a directory: {root}")

    lines: List[str] = []
    for current, dirs, files in os.walk(base):
        dirs.sort()
        rel_dir = Path(current).relative_to(base)
        for name in dirs:
            lines.append((rel_dir / name).as_posix() + "/")
        for name in sorted(files):
            lines.append((rel_dir / name).as_posix())
    return lines
