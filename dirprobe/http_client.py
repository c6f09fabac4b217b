"""
http_client.py
--------------

The request executor.  One ``aiohttp.ClientSession`` is built per scan run
and shared by every worker, so connection pooling and the optional cookie jar
are common to the whole run.  Requests can be tunnelled through a SOCKS5
proxy via ``aiohttp_socks``.

``execute`` never raises for transport problems: connection refused, DNS
failures, timeouts and proxy failures are logged and returned as a failed
``ScanResult`` so only that task's branch stops expanding.

The ``Cookie`` header is assembled here rather than by the session: static
cookies go first, in the order they were given, followed by whatever the
run's cookie jar holds for the URL.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import aiohttp
from aiohttp_socks import ProxyConnectionError, ProxyConnector, ProxyError, ProxyTimeoutError
from yarl import URL

from dirprobe.core import ScanContext, ScanResult, ScanTask


log = logging.getLogger(__name__)


class HttpExecutor:
    """Executes scan tasks against the target with a shared transport."""

    def __init__(self, context: ScanContext) -> None:
        self.context = context
        self._session: Optional[aiohttp.ClientSession] = None
        self._jar: Optional[aiohttp.CookieJar] = None

        self._headers: Dict[str, str] = {"User-Agent": context.user_agent}
        for name, value in context.headers:
            self._headers[name] = value
        self._cookies: List[Tuple[str, str]] = list(context.cookies)

    async def __aenter__(self) -> "HttpExecutor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        if self._session is not None:
            return
        if self.context.proxy_url:
            connector: aiohttp.BaseConnector = ProxyConnector.from_url(self.context.proxy_url)
        else:
            connector = aiohttp.TCPConnector()
        if self.context.use_cookie_jar:
            # unsafe=True keeps cookies set by bare IP hosts
            self._jar = aiohttp.CookieJar(unsafe=True)
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.context.http_timeout / 1000),
            cookie_jar=aiohttp.DummyCookieJar(),
            headers=self._headers,
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._jar = None

    def url_for(self, task: ScanTask) -> str:
        """Absolute URL for ``task`` with its path percent-encoded.

        Dictionary entries are literal path text, so ``?``, ``#`` and ``%``
        are escaped instead of being read as query, fragment or escapes.
        """
        return f"{self.context.origin}{quote(task.path, safe='/')}"

    def cookie_header(self, url: URL) -> str:
        pairs = list(self._cookies)
        if self._jar is not None:
            static = {name for name, _ in pairs}
            for name, morsel in self._jar.filter_cookies(url).items():
                if name not in static:
                    pairs.append((name, morsel.value))
        return "; ".join(f"{name}={value}" for name, value in pairs)

    async def execute(self, task: ScanTask) -> ScanResult:
        if self._session is None:
            raise RuntimeError("HttpExecutor.start() must be awaited before execute()")

        url = self.url_for(task)
        request_url = URL(url, encoded=True)
        headers: Dict[str, str] = {}
        cookie = self.cookie_header(request_url)
        if cookie:
            headers["Cookie"] = cookie

        try:
            async with self._session.request(
                task.method,
                request_url,
                allow_redirects=False,
                headers=headers or None,
            ) as resp:
                # Drain the body so the connection goes back to the pool
                await resp.read()
                if self._jar is not None:
                    self._jar.update_cookies(resp.cookies, resp.url)
                resp_headers = {k: v for k, v in resp.headers.items()}
                return ScanResult(task=task, url=url, status=resp.status, headers=resp_headers)
        except (asyncio.TimeoutError, ProxyTimeoutError):
            error = f"timeout after {self.context.http_timeout}ms"
        except (aiohttp.ClientError, ProxyConnectionError, ProxyError, OSError) as exc:
            error = str(exc) or type(exc).__name__

        log.error("failed to perform request %s %s: %s", task.method, url, error)
        return ScanResult(task=task, url=url, error=error)
