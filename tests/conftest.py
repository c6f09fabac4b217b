"""Shared fixtures: in-process aiohttp servers that record every request."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)


async def not_found(request: web.Request) -> web.StreamResponse:
    return web.Response(status=404)


class RecordingServer:
    """aiohttp test server answering every path through ``handler``."""

    def __init__(self, handler: Optional[Handler] = None) -> None:
        self.handler = handler or not_found
        self.requests: List[RecordedRequest] = []
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._dispatch)
        self.server = TestServer(app)

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                path=request.path,
                headers=dict(request.headers),
                cookies=dict(request.cookies),
            )
        )
        return await self.handler(request)

    async def start(self) -> None:
        await self.server.start_server()

    async def close(self) -> None:
        await self.server.close()

    @property
    def url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def paths(self) -> List[str]:
        return [r.path for r in self.requests]


@pytest_asyncio.fixture
async def make_server():
    servers: List[RecordingServer] = []

    async def factory(handler: Optional[Handler] = None) -> RecordingServer:
        srv = RecordingServer(handler)
        await srv.start()
        servers.append(srv)
        return srv

    yield factory

    for srv in servers:
        await srv.close()


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while True:
            data = await reader.read(65536)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass
    finally:
        writer.close()


class Socks5Relay:
    """Minimal no-auth SOCKS5 server supporting CONNECT.

    With ``stall=True`` it accepts connections and never answers the greeting.
    """

    def __init__(self, stall: bool = False) -> None:
        self.stall = stall
        self.connections = 0
        self._writers: List[asyncio.StreamWriter] = []
        self._server: Optional[asyncio.AbstractServer] = None
        self.port = 0

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def close(self) -> None:
        assert self._server is not None
        self._server.close()
        for writer in self._writers:
            writer.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            if self.stall:
                await reader.read()
                return
            _, nmethods = await reader.readexactly(2)
            await reader.readexactly(nmethods)
            writer.write(b"\x05\x00")
            await writer.drain()

            _, _, _, atyp = await reader.readexactly(4)
            if atyp == 1:
                host = socket.inet_ntoa(await reader.readexactly(4))
            elif atyp == 3:
                (length,) = await reader.readexactly(1)
                host = (await reader.readexactly(length)).decode()
            else:
                host = socket.inet_ntop(socket.AF_INET6, await reader.readexactly(16))
            port = int.from_bytes(await reader.readexactly(2), "big")

            up_reader, up_writer = await asyncio.open_connection(host, port)
            self._writers.append(up_writer)
            writer.write(b"\x05\x00\x00\x01" + bytes(6))
            await writer.drain()
            await asyncio.gather(_pipe(reader, up_writer), _pipe(up_reader, writer))
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


@pytest_asyncio.fixture
async def socks5_relay():
    relays: List[Socks5Relay] = []

    async def factory(stall: bool = False) -> Socks5Relay:
        relay = Socks5Relay(stall=stall)
        await relay.start()
        relays.append(relay)
        return relay

    yield factory

    for relay in relays:
        await relay.close()


@pytest.fixture
def write_dictionary(tmp_path: Path):
    def factory(*lines: str, name: str = "dict.txt") -> str:
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return factory


@pytest.fixture(autouse=True)
def reset_dirprobe_logger():
    """The CLI attaches handlers to the ``dirprobe`` logger; drop them between tests."""
    yield
    logger = logging.getLogger("dirprobe")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
