"""
Shared fixtures: free ports, servers that are always stopped, an HTTP client.
"""

import socket

import aiohttp
import pytest

from mockhttp import Server, ServerState


def free_port() -> int:
    """A port nothing is listening on right now"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def make_server():
    """Factory for servers on free ports, stopped at teardown if still running"""
    servers = []

    def factory(handler, port=None, **kwargs):
        server = Server(free_port() if port is None else port, handler, **kwargs)
        servers.append(server)
        return server

    yield factory

    for server in servers:
        if server.state is ServerState.RUNNING:
            server.stop()


@pytest.fixture
def fetch():
    """Async helper returning (status, headers, body) for one request"""

    async def _fetch(url, method="GET", **kwargs):
        async with aiohttp.ClientSession() as session:
            async with session.request(method, url, **kwargs) as resp:
                body = await resp.read()
                return resp.status, resp.headers, body

    return _fetch
