"""
Mock HTTP server with an explicit start/stop lifecycle.

This module implements the embeddable server with features including:
- Asynchronous I/O using asyncio on a dedicated event loop thread
- Synchronous, restartable start()/stop() guarded by a state machine
- Graceful shutdown that drains in-flight requests
- One outbound client per run for the redirect adapter
"""

import asyncio
import enum
import socket
import ssl
import threading
from typing import Dict, Optional

from .chain import Handler
from .errors import AlreadyStarted, NotRunning
from .request_handler import ConnectionHandler
from .server_utils import (
    ServerConfigError, default_logger, get_server_kwargs, new_event_loop, validate_port,
    validate_positive,
)
from ..features.client import UpstreamClient


class ServerState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class Server:
    """Embeddable HTTP server routing every request through one handler.

    Attributes:
        port: Port requested at construction (0 asks the OS for a free one)
        handler: Entry handler unit, usually built with chain()
        host: Host address to bind to
        state: Current ServerState
    """

    def __init__(self, port: int, handler: Handler, *,
                 host: str = "127.0.0.1",
                 read_timeout: float = 10.0,
                 body_limit: int = 10 * 1024 * 1024,
                 max_requests: int = 1000,
                 shutdown_timeout: float = 5.0,
                 upstream_timeout: float = 30.0,
                 compress_responses: bool = True,
                 ssl_context: Optional[ssl.SSLContext] = None,
                 metrics_path: Optional[str] = None,
                 use_uvloop: bool = True):
        """Initialize the server without binding anything.

        Args:
            port: Port number to listen on
            handler: Handler unit called for every request
            host: Host address to bind to
            read_timeout: Seconds to wait for request data (also the
                keep-alive idle timeout)
            body_limit: Maximum request body size in bytes
            max_requests: Maximum requests served per connection
            shutdown_timeout: Seconds stop() waits for in-flight requests
                before cancelling them
            upstream_timeout: Default timeout of the outbound client
            compress_responses: gzip/deflate responses the client accepts
            ssl_context: Optional ssl.SSLContext to serve HTTPS
            metrics_path: Path answered with Prometheus metrics, if any
            use_uvloop: Run on uvloop when it is installed

        Raises:
            ValueError: If any setting is out of range
        """
        self.port = validate_port(port)
        if not callable(handler):
            raise ServerConfigError("Handler must be callable")
        self.handler = handler
        self.host = host
        self.read_timeout = validate_positive("Read timeout", read_timeout)
        self.body_limit = validate_positive("Body limit", body_limit, int)
        self.max_requests = validate_positive("Max requests", max_requests, int)
        self.shutdown_timeout = validate_positive("Shutdown timeout", shutdown_timeout)
        self.upstream_timeout = validate_positive("Upstream timeout", upstream_timeout)
        if metrics_path is not None and not metrics_path.startswith("/"):
            raise ServerConfigError("Metrics path must start with '/'")
        self.compress_responses = compress_responses
        self.ssl_context = ssl_context
        self.metrics_path = metrics_path
        self.use_uvloop = use_uvloop

        self._state = ServerState.IDLE
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._listener: Optional[asyncio.AbstractServer] = None
        self._client: Optional[UpstreamClient] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._connections: Dict[asyncio.Task, ConnectionHandler] = {}
        self._bound_port: Optional[int] = None

    def __repr__(self) -> str:
        return f"<Server {self.host}:{self.port} {self._state.value}>"

    def __enter__(self) -> "Server":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is ServerState.RUNNING:
            self.stop()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def bound_port(self) -> Optional[int]:
        """Port actually listened on while running, else None"""
        return self._bound_port

    @property
    def url(self) -> str:
        scheme = "https" if self.ssl_context else "http"
        return f"{scheme}://{self.host}:{self._bound_port or self.port}"

    def _check_not_on_own_loop(self, operation: str) -> None:
        if self._thread is not None and threading.current_thread() is self._thread:
            raise RuntimeError(f"Server.{operation}() cannot be called from its own handlers")

    def start(self) -> None:
        """Bind the port and start serving on a background event loop thread.

        Raises:
            AlreadyStarted: If the server is starting or running
            OSError: If the port cannot be bound (in use, permission denied)
        """
        self._check_not_on_own_loop("start")
        with self._lock:
            if self._state is not ServerState.IDLE:
                raise AlreadyStarted(self.port)
            self._state = ServerState.STARTING

            loop = new_event_loop(self.use_uvloop)
            thread = threading.Thread(target=self._run_loop, args=(loop,),
                                      name=f"mockhttp-{self.port}", daemon=True)
            thread.start()
            self._loop, self._thread = loop, thread
            try:
                asyncio.run_coroutine_threadsafe(self._bind(), loop).result()
            except BaseException:
                self._halt_loop()
                self._state = ServerState.IDLE
                raise
            self._state = ServerState.RUNNING

        protocol = "https" if self.ssl_context else "http"
        default_logger.info("Server started on %s://%s:%s", protocol, self.host, self._bound_port)

    def stop(self) -> None:
        """Stop serving, drain in-flight requests and release the port.

        Raises:
            NotRunning: If the server is not running
        """
        self._check_not_on_own_loop("stop")
        with self._lock:
            if self._state is not ServerState.RUNNING:
                raise NotRunning(self.port, self._state.value)
            self._state = ServerState.STOPPING
            try:
                asyncio.run_coroutine_threadsafe(
                    self.shutdown(self.shutdown_timeout), self._loop).result()
            finally:
                self._halt_loop()
                self._state = ServerState.IDLE

        default_logger.info("Server on port %s stopped", self.port)

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            try:
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()

    def _halt_loop(self) -> None:
        loop, thread = self._loop, self._thread
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join()
        self._loop = self._thread = None
        self._listener = None
        self._client = None
        self._bound_port = None

    async def _bind(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._client = UpstreamClient(timeout=self.upstream_timeout)
        self._connections = {}
        try:
            self._listener = await asyncio.start_server(
                self.handle_client,
                self.host,
                self.port,
                ssl=self.ssl_context,
                **get_server_kwargs()
            )
        except BaseException:
            await self._client.close()
            raise
        sockets = self._listener.sockets
        self._bound_port = sockets[0].getsockname()[1] if sockets else self.port

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Initiate graceful server shutdown.

        Stops accepting new connections, closes idle keep-alive connections,
        and waits for in-flight requests to complete before cancelling them.

        Args:
            timeout: Maximum time in seconds to wait for in-flight requests
        """
        default_logger.info("Initiating graceful shutdown of port %s...", self._bound_port)
        self._shutdown_event.set()
        self._listener.close()
        # let connections accepted just before close() register themselves
        await asyncio.sleep(0)

        idle = [task for task, conn in self._connections.items() if conn.idle]
        busy = [task for task, conn in self._connections.items() if not conn.idle]
        for task in idle:
            task.cancel()

        if busy:
            default_logger.info("Waiting for %d in-flight requests to complete...", len(busy))
            done, pending = await asyncio.wait(busy, timeout=timeout)
            if pending:
                default_logger.warning("Force closing %d connections that didn't complete in time",
                                       len(pending))
                for task in pending:
                    task.cancel()
        remaining = list(self._connections)
        if remaining:
            await asyncio.wait(remaining)

        await self._listener.wait_closed()
        await self._client.close()
        default_logger.info("Server shutdown complete")

    async def handle_client(self, reader: asyncio.StreamReader,
                            writer: asyncio.StreamWriter) -> None:
        """Serve one accepted connection until it closes or the server stops.

        Args:
            reader: StreamReader for receiving client data
            writer: StreamWriter for sending responses
        """
        if self._shutdown_event.is_set():
            writer.close()
            return

        sock = writer.get_extra_info("socket")
        if sock is not None:
            try:
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                pass

        connection = ConnectionHandler(
            self.handler,
            port=self._bound_port,
            client=self._client,
            read_timeout=self.read_timeout,
            body_limit=self.body_limit,
            max_requests=self.max_requests,
            compress_responses=self.compress_responses,
            metrics_path=self.metrics_path,
            shutdown_event=self._shutdown_event,
        )
        task = asyncio.current_task()
        self._connections[task] = connection
        try:
            await connection.handle_connection(reader, writer)
        except (ConnectionResetError, BrokenPipeError):
            default_logger.debug("Client disconnected")
        except Exception:
            default_logger.exception("Connection handler raised an unexpected exception")
        finally:
            self._connections.pop(task, None)
            writer.close()
