"""
Per-connection request handling for the mock server.

This module provides the transport side of one connection:
- Reading and parsing requests with timeouts and size limits
- Dispatching each request through the handler chain
- Serializing the final response in a single write
- Keep-alive, pipelining and structured access logs
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from multidict import CIMultiDict

from ..features import compression
from ..features.client import UpstreamClient, strip_hop_by_hop
from ..features.metrics import REQ_ERRORS, REQ_IN_FLIGHT, REQ_LATENCY, REQ_TOTAL, metrics_response
from .chain import Handler, execute
from .errors import ProtocolViolation
from .http_parser import HTTPParser, HTTPParserError, ParsedMessage
from .messages import ConnectionContext, Request, Response, reason_phrase

logger = logging.getLogger("mockhttp.connection")
access_logger = logging.getLogger("mockhttp.access")

# Status codes that never carry a body
BODYLESS_STATUSES = frozenset({204, 304})


def _access_log_payload(method: str, path: str, status: int, length: int, duration: float,
                        client: str, request_id: str):
    return {
        "method": method,
        "path": path,
        "status": status,
        "length": length,
        "duration_s": round(duration, 6),
        "client": client,
        "request_id": request_id,
    }


def error_response(status: int, message: Optional[str] = None) -> Response:
    """Plain-text response used for transport-level and handler failures."""
    body = (message or reason_phrase(status)).encode("utf-8")
    return Response(status=status, headers={"Content-Type": "text/plain; charset=utf-8"},
                    body=body)


def serialize_response(response: Response, *, version: str = "1.1", keep_alive: bool = True,
                       head_only: bool = False, accept_encoding: str = "",
                       compress: bool = False, request_id: Optional[str] = None) -> bytes:
    """Build the complete wire form of ``response``.

    Framing headers set by handlers (Content-Length, Transfer-Encoding,
    Connection and other hop-by-hop fields) are replaced by the transport's own.
    """
    status = response.status_code
    headers = strip_hop_by_hop(CIMultiDict(response.headers))
    body = response.body or b""

    if status < 200 or status in BODYLESS_STATUSES:
        body = b""
    else:
        if compress and body:
            body = compression.compress_response(body, headers, accept_encoding)
        headers["Content-Length"] = str(len(body))

    if request_id and "X-Request-ID" not in headers:
        headers["X-Request-ID"] = request_id
    headers["Connection"] = "keep-alive" if keep_alive else "close"

    lines = [f"HTTP/{version} {status} {reason_phrase(status)}\r\n"]
    for name, value in headers.items():
        lines.append(f"{name}: {value}\r\n")
    lines.append("\r\n")
    head = "".join(lines).encode("latin-1")
    return head if head_only else head + body


class ConnectionHandler:
    """Serves the requests of one client connection.

    Attributes:
        idle: True while waiting for the next request, False while one is
            being processed; the server cancels idle connections at once
            during shutdown and lets busy ones drain.
    """

    def __init__(
        self,
        handler: Handler,
        *,
        port: int = 0,
        client: Optional[UpstreamClient] = None,
        read_timeout: float = 10.0,
        body_limit: int = 10 * 1024 * 1024,
        max_requests: int = 1000,
        compress_responses: bool = True,
        metrics_path: Optional[str] = None,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.handler = handler
        self.port = str(port)
        self.client = client
        self.read_timeout = read_timeout
        self.body_limit = body_limit
        self.max_requests = max_requests
        self.compress_responses = compress_responses
        self.metrics_path = metrics_path
        self.shutdown_event = shutdown_event
        self.idle = True

    def _shutting_down(self) -> bool:
        return self.shutdown_event is not None and self.shutdown_event.is_set()

    async def handle_connection(self, reader: asyncio.StreamReader,
                                writer: asyncio.StreamWriter) -> None:
        """Handle keep-alive connection with multiple requests"""
        peer = writer.get_extra_info("peername")
        sockname = writer.get_extra_info("sockname")
        scheme = "https" if writer.get_extra_info("ssl_object") is not None else "http"
        client = f"{peer[0]}:{peer[1]}" if peer else "unknown"
        context = ConnectionContext(
            remote_address=tuple(peer) if peer else None,
            local_address=tuple(sockname) if sockname else None,
            scheme=scheme,
            client=self.client,
        )

        parser = HTTPParser(body_limit=self.body_limit)
        requests_handled = 0

        while requests_handled < self.max_requests:
            if self._shutting_down():
                logger.debug("Shutdown in progress - closing connection to %s", client)
                break

            try:
                message = await self._read_request(reader, writer, parser)
            except HTTPParserError as e:
                logger.warning("Rejecting malformed request from %s: %s", client, e)
                REQ_ERRORS.labels(port=self.port, kind="parse").inc()
                writer.write(serialize_response(error_response(e.status, str(e)),
                                                keep_alive=False))
                await writer.drain()
                break

            if message is None:
                break

            self.idle = False
            try:
                keep_alive = await self._process_request(message, context, writer, client)
            finally:
                self.idle = True
            requests_handled += 1

            if not keep_alive:
                break

    async def _read_request(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                            parser: HTTPParser) -> Optional[ParsedMessage]:
        """Read until one complete request is parsed; None on EOF or timeout"""
        message = parser.pop()
        while message is None:
            try:
                data = await asyncio.wait_for(reader.read(65536), timeout=self.read_timeout)
            except asyncio.TimeoutError:
                logger.debug("Read timeout while waiting for a request")
                return None
            if not data:
                return None

            parser.feed_data(data)
            if parser.expect_continue and not parser.messages:
                parser.expect_continue = False
                writer.write(b"HTTP/1.1 100 Continue\r\n\r\n")
                await writer.drain()
            message = parser.pop()
        return message

    async def _dispatch(self, request: Request) -> Response:
        """Run the handler chain, converting failures into 500 responses"""
        if self.metrics_path is not None and request.uri.partition("?")[0] == self.metrics_path:
            return metrics_response()
        try:
            return await execute(self.handler, request)
        except ProtocolViolation:
            REQ_ERRORS.labels(port=self.port, kind="protocol_violation").inc()
            logger.error("Handler chain violated the continuation protocol for %s %s",
                         request.method, request.uri, exc_info=True)
            return error_response(500, "Internal Server Error")
        except Exception:
            REQ_ERRORS.labels(port=self.port, kind="handler").inc()
            logger.exception("Unhandled exception in handler chain for %s %s",
                             request.method, request.uri)
            return error_response(500, "Internal Server Error")

    async def _process_request(self, message: ParsedMessage, context: ConnectionContext,
                               writer: asyncio.StreamWriter, client: str) -> bool:
        """Answer one request; returns whether the connection stays open"""
        request = message.to_request(context)
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()
        REQ_TOTAL.labels(port=self.port).inc()
        REQ_IN_FLIGHT.labels(port=self.port).inc()
        status, length = 0, 0
        try:
            response = await self._dispatch(request)
            keep_alive = message.keep_alive and not self._shutting_down()
            try:
                payload = serialize_response(
                    response,
                    version=message.version,
                    keep_alive=keep_alive,
                    head_only=request.method == "HEAD",
                    accept_encoding=request.headers.get("Accept-Encoding", ""),
                    compress=self.compress_responses,
                    request_id=request_id,
                )
            except UnicodeEncodeError:
                logger.error("Response headers for %s %s are not latin-1 encodable",
                             request.method, request.uri, exc_info=True)
                response = error_response(500, "Internal Server Error")
                payload = serialize_response(response, version=message.version,
                                             keep_alive=keep_alive, request_id=request_id)
            status, length = response.status_code, len(payload)
            # Whole response in one write()
            writer.write(payload)
            await writer.drain()
            return keep_alive
        finally:
            duration = time.monotonic() - start_time
            REQ_IN_FLIGHT.labels(port=self.port).dec()
            REQ_LATENCY.labels(port=self.port).observe(duration)
            payload = _access_log_payload(request.method, request.uri.partition("?")[0], status,
                                          length, duration, client, request_id)
            access_logger.info("%s %s %s", request.method, request.uri, status, extra=payload)
