"""
HTTP request parser using httptools for efficient parsing.

This module provides a robust HTTP request parser with:
- Strict size limits for security
- Fully buffered bodies (the handler chain works on complete requests)
- Support for incremental parsing and pipelined requests
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Tuple

import httptools

from .messages import ConnectionContext, Request, RequestHead


class HTTPParserError(Exception):
    """Custom exception for HTTP parsing errors"""
    status = 400


class BodyTooLarge(HTTPParserError):
    """Request body exceeded the configured limit"""
    status = 413


@dataclass
class ParsedMessage:
    """One complete request as read off the wire."""
    method: str
    uri: str
    version: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: bytes = b""
    keep_alive: bool = True
    upgrade: bool = False

    def to_request(self, context: Optional[ConnectionContext] = None) -> Request:
        head = RequestHead(method=self.method, uri=self.uri,
                           version=self.version, headers=self.headers)
        return Request(head=head, body=self.body or None, context=context)


class HTTPParser:
    """Parses HTTP requests using httptools with validation and safety checks.

    This parser implements callbacks from httptools.HttpRequestParser and
    queues every completed message, so several pipelined requests fed in one
    chunk come out in order.

    Constants:
        MAX_URL_SIZE: Maximum request target length (8KB)
        MAX_HEADER_SIZE: Maximum size per header (8KB)
        MAX_HEADERS: Maximum number of headers per request (100)
    """
    MAX_URL_SIZE = 8192
    MAX_HEADER_SIZE = 8192
    MAX_HEADERS = 100

    def __init__(self, body_limit: int = 10 * 1024 * 1024):
        self.body_limit = body_limit
        self.messages: Deque[ParsedMessage] = deque()
        self.expect_continue = False
        self._parser = httptools.HttpRequestParser(self)
        self._error: Optional[HTTPParserError] = None
        self._reset()

    def _reset(self) -> None:
        self._url = b""
        self._headers: List[Tuple[str, str]] = []
        self._body: List[bytes] = []
        self._body_size = 0
        self._keep_alive = True
        self._upgrade = False
        self._method = ""
        self._version = "1.1"

    # httptools callbacks. They record errors instead of raising so the
    # parser state stays consistent; feed_data() or pop() raises afterwards.
    # Nothing is queued once an error has been recorded.

    def on_message_begin(self) -> None:
        self._reset()

    def on_url(self, url: bytes) -> None:
        self._url += url
        if len(self._url) > self.MAX_URL_SIZE:
            self._fail(HTTPParserError("URL too long"))

    def on_header(self, name: bytes, value: bytes) -> None:
        if len(self._headers) >= self.MAX_HEADERS:
            self._fail(HTTPParserError("Too many headers"))
            return
        if len(value) > self.MAX_HEADER_SIZE:
            self._fail(HTTPParserError("Header value too long"))
            return
        self._headers.append((name.decode("latin-1"), value.decode("latin-1")))

    def on_headers_complete(self) -> None:
        self._method = self._parser.get_method().decode("ascii")
        self._version = self._parser.get_http_version()
        self._keep_alive = self._parser.should_keep_alive()
        self._upgrade = self._parser.should_upgrade()
        for name, value in self._headers:
            if name.lower() == "expect" and value.lower() == "100-continue":
                self.expect_continue = True

    def on_body(self, body: bytes) -> None:
        self._body_size += len(body)
        if self._body_size > self.body_limit:
            self._fail(BodyTooLarge(f"Request body exceeds {self.body_limit} bytes"))
            return
        self._body.append(body)

    def on_message_complete(self) -> None:
        self.expect_continue = False
        if self._error is not None:
            return
        self.messages.append(ParsedMessage(
            method=self._method,
            uri=self._url.decode("latin-1"),
            version=self._version,
            headers=self._headers,
            body=b"".join(self._body),
            keep_alive=self._keep_alive and not self._upgrade,
            upgrade=self._upgrade,
        ))

    def _fail(self, error: HTTPParserError) -> None:
        if self._error is None:
            self._error = error

    def feed_data(self, data: bytes) -> None:
        """Feed raw request data to the parser.

        Messages completed before a parse error stay queued; the error is
        raised once they have all been popped.

        Raises:
            HTTPParserError: If the data is malformed or exceeds a limit and
                no earlier message is waiting to be answered
        """
        try:
            self._parser.feed_data(data)
        except httptools.HttpParserUpgrade:
            # The upgrade request itself has been queued; we never switch
            # protocols, so the connection ends after it is answered.
            if not self.messages:
                self._fail(HTTPParserError("Unsupported protocol upgrade"))
        except httptools.HttpParserError as e:
            self._fail(HTTPParserError(f"Parser error: {e}"))
        if self._error is not None and not self.messages:
            raise self._error

    def pop(self) -> Optional[ParsedMessage]:
        """Next completed message, or None if one is still being received.

        Raises:
            HTTPParserError: The deferred parse error, once the queue is empty
        """
        if self.messages:
            return self.messages.popleft()
        if self._error is not None:
            raise self._error
        return None
