"""
Redirect/intercept adapter.

``redirect(request_transform, response_transform)`` builds a terminal handler
unit: the incoming request is rewritten into an outbound call to an origin,
the origin's reply is copied into the shared response, and the response
transform edits it in place before the transport sends it back.

Example::

    def to_origin(request):
        url = request.url.with_scheme("https").with_host("api.example.com")
        return request.replace(uri=str(url)).with_headers({"X-Mocked": "1"})

    def wrap(response):
        response.status = HTTPStatus.CREATED
        response.set_json({"response": response.json()})

    server = Server(8080, redirect(to_origin, wrap))
"""

"""
Copyright 2025 Chris Bunting
File: redirect.py | Purpose: Forward-and-rewrite handler unit
@author Chris Bunting | @version 1.1.0

CHANGELOG:
2025-09-04 - Chris Bunting: Accept coroutine transforms, configurable failure status
2025-08-28 - Chris Bunting: Initial implementation
"""

import inspect
import logging
import time
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Optional, Union

from yarl import URL

from ..core.chain import Continuation, Handler
from ..core.errors import TransformFailure, UpstreamUnavailable
from ..core.messages import Request, Response, is_absolute_url, reason_phrase
from .client import UpstreamClient
from .metrics import UPSTREAM_FAILURES

logger = logging.getLogger("mockhttp.redirect")

RequestTransform = Callable[[Request], Union[Request, Awaitable[Request]]]
ResponseTransform = Callable[[Response], Union[None, Awaitable[None]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _port_label(request: Request) -> str:
    context = request.context
    if context is None or not context.local_address:
        return "unknown"
    return str(context.local_address[1])


def _fail(response: Response, status: int, error: Exception) -> None:
    response.reset()
    response.status = status
    response.headers["Content-Type"] = "text/plain; charset=utf-8"
    response.body = f"{reason_phrase(status) or status}: {error}".encode("utf-8")


def redirect(request_transform: RequestTransform,
             response_transform: Optional[ResponseTransform] = None,
             *,
             timeout: float = 30.0,
             failure_status: int = HTTPStatus.BAD_GATEWAY,
             client: Optional[UpstreamClient] = None) -> Handler:
    """Build a handler that forwards to an origin and intercepts the reply.

    Args:
        request_transform: Maps the incoming request to the outbound one; the
            result must carry an absolute URI naming the origin
        response_transform: Edits the origin's reply in place (optional)
        timeout: Upper bound in seconds for the outbound call
        failure_status: Status answered when the origin is unavailable
        client: Client to send through instead of the connection's own

    Returns:
        A terminal handler unit; it never calls its continuation.

    Raises:
        ValueError: If timeout is not positive or failure_status is not a
            5xx code
    """
    if timeout <= 0:
        raise ValueError("Timeout must be positive")
    if not 500 <= int(failure_status) <= 599:
        raise ValueError("Failure status must be a 5xx code")

    async def redirect_handler(request: Request, response: Response, next: Continuation) -> None:
        started = time.monotonic()
        try:
            outbound = await _maybe_await(request_transform(request))
        except Exception as e:
            error = TransformFailure(f"Request transform failed: {e}", stage="request", cause=e)
            logger.error("Request transform failed for %s %s", request.method, request.uri,
                         exc_info=True)
            _fail(response, HTTPStatus.INTERNAL_SERVER_ERROR, error)
            return

        if not isinstance(outbound, Request) or not is_absolute_url(URL(outbound.uri, encoded=True)):
            error = TransformFailure(
                f"Request transform must return a Request with an absolute URI, got {outbound!r}",
                stage="request")
            logger.error("%s", error)
            _fail(response, HTTPStatus.INTERNAL_SERVER_ERROR, error)
            return

        upstream = client or (request.context.client if request.context else None)
        try:
            if upstream is None:
                raise UpstreamUnavailable("No outbound client available", url=outbound.uri)
            reply = await upstream.send(outbound, timeout=timeout)
        except UpstreamUnavailable as e:
            reason = type(e.cause).__name__ if e.cause is not None else "unavailable"
            UPSTREAM_FAILURES.labels(port=_port_label(request), reason=reason).inc()
            logger.warning("Upstream call %s %s failed: %s", outbound.method, outbound.uri, e)
            _fail(response, int(failure_status), e)
            return

        response.status = reply.status
        response.headers = reply.headers
        response.body = reply.body
        logger.debug("Forwarded %s %s -> %s in %.3fs", outbound.method, outbound.uri,
                     reply.status, time.monotonic() - started)

        if response_transform is None:
            return
        try:
            await _maybe_await(response_transform(response))
        except Exception as e:
            error = TransformFailure(f"Response transform failed: {e}", stage="response", cause=e)
            logger.error("Response transform failed for %s %s", outbound.method, outbound.uri,
                         exc_info=True)
            _fail(response, HTTPStatus.INTERNAL_SERVER_ERROR, error)

    return redirect_handler
